from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy.orm import Session

from stepup.config import Settings, settings as default_settings
from stepup.services.audit import AuditSink
from stepup.services.cache import ReadThroughCache
from stepup.services.clock import Clock, utcnow
from stepup.services.delivery import DeliveryChannel, HttpDeliveryChannel
from stepup.services.devices import TrustedDeviceRegistry
from stepup.services.enrollment import TotpEnrollment
from stepup.services.gate import StepUpGate
from stepup.services.otp import TotpVerifier
from stepup.services.sessions import VerificationSessionManager


@dataclass
class Services:
    audit: AuditSink
    devices: TrustedDeviceRegistry
    sessions: VerificationSessionManager
    gate: StepUpGate
    enrollment: TotpEnrollment
    verifier: TotpVerifier


def build_services(
    session_factory: Callable[[], Session],
    channel: Optional[DeliveryChannel] = None,
    config: Settings = default_settings,
    clock: Clock = utcnow,
) -> Services:
    verifier = TotpVerifier(period=config.totp_period_seconds, digits=config.totp_digits, drift=config.totp_drift)
    audit_sink = AuditSink(session_factory, clock=clock)
    devices = TrustedDeviceRegistry(audit_sink, validity=config.trusted_device_ttl(), clock=clock)
    sessions = VerificationSessionManager(
        channel or HttpDeliveryChannel(config.delivery_url, config.delivery_token, config.delivery_timeout_seconds),
        devices,
        audit_sink,
        verifier=verifier,
        cache=ReadThroughCache() if config.session_cache_enabled else None,
        config=config,
        clock=clock,
    )
    return Services(
        audit=audit_sink,
        devices=devices,
        sessions=sessions,
        gate=StepUpGate(sessions, audit_sink, config=config, clock=clock),
        enrollment=TotpEnrollment(audit_sink, verifier=verifier, config=config, clock=clock),
        verifier=verifier,
    )
