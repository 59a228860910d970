import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from stepup.config import settings
from stepup.models.device import TrustedDevice
from stepup.services.audit import WARNING, AuditSink
from stepup.services.clock import Clock, utcnow

logger = logging.getLogger(__name__)


class TrustedDeviceRegistry:
    def __init__(
        self,
        audit_sink: AuditSink,
        validity: timedelta = settings.trusted_device_ttl(),
        clock: Clock = utcnow,
    ) -> None:
        self._audit = audit_sink
        self._validity = validity
        self._clock = clock

    def is_trusted(self, db: Session, subject_id: str, device_id: Optional[str]) -> bool:
        if not device_id:
            return False
        row = db.execute(
            select(TrustedDevice.id)
            .where(TrustedDevice.subject_id == subject_id)
            .where(TrustedDevice.device_id == device_id)
            .where(TrustedDevice.expires_at > self._clock())
        ).first()
        return row is not None

    def trust(self, db: Session, subject_id: str, device_id: str, device_name: Optional[str] = None) -> TrustedDevice:
        """Upsert the pair with a fresh validity window.

        Only called by the session manager right after a successful verify.
        """
        now = self._clock()
        device = db.execute(
            select(TrustedDevice)
            .where(TrustedDevice.subject_id == subject_id)
            .where(TrustedDevice.device_id == device_id)
        ).scalar_one_or_none()
        if device is None:
            device = TrustedDevice(subject_id=subject_id, device_id=device_id)
        device.device_name = device_name or device.device_name or "Unknown Device"
        device.trusted_at = now
        device.expires_at = now + self._validity
        db.add(device)
        db.commit()

        logger.info("Device %s trusted for subject %s until %s", device_id, subject_id, device.expires_at)
        self._audit.record(
            "device_trusted",
            subject_id=subject_id,
            device_id=device_id,
            device_name=device.device_name,
        )
        return device

    def list_devices(self, db: Session, subject_id: str) -> list[TrustedDevice]:
        return list(
            db.execute(
                select(TrustedDevice)
                .where(TrustedDevice.subject_id == subject_id)
                .where(TrustedDevice.expires_at > self._clock())
                .order_by(TrustedDevice.trusted_at.desc())
            ).scalars()
        )

    def revoke(self, db: Session, subject_id: str, device_id: str) -> bool:
        result = db.execute(
            delete(TrustedDevice)
            .where(TrustedDevice.subject_id == subject_id)
            .where(TrustedDevice.device_id == device_id)
        )
        db.commit()
        if not result.rowcount:
            return False
        self._audit.record("device_revoked", subject_id=subject_id, severity=WARNING, device_id=device_id)
        return True

    def revoke_all(self, db: Session, subject_id: str) -> int:
        result = db.execute(delete(TrustedDevice).where(TrustedDevice.subject_id == subject_id))
        db.commit()
        removed = result.rowcount or 0
        if removed:
            self._audit.record(
                "device_revoked",
                subject_id=subject_id,
                severity=WARNING,
                device_id="*",
                removed=removed,
            )
        return removed
