"""Verification session state machine.

A session moves from ``PENDING`` to exactly one terminal state: ``VERIFIED``,
``EXPIRED``, ``LOCKED_OUT`` or ``CANCELLED``. Terminal rows are kept until
:meth:`VerificationSessionManager.cleanup` so that a late ``verify`` against a
locked or expired session keeps reporting the same failure kind.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, delete, or_, select, update
from sqlalchemy.orm import Session

from stepup.config import Settings, settings as default_settings
from stepup.models.lockout import LockoutRecord
from stepup.models.session import SessionState, VerificationMethod, VerificationSession
from stepup.models.subject import Subject
from stepup.services import security
from stepup.services.audit import CRITICAL, WARNING, AuditSink
from stepup.services.cache import ReadThroughCache
from stepup.services.clock import Clock, ensure_aware, utcnow
from stepup.services.delivery import DeliveryChannel
from stepup.services.devices import TrustedDeviceRegistry
from stepup.services.errors import (
    DeliveryFailure,
    Expired,
    InvalidCode,
    Locked,
    NotFound,
    SetupRequired,
)
from stepup.services.messages import mask_destination
from stepup.services.otp import TotpVerifier, is_ascii_code

logger = logging.getLogger(__name__)

LOCKOUT_REASON = "Too many failed verification attempts"

# Actions whose challenges a trusted device may skip.
DEVICE_EXEMPT_ACTIONS = frozenset({"admin_login"})


@dataclass(frozen=True)
class SessionView:
    id: str
    subject_id: str
    method: VerificationMethod
    state: SessionState
    attempts: int
    created_at: datetime
    expires_at: datetime
    challenge_hash: str = ""
    destination: Optional[str] = None
    action_type: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None

    @classmethod
    def from_row(cls, row: VerificationSession) -> "SessionView":
        return cls(
            id=row.id,
            subject_id=row.subject_id,
            method=row.method,
            state=row.state,
            attempts=row.attempts,
            created_at=ensure_aware(row.created_at),
            expires_at=ensure_aware(row.expires_at),
            challenge_hash=row.challenge_hash or "",
            destination=row.destination,
            action_type=row.action_type,
            amount=row.amount,
            currency=row.currency,
        )

    @property
    def masked_destination(self) -> Optional[str]:
        if self.method == VerificationMethod.TOTP:
            return "Authenticator App"
        return mask_destination(self.destination) if self.destination else None


@dataclass(frozen=True)
class ChallengeStart:
    session_id: Optional[str]
    method: VerificationMethod
    expires_at: Optional[datetime]
    destination: Optional[str] = None
    exempt: bool = False


@dataclass(frozen=True)
class VerifyOutcome:
    session: SessionView
    device_trusted: bool = False


class VerificationSessionManager:
    def __init__(
        self,
        channel: DeliveryChannel,
        registry: TrustedDeviceRegistry,
        audit_sink: AuditSink,
        verifier: Optional[TotpVerifier] = None,
        cache: Optional[ReadThroughCache[str, SessionView]] = None,
        config: Settings = default_settings,
        clock: Clock = utcnow,
    ) -> None:
        self._channel = channel
        self._registry = registry
        self._audit = audit_sink
        self._verifier = verifier or TotpVerifier(
            period=config.totp_period_seconds, digits=config.totp_digits, drift=config.totp_drift
        )
        self._cache = cache
        self._config = config
        self._clock = clock

    @property
    def max_attempts(self) -> int:
        return self._config.max_attempts

    # -- queries -------------------------------------------------------------

    def get(self, db: Session, session_id: str) -> Optional[SessionView]:
        return self._load(db, session_id)

    def active_lockout(self, db: Session, subject_id: str) -> Optional[LockoutRecord]:
        record = db.get(LockoutRecord, subject_id)
        if record is None or self._clock() > ensure_aware(record.locked_until):
            return None
        return record

    def challenge_required(self, db: Session, subject_id: str, device_id: Optional[str]) -> bool:
        return not self._registry.is_trusted(db, subject_id, device_id)

    # -- lifecycle -----------------------------------------------------------

    def initiate(
        self,
        db: Session,
        subject_id: str,
        method: VerificationMethod,
        destination: Optional[str] = None,
        device_id: Optional[str] = None,
        action_type: Optional[str] = None,
        amount: Optional[float] = None,
        currency: Optional[str] = None,
    ) -> ChallengeStart:
        """Open a challenge for ``subject_id``.

        ``device_id`` only exempts challenges bound to an action in
        :data:`DEVICE_EXEMPT_ACTIONS`; every other challenge is always issued.
        """
        method = VerificationMethod(method)
        if (
            device_id
            and action_type in DEVICE_EXEMPT_ACTIONS
            and not self.challenge_required(db, subject_id, device_id)
        ):
            logger.info("Device %s is trusted for subject %s, skipping challenge", device_id, subject_id)
            return ChallengeStart(session_id=None, method=method, expires_at=None, exempt=True)

        self._ensure_not_locked(db, subject_id)
        return self._issue(db, subject_id, method, destination, action_type, amount, currency)

    def verify(
        self,
        db: Session,
        session_id: str,
        code: str,
        trust_device: bool = False,
        device_id: Optional[str] = None,
        device_name: Optional[str] = None,
    ) -> VerifyOutcome:
        fresh = False
        while True:
            view = self._load(db, session_id, bypass_cache=fresh)
            fresh = True
            self._raise_if_terminal(view)

            if self._clock() > view.expires_at:
                self._retire(db, view, SessionState.EXPIRED)
                self._audit.record("verification_expired", subject_id=view.subject_id, session_id=view.id)
                raise Expired()

            if view.attempts >= self.max_attempts:
                self._lock_out(db, view)
                raise Locked(minutes=self._config.lockout_minutes)

            if self._matches(db, view, code):
                if not self._retire(db, view, SessionState.VERIFIED, expected_attempts=view.attempts):
                    continue
                break

            if not self._record_failure(db, view):
                # another request changed the row first; re-evaluate against it
                continue

            attempts = view.attempts + 1
            if attempts >= self.max_attempts:
                self._lock_out(db, view)
                raise Locked(minutes=self._config.lockout_minutes)

            remaining = self.max_attempts - attempts
            self._audit.record(
                "verification_failed",
                subject_id=view.subject_id,
                severity=WARNING,
                session_id=view.id,
                attempt=attempts,
                remaining_attempts=remaining,
            )
            raise InvalidCode(remaining_attempts=remaining)

        logger.info("Challenge %s verified for subject %s", view.id, view.subject_id)
        self._audit.record(
            "verification_succeeded",
            subject_id=view.subject_id,
            session_id=view.id,
            method=view.method.value,
            device_trusted=bool(trust_device and device_id),
        )
        trusted = False
        if trust_device and device_id:
            self._registry.trust(db, view.subject_id, device_id, device_name)
            trusted = True
        return VerifyOutcome(session=view, device_trusted=trusted)

    def resend(self, db: Session, session_id: str) -> ChallengeStart:
        """Replace a pending sms challenge with a fresh code.

        The failed attempts of the old session carry over to the new one.
        """
        view = self._load(db, session_id, bypass_cache=True)
        if view is None or view.state != SessionState.PENDING:
            raise NotFound()
        if view.method != VerificationMethod.SMS:
            raise ValueError("only sms challenges can be resent")
        if self._clock() > view.expires_at:
            self._retire(db, view, SessionState.EXPIRED)
            raise Expired()

        self._ensure_not_locked(db, view.subject_id)
        if not self._retire(db, view, SessionState.CANCELLED, expected_attempts=view.attempts):
            return self.resend(db, session_id)
        return self._issue(
            db,
            view.subject_id,
            view.method,
            view.destination,
            view.action_type,
            view.amount,
            view.currency,
            attempts=view.attempts,
        )

    def cancel(self, db: Session, session_id: str) -> None:
        view = self._load(db, session_id, bypass_cache=True)
        if view is None or not self._retire(db, view, SessionState.CANCELLED):
            raise NotFound()
        self._audit.record("challenge_cancelled", subject_id=view.subject_id, session_id=view.id)

    def cleanup(self, db: Session) -> int:
        """Delete sessions that can no longer change a verify outcome.

        Verified and cancelled rows go at once. Locked-out rows stay while
        their subject's lockout is active, and expired rows stay for the
        retention window, so late verifies keep failing with the same kind.
        Returns the number of rows removed.
        """
        now = self._clock()
        locked_subjects = select(LockoutRecord.subject_id).where(LockoutRecord.locked_until >= now)
        condition = or_(
            VerificationSession.state.in_((SessionState.VERIFIED, SessionState.CANCELLED)),
            and_(
                VerificationSession.state == SessionState.LOCKED_OUT,
                VerificationSession.subject_id.not_in(locked_subjects),
            ),
            and_(
                VerificationSession.state.in_((SessionState.PENDING, SessionState.EXPIRED)),
                VerificationSession.expires_at < now - self._config.retention_ttl(),
            ),
        )
        ids = list(db.execute(select(VerificationSession.id).where(condition)).scalars())
        if not ids:
            return 0
        db.execute(delete(VerificationSession).where(VerificationSession.id.in_(ids)))
        db.commit()
        for session_id in ids:
            self._forget(session_id)
        logger.info("Removed %d finished verification sessions", len(ids))
        return len(ids)

    def clear_lockout(self, db: Session, subject_id: str) -> bool:
        record = db.get(LockoutRecord, subject_id)
        if record is None:
            return False
        db.delete(record)
        db.commit()
        self._audit.record("lockout_cleared", subject_id=subject_id, severity=WARNING)
        return True

    # -- internals -----------------------------------------------------------

    def _issue(
        self,
        db: Session,
        subject_id: str,
        method: VerificationMethod,
        destination: Optional[str],
        action_type: Optional[str],
        amount: Optional[float],
        currency: Optional[str],
        attempts: int = 0,
    ) -> ChallengeStart:
        subject = db.get(Subject, subject_id)
        challenge_hash = ""
        if method == VerificationMethod.SMS:
            destination = destination or (subject.phone if subject else None)
            if not destination:
                raise DeliveryFailure("no destination configured for subject")
            code = self._generate_code()
            try:
                self._channel.send(destination, code)
            except DeliveryFailure as e:
                self._audit.record(
                    "delivery_failed",
                    subject_id=subject_id,
                    severity=WARNING,
                    kind=e.kind,
                    destination=mask_destination(destination),
                )
                raise
            challenge_hash = security.hash_code(code)
        else:
            if subject is None or not subject.totp_enabled or not subject.totp_secret:
                raise SetupRequired()
            destination = None

        now = self._clock()
        row = VerificationSession(
            subject_id=subject_id,
            method=method,
            challenge_hash=challenge_hash,
            destination=destination,
            action_type=action_type,
            amount=amount,
            currency=currency,
            state=SessionState.PENDING,
            attempts=attempts,
            created_at=now,
            expires_at=now + self._config.session_ttl(),
        )
        db.add(row)
        db.commit()

        view = SessionView.from_row(row)
        self._remember(view)
        logger.info("Challenge %s issued for subject %s via %s", view.id, subject_id, method.value)
        self._audit.record(
            "challenge_initiated",
            subject_id=subject_id,
            session_id=view.id,
            method=method.value,
            action_type=action_type,
            destination=view.masked_destination,
        )
        return ChallengeStart(
            session_id=view.id,
            method=method,
            expires_at=view.expires_at,
            destination=view.masked_destination,
        )

    def _ensure_not_locked(self, db: Session, subject_id: str) -> None:
        lockout = self.active_lockout(db, subject_id)
        if lockout is None:
            return
        self._audit.record(
            "challenge_blocked",
            subject_id=subject_id,
            severity=WARNING,
            locked_until=ensure_aware(lockout.locked_until).isoformat(),
        )
        raise Locked(minutes=self._remaining_minutes(lockout))

    def _generate_code(self) -> str:
        return "".join(secrets.choice("0123456789") for _ in range(self._config.otp_length))

    def _matches(self, db: Session, view: SessionView, code: str) -> bool:
        code = (code or "").strip()
        if view.method == VerificationMethod.SMS:
            if not is_ascii_code(code, self._config.otp_length):
                return False
            return security.verify_code(code, view.challenge_hash)

        subject = db.get(Subject, view.subject_id)
        if subject is None or not subject.totp_enabled or not subject.totp_secret:
            raise SetupRequired()
        return self._verifier.verify(subject.totp_secret, code, for_time=self._clock())

    def _raise_if_terminal(self, view: Optional[SessionView]) -> None:
        if view is None or view.state in (SessionState.VERIFIED, SessionState.CANCELLED):
            raise NotFound()
        if view.state == SessionState.EXPIRED:
            raise Expired()
        if view.state == SessionState.LOCKED_OUT:
            raise Locked(minutes=self._config.lockout_minutes)

    def _record_failure(self, db: Session, view: SessionView) -> bool:
        """Compare-and-swap ``attempts += 1``; False when the row moved underneath us."""
        result = db.execute(
            update(VerificationSession)
            .where(VerificationSession.id == view.id)
            .where(VerificationSession.state == SessionState.PENDING)
            .where(VerificationSession.attempts == view.attempts)
            .values(attempts=VerificationSession.attempts + 1)
        )
        db.commit()
        self._forget(view.id)
        return result.rowcount == 1

    def _retire(
        self,
        db: Session,
        view: SessionView,
        state: SessionState,
        expected_attempts: Optional[int] = None,
    ) -> bool:
        stmt = (
            update(VerificationSession)
            .where(VerificationSession.id == view.id)
            .where(VerificationSession.state == SessionState.PENDING)
        )
        if expected_attempts is not None:
            stmt = stmt.where(VerificationSession.attempts == expected_attempts)
        result = db.execute(stmt.values(state=state))
        db.commit()
        self._forget(view.id)
        return result.rowcount == 1

    def _lock_out(self, db: Session, view: SessionView) -> None:
        if not self._retire(db, view, SessionState.LOCKED_OUT):
            return

        now = self._clock()
        locked_until = now + self._config.lockout_ttl()
        db.merge(
            LockoutRecord(
                subject_id=view.subject_id,
                locked_at=now,
                locked_until=locked_until,
                reason=LOCKOUT_REASON,
            )
        )
        db.commit()
        logger.warning("Subject %s locked until %s after %d failed attempts",
                       view.subject_id, locked_until, self.max_attempts)
        self._audit.record(
            "lockout_triggered",
            subject_id=view.subject_id,
            severity=CRITICAL,
            session_id=view.id,
            attempts=self.max_attempts,
            locked_until=locked_until.isoformat(),
        )

    def _remaining_minutes(self, lockout: LockoutRecord) -> int:
        seconds = (ensure_aware(lockout.locked_until) - self._clock()).total_seconds()
        return max(1, int(-(-seconds // 60)))

    def _load(self, db: Session, session_id: str, bypass_cache: bool = False) -> Optional[SessionView]:
        if self._cache is not None and not bypass_cache:
            cached = self._cache.get(session_id)
            if cached is not None:
                return cached
        row = db.execute(
            select(VerificationSession)
            .where(VerificationSession.id == session_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            return None
        view = SessionView.from_row(row)
        self._remember(view)
        return view

    def _remember(self, view: SessionView) -> None:
        if self._cache is not None:
            self._cache.put(view.id, view)

    def _forget(self, session_id: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(session_id)
