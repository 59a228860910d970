import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from stepup.config import Settings, settings as default_settings
from stepup.models.backup_code import BackupCode
from stepup.models.subject import Subject
from stepup.services import security
from stepup.services.audit import WARNING, AuditSink
from stepup.services.clock import Clock, utcnow
from stepup.services.otp import TotpVerifier, generate_secret, provisioning_uri

logger = logging.getLogger(__name__)


class EnrollmentError(Exception):
    pass


@dataclass(frozen=True)
class EnrollmentStart:
    secret: str
    provisioning_uri: str


def get_or_create_subject(db: Session, subject_id: str, phone: Optional[str] = None) -> Subject:
    subject = db.get(Subject, subject_id)
    if subject is None:
        subject = Subject(id=subject_id, phone=phone, totp_enabled=False)
        db.add(subject)
        db.commit()
    elif phone and subject.phone != phone:
        subject.phone = phone
        db.commit()
    return subject


class TotpEnrollment:
    """Authenticator app enrollment: setup, confirmation, removal and recovery codes."""

    def __init__(
        self,
        audit_sink: AuditSink,
        verifier: Optional[TotpVerifier] = None,
        config: Settings = default_settings,
        clock: Clock = utcnow,
    ) -> None:
        self._audit = audit_sink
        self._config = config
        self._verifier = verifier or TotpVerifier(
            period=config.totp_period_seconds, digits=config.totp_digits, drift=config.totp_drift
        )
        self._clock = clock

    def begin(self, db: Session, subject_id: str, account_name: str) -> EnrollmentStart:
        """Store a fresh, not yet enabled secret and return its provisioning data.

        Calling this again before confirming replaces the pending secret.
        """
        subject = get_or_create_subject(db, subject_id)
        if subject.totp_enabled:
            raise EnrollmentError("authenticator already enabled; disable it before enrolling again")

        secret = generate_secret(self._config.secret_bytes)
        subject.totp_secret = secret
        subject.totp_enabled = False
        subject.totp_enrolled_at = None
        db.commit()

        logger.info("TOTP setup started for subject %s", subject_id)
        uri = provisioning_uri(
            secret,
            account_name,
            self._config.totp_issuer,
            digits=self._config.totp_digits,
            period=self._config.totp_period_seconds,
        )
        return EnrollmentStart(secret=secret, provisioning_uri=uri)

    def confirm(self, db: Session, subject_id: str, code: str) -> Optional[list[str]]:
        """Enable the pending secret; returns fresh backup codes, or None on a wrong code."""
        subject = db.get(Subject, subject_id)
        if subject is None or not subject.totp_secret:
            raise EnrollmentError("no pending authenticator setup")
        if subject.totp_enabled:
            raise EnrollmentError("authenticator already enabled")

        if not self._verifier.verify(subject.totp_secret, code, for_time=self._clock()):
            return None

        subject.totp_enabled = True
        subject.totp_enrolled_at = self._clock()
        db.commit()
        self._audit.record("totp_enrolled", subject_id=subject_id)
        return self.regenerate_backup_codes(db, subject_id)

    def disable(self, db: Session, subject_id: str, code: str) -> bool:
        subject = db.get(Subject, subject_id)
        if subject is None or not subject.totp_enabled or not subject.totp_secret:
            return False
        if not self._verifier.verify(subject.totp_secret, code, for_time=self._clock()):
            if not self.use_backup_code(db, subject_id, code):
                return False

        subject.totp_secret = None
        subject.totp_enabled = False
        subject.totp_enrolled_at = None
        db.execute(delete(BackupCode).where(BackupCode.subject_id == subject_id))
        db.commit()
        self._audit.record("totp_disabled", subject_id=subject_id, severity=WARNING)
        return True

    def regenerate_backup_codes(self, db: Session, subject_id: str) -> list[str]:
        length = self._config.backup_code_length
        codes = [
            "".join(secrets.choice("0123456789") for _ in range(length))
            for _ in range(self._config.backup_code_count)
        ]
        db.execute(delete(BackupCode).where(BackupCode.subject_id == subject_id))
        db.add_all(BackupCode(subject_id=subject_id, code_hash=security.hash_code(code)) for code in codes)
        db.commit()
        return codes

    def use_backup_code(self, db: Session, subject_id: str, code: str) -> bool:
        code = (code or "").strip()
        if len(code) != self._config.backup_code_length:
            return False
        unused = db.execute(
            select(BackupCode)
            .where(BackupCode.subject_id == subject_id)
            .where(BackupCode.used_at.is_(None))
        ).scalars().all()
        for backup in unused:
            if security.verify_code(code, backup.code_hash):
                backup.used_at = self._clock()
                db.commit()
                self._audit.record("backup_code_used", subject_id=subject_id, severity=WARNING)
                return True
        return False

    def remaining_backup_codes(self, db: Session, subject_id: str) -> int:
        return len(
            db.execute(
                select(BackupCode.id)
                .where(BackupCode.subject_id == subject_id)
                .where(BackupCode.used_at.is_(None))
            ).all()
        )
