import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import CheckConstraint, Column, DateTime, Enum as SAEnum, Float, Integer, String

from stepup.models.base import Base


class VerificationMethod(str, Enum):
    SMS = "sms"
    TOTP = "totp"


class SessionState(str, Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"
    LOCKED_OUT = "LOCKED_OUT"
    CANCELLED = "CANCELLED"


class VerificationSession(Base):
    __tablename__ = "verification_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id = Column(String, nullable=False, index=True)
    method = Column(SAEnum(VerificationMethod), nullable=False)
    # passlib hash of the sms code; empty for totp, which is checked live
    challenge_hash = Column(String, nullable=False, default="")
    destination = Column(String, nullable=True)
    action_type = Column(String, nullable=True)
    amount = Column(Float, nullable=True)
    currency = Column(String, nullable=True)

    state = Column(SAEnum(SessionState), nullable=False, default=SessionState.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_verification_sessions_attempts"),
        CheckConstraint("expires_at > created_at", name="ck_verification_sessions_expiry"),
    )
