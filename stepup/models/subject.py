from datetime import datetime, timezone
from sqlalchemy import Boolean, Column, DateTime, String

from stepup.models.base import Base


class Subject(Base):
    """Security profile of a marketplace account (client, supplier or admin)."""

    __tablename__ = "subjects"

    id = Column(String, primary_key=True)
    phone = Column(String, nullable=True)
    totp_secret = Column(String, nullable=True)
    totp_enabled = Column(Boolean, default=False, nullable=False)
    totp_enrolled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
