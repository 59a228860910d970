from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, String

from stepup.models.base import Base


class LockoutRecord(Base):
    __tablename__ = "lockouts"

    subject_id = Column(String, primary_key=True)
    locked_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    locked_until = Column(DateTime(timezone=True), nullable=False)
    reason = Column(String, nullable=False)
