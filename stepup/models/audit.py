from datetime import datetime, timezone
from sqlalchemy import JSON, Column, DateTime, Integer, String

from stepup.models.base import Base


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    occurred_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    subject_id = Column(String, nullable=True, index=True)
    event_type = Column(String, nullable=False)
    severity = Column(String, nullable=False, default="info")
    details = Column(JSON, nullable=False, default=dict)
