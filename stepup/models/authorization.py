import uuid
from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Float, String

from stepup.models.base import Base


class AuthorizedAction(Base):
    __tablename__ = "authorized_actions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    subject_id = Column(String, nullable=False, index=True)
    action_type = Column(String, nullable=False, index=True)
    amount = Column(Float, nullable=False, default=0.0)
    currency = Column(String, nullable=False)
    session_id = Column(String, nullable=True)
    authorized_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
