from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Integer, String, UniqueConstraint

from stepup.models.base import Base


class TrustedDevice(Base):
    __tablename__ = "trusted_devices"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String, nullable=False, index=True)
    device_id = Column(String, nullable=False)
    device_name = Column(String, nullable=False, default="Unknown Device")
    trusted_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)

    __table_args__ = (UniqueConstraint("subject_id", "device_id", name="uq_trusted_devices_subject_device"),)
