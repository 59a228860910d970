from sqlalchemy import Column, DateTime, Integer, String

from stepup.models.base import Base


class BackupCode(Base):
    __tablename__ = "backup_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String, nullable=False, index=True)
    code_hash = Column(String, nullable=False)
    used_at = Column(DateTime(timezone=True), nullable=True)
