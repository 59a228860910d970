from datetime import datetime
from pydantic import BaseModel


class AuditEntry(BaseModel):
    occurred_at: datetime
    subject_id: str | None
    event_type: str
    severity: str
    details: dict


class LockoutView(BaseModel):
    subject_id: str
    locked_until: datetime
    reason: str
