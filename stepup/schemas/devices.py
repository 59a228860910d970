from datetime import datetime
from pydantic import BaseModel


class TrustedDeviceView(BaseModel):
    device_id: str
    device_name: str
    trusted_at: datetime
    expires_at: datetime


class RevokeResponse(BaseModel):
    removed: int
