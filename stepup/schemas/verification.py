from datetime import datetime
from pydantic import BaseModel, Field

from stepup.models.session import VerificationMethod


class ChallengeStartRequest(BaseModel):
    method: VerificationMethod = VerificationMethod.SMS
    destination: str | None = None


class ChallengeStartResponse(BaseModel):
    session_id: str | None
    method: VerificationMethod
    expires_at: datetime | None
    destination: str | None = None
    challenge_required: bool = True
    message: str | None = None


class VerifyRequest(BaseModel):
    session_id: str
    code: str = Field(min_length=1, max_length=10)
    trust_device: bool = False
    device_id: str | None = None
    device_name: str | None = None


class VerifyResponse(BaseModel):
    verified: bool
    session_id: str
    device_trusted: bool = False


class SessionStatusResponse(BaseModel):
    session_id: str
    method: VerificationMethod
    state: str
    attempts: int
    remaining_attempts: int
    expires_at: datetime
    destination: str | None = None


class ErrorDetail(BaseModel):
    kind: str
    message: str
    remaining_attempts: int | None = None
