from datetime import datetime
from pydantic import BaseModel, Field

from stepup.models.session import VerificationMethod
from stepup.schemas.verification import ChallengeStartResponse
from stepup.services.gate import ActionType, Requirement


class RequirementRequest(BaseModel):
    action_type: ActionType
    amount: float = Field(default=0.0, ge=0)
    currency: str = "AOA"


class RequirementResponse(BaseModel):
    action_type: ActionType
    requirement: Requirement


class AuthorizeRequest(RequirementRequest):
    confirmed: bool = False
    method: VerificationMethod = VerificationMethod.SMS
    destination: str | None = None
    device_id: str | None = None


class ReceiptResponse(BaseModel):
    receipt_id: str
    action_type: str
    amount: float
    currency: str
    authorized_at: datetime
    expires_at: datetime
    token: str


class AuthorizeResponse(BaseModel):
    requirement: Requirement
    authorized: bool
    receipt: ReceiptResponse | None = None
    challenge: ChallengeStartResponse | None = None


class CompleteRequest(BaseModel):
    session_id: str
    code: str = Field(min_length=1, max_length=10)
    trust_device: bool = False
    device_id: str | None = None
    device_name: str | None = None


class AuthorizationStatusResponse(BaseModel):
    action_type: ActionType
    authorized: bool
    expires_at: datetime | None = None
