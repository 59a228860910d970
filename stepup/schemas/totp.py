from pydantic import BaseModel, Field


class TotpSetupRequest(BaseModel):
    account_name: str = Field(min_length=1)


class TotpSetupResponse(BaseModel):
    secret: str
    provisioning_uri: str


class TotpCodeRequest(BaseModel):
    code: str = Field(min_length=1, max_length=10)


class TotpConfirmResponse(BaseModel):
    enabled: bool
    backup_codes: list[str]


class TotpDisableResponse(BaseModel):
    disabled: bool


class PhoneUpdateRequest(BaseModel):
    phone: str = Field(min_length=4)
