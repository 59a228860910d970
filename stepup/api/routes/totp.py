from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from stepup.api.deps import get_current_subject, get_db, get_services
from stepup.schemas.totp import (
    PhoneUpdateRequest,
    TotpCodeRequest,
    TotpConfirmResponse,
    TotpDisableResponse,
    TotpSetupRequest,
    TotpSetupResponse,
)
from stepup.services.container import Services
from stepup.services.enrollment import EnrollmentError, get_or_create_subject

router = APIRouter()


@router.put("/v1/profile/phone", status_code=status.HTTP_204_NO_CONTENT)
def update_phone(
    payload: PhoneUpdateRequest,
    subject_id: str = Depends(get_current_subject),
    db: Session = Depends(get_db),
) -> None:
    get_or_create_subject(db, subject_id, phone=payload.phone)


@router.post("/v1/totp/setup", response_model=TotpSetupResponse)
def totp_setup(
    payload: TotpSetupRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> TotpSetupResponse:
    try:
        start = services.enrollment.begin(db, subject_id, payload.account_name)
    except EnrollmentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return TotpSetupResponse(secret=start.secret, provisioning_uri=start.provisioning_uri)


@router.post("/v1/totp/confirm", response_model=TotpConfirmResponse)
def totp_confirm(
    payload: TotpCodeRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> TotpConfirmResponse:
    try:
        codes = services.enrollment.confirm(db, subject_id, payload.code)
    except EnrollmentError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if codes is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid MFA")
    return TotpConfirmResponse(enabled=True, backup_codes=codes)


@router.post("/v1/totp/disable", response_model=TotpDisableResponse)
def totp_disable(
    payload: TotpCodeRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> TotpDisableResponse:
    if not services.enrollment.disable(db, subject_id, payload.code):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid MFA")
    return TotpDisableResponse(disabled=True)


@router.post("/v1/totp/backup-codes", response_model=TotpConfirmResponse)
def totp_backup_codes(
    payload: TotpCodeRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> TotpConfirmResponse:
    subject = get_or_create_subject(db, subject_id)
    if not subject.totp_enabled or not services.verifier.verify(subject.totp_secret, payload.code):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid MFA")
    return TotpConfirmResponse(enabled=True, backup_codes=services.enrollment.regenerate_backup_codes(db, subject_id))
