from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from stepup.api.deps import get_current_subject, get_db, get_services
from stepup.api.routes.verification import _owned_session, to_start_response
from stepup.schemas.step_up import (
    AuthorizationStatusResponse,
    AuthorizeRequest,
    AuthorizeResponse,
    CompleteRequest,
    ReceiptResponse,
    RequirementRequest,
    RequirementResponse,
)
from stepup.services.clock import ensure_aware
from stepup.services.container import Services
from stepup.services.gate import ActionType, Receipt

router = APIRouter()


def _receipt_response(receipt: Receipt) -> ReceiptResponse:
    return ReceiptResponse(
        receipt_id=receipt.id,
        action_type=receipt.action_type,
        amount=receipt.amount,
        currency=receipt.currency,
        authorized_at=receipt.authorized_at,
        expires_at=receipt.expires_at,
        token=receipt.token,
    )


@router.post("/v1/step-up/requirement", response_model=RequirementResponse)
def step_up_requirement(
    payload: RequirementRequest,
    services: Services = Depends(get_services),
) -> RequirementResponse:
    try:
        requirement = services.gate.requirement(payload.action_type, payload.amount, payload.currency)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return RequirementResponse(action_type=payload.action_type, requirement=requirement)


@router.post("/v1/step-up/authorize", response_model=AuthorizeResponse)
def step_up_authorize(
    payload: AuthorizeRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> AuthorizeResponse:
    try:
        result = services.gate.authorize(
            db,
            subject_id,
            payload.action_type,
            payload.amount,
            payload.currency,
            confirmed=payload.confirmed,
            method=payload.method,
            destination=payload.destination,
            device_id=payload.device_id,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return AuthorizeResponse(
        requirement=result.requirement,
        authorized=result.authorized,
        receipt=_receipt_response(result.receipt) if result.receipt else None,
        challenge=to_start_response(result.challenge) if result.challenge else None,
    )


@router.post("/v1/step-up/complete", response_model=ReceiptResponse)
def step_up_complete(
    payload: CompleteRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> ReceiptResponse:
    _owned_session(services, db, payload.session_id, subject_id)
    try:
        receipt = services.gate.complete(
            db,
            payload.session_id,
            payload.code,
            trust_device=payload.trust_device,
            device_id=payload.device_id,
            device_name=payload.device_name,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return _receipt_response(receipt)


@router.get("/v1/step-up/authorizations/{action_type}", response_model=AuthorizationStatusResponse)
def step_up_status(
    action_type: ActionType,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> AuthorizationStatusResponse:
    authorized = services.gate.has_valid_authorization(db, subject_id, action_type)
    latest = services.gate.latest_authorization(db, subject_id, action_type) if authorized else None
    return AuthorizationStatusResponse(
        action_type=action_type,
        authorized=authorized,
        expires_at=ensure_aware(latest.expires_at) if latest else None,
    )
