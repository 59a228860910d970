from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from stepup.api.deps import get_current_subject, get_db, get_services
from stepup.schemas.verification import (
    ChallengeStartRequest,
    ChallengeStartResponse,
    SessionStatusResponse,
    VerifyRequest,
    VerifyResponse,
)
from stepup.services.container import Services
from stepup.services.messages import translate
from stepup.services.sessions import ChallengeStart, SessionView

router = APIRouter()


def _owned_session(services: Services, db: Session, session_id: str, subject_id: str) -> SessionView | None:
    view = services.sessions.get(db, session_id)
    if view is not None and view.subject_id != subject_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not owner")
    return view


def to_start_response(start: ChallengeStart) -> ChallengeStartResponse:
    return ChallengeStartResponse(
        session_id=start.session_id,
        method=start.method,
        expires_at=start.expires_at,
        destination=start.destination,
        challenge_required=not start.exempt,
        message=translate("code_sent", destination=start.destination) if start.destination else None,
    )


@router.post("/v1/verification/start", response_model=ChallengeStartResponse)
def start_challenge(
    payload: ChallengeStartRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> ChallengeStartResponse:
    start = services.sessions.initiate(db, subject_id, payload.method, destination=payload.destination)
    return to_start_response(start)


@router.post("/v1/verification/verify", response_model=VerifyResponse)
def verify_challenge(
    payload: VerifyRequest,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> VerifyResponse:
    _owned_session(services, db, payload.session_id, subject_id)
    outcome = services.sessions.verify(
        db,
        payload.session_id,
        payload.code,
        trust_device=payload.trust_device,
        device_id=payload.device_id,
        device_name=payload.device_name,
    )
    return VerifyResponse(verified=True, session_id=outcome.session.id, device_trusted=outcome.device_trusted)


@router.get("/v1/verification/{session_id}", response_model=SessionStatusResponse)
def challenge_status(
    session_id: str,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> SessionStatusResponse:
    view = _owned_session(services, db, session_id, subject_id)
    if view is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Challenge not found")
    return SessionStatusResponse(
        session_id=view.id,
        method=view.method,
        state=view.state.value,
        attempts=view.attempts,
        remaining_attempts=max(0, services.sessions.max_attempts - view.attempts),
        expires_at=view.expires_at,
        destination=view.masked_destination,
    )


@router.post("/v1/verification/{session_id}/resend", response_model=ChallengeStartResponse)
def resend_challenge(
    session_id: str,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> ChallengeStartResponse:
    _owned_session(services, db, session_id, subject_id)
    try:
        start = services.sessions.resend(db, session_id)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return to_start_response(start)


@router.post("/v1/verification/{session_id}/cancel", status_code=status.HTTP_204_NO_CONTENT)
def cancel_challenge(
    session_id: str,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> None:
    _owned_session(services, db, session_id, subject_id)
    services.sessions.cancel(db, session_id)
