from fastapi import APIRouter, Depends, HTTPException, Query, status as http_status
from sqlalchemy.orm import Session

from stepup.api.deps import get_db, get_services, require_admin
from stepup.models.audit import AuditLog
from stepup.schemas.admin import AuditEntry, LockoutView
from stepup.schemas.devices import RevokeResponse
from stepup.services.clock import ensure_aware
from stepup.services.container import Services

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/v1/admin/audit", response_model=list[AuditEntry])
def audit_list(
    subject_id: str | None = Query(default=None),
    severity: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[AuditEntry]:
    query = db.query(AuditLog)
    if subject_id:
        query = query.filter(AuditLog.subject_id == subject_id)
    if severity:
        query = query.filter(AuditLog.severity == severity)
    logs = query.order_by(AuditLog.occurred_at.desc()).limit(200).all()
    return [
        AuditEntry(
            occurred_at=ensure_aware(log.occurred_at),
            subject_id=log.subject_id,
            event_type=log.event_type,
            severity=log.severity,
            details=log.details or {},
        )
        for log in logs
    ]


@router.get("/v1/admin/subjects/{subject_id}/lockout", response_model=LockoutView)
def lockout_status(
    subject_id: str,
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> LockoutView:
    record = services.sessions.active_lockout(db, subject_id)
    if record is None:
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="Subject not locked")
    return LockoutView(subject_id=subject_id, locked_until=ensure_aware(record.locked_until), reason=record.reason)


@router.delete("/v1/admin/subjects/{subject_id}/lockout", status_code=http_status.HTTP_204_NO_CONTENT)
def clear_lockout(
    subject_id: str,
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> None:
    if not services.sessions.clear_lockout(db, subject_id):
        raise HTTPException(status_code=http_status.HTTP_404_NOT_FOUND, detail="Subject not locked")


@router.delete("/v1/admin/subjects/{subject_id}/devices", response_model=RevokeResponse)
def admin_revoke_devices(
    subject_id: str,
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> RevokeResponse:
    return RevokeResponse(removed=services.devices.revoke_all(db, subject_id))


@router.post("/v1/admin/verification/cleanup")
def cleanup_sessions(
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> dict[str, int]:
    return {"removed": services.sessions.cleanup(db)}
