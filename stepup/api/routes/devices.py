from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from stepup.api.deps import get_current_subject, get_db, get_services
from stepup.schemas.devices import RevokeResponse, TrustedDeviceView
from stepup.services.clock import ensure_aware
from stepup.services.container import Services

router = APIRouter()


@router.get("/v1/devices", response_model=list[TrustedDeviceView])
def list_devices(
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> list[TrustedDeviceView]:
    return [
        TrustedDeviceView(
            device_id=d.device_id,
            device_name=d.device_name,
            trusted_at=ensure_aware(d.trusted_at),
            expires_at=ensure_aware(d.expires_at),
        )
        for d in services.devices.list_devices(db, subject_id)
    ]


@router.delete("/v1/devices/{device_id}", response_model=RevokeResponse)
def revoke_device(
    device_id: str,
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> RevokeResponse:
    if not services.devices.revoke(db, subject_id, device_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")
    return RevokeResponse(removed=1)


@router.delete("/v1/devices", response_model=RevokeResponse)
def revoke_all_devices(
    subject_id: str = Depends(get_current_subject),
    services: Services = Depends(get_services),
    db: Session = Depends(get_db),
) -> RevokeResponse:
    return RevokeResponse(removed=services.devices.revoke_all(db, subject_id))
