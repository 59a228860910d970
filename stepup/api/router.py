from fastapi import APIRouter

from stepup.api.routes import admin, devices, step_up, totp, verification

api_router = APIRouter()
api_router.include_router(verification.router, tags=["verification"])
api_router.include_router(step_up.router, tags=["step-up"])
api_router.include_router(totp.router, tags=["totp"])
api_router.include_router(devices.router, tags=["devices"])
api_router.include_router(admin.router, tags=["admin"])
