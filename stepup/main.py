import logging
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from stepup.api.router import api_router
from stepup.config import Settings, settings
from stepup.db import SessionLocal, engine
from stepup.models.base import Base
from stepup.schemas.verification import ErrorDetail
from stepup.services.container import Services, build_services
from stepup.services.delivery import DeliveryChannel
from stepup.services.errors import InvalidCode, VerificationError
from stepup.services.sweeper import SessionSweeper

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS = {
    "not_found": 404,
    "expired": 410,
    "locked": 429,
    "invalid_code": 401,
    "setup_required": 409,
    "delivery_failure": 502,
    "timeout": 504,
}


def _request_locale(request: Request, config: Settings) -> str:
    accept = request.headers.get("accept-language", "")
    if accept:
        return accept.split(",")[0].split("-")[0].strip().lower() or config.locale
    return config.locale


def create_app(
    services: Optional[Services] = None,
    channel: Optional[DeliveryChannel] = None,
    session_factory: Callable[[], Session] = SessionLocal,
    config: Settings = settings,
) -> FastAPI:
    app = FastAPI(title=config.project_name)
    app.state.services = services or build_services(session_factory, channel=channel, config=config)
    app.include_router(api_router)
    sweeper = SessionSweeper(app.state.services.sessions, session_factory)

    @app.exception_handler(VerificationError)
    async def verification_error_handler(request: Request, exc: VerificationError) -> JSONResponse:
        detail = ErrorDetail(
            kind=exc.kind,
            message=exc.message(_request_locale(request, config)),
            remaining_attempts=exc.remaining_attempts if isinstance(exc, InvalidCode) else None,
        )
        return JSONResponse(
            status_code=ERROR_STATUS.get(exc.kind, 400),
            content={"detail": detail.model_dump(exclude_none=True)},
        )

    @app.on_event("startup")
    async def startup() -> None:  # pragma: no cover - wiring
        Base.metadata.create_all(bind=engine)
        if config.sweep_interval_seconds > 0:
            sweeper.start(config.sweep_interval_seconds)
            logger.info("Session sweeper running every %ss", config.sweep_interval_seconds)

    @app.on_event("shutdown")
    async def shutdown() -> None:  # pragma: no cover - wiring
        await sweeper.stop()

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("stepup.main:app", host="0.0.0.0", port=8000, reload=True)
