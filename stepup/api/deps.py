from typing import Generator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from stepup import db
from stepup.config import settings
from stepup.services import security
from stepup.services.container import Services


def get_db() -> Generator[Session, None, None]:
    with db.get_session() as session:
        yield session


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_current_subject(authorization: str | None = Header(default=None)) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing access token")
    token = authorization.split(" ", 1)[1]
    payload = security.decode_token(token)
    if not payload or payload.get("scope") != "access" or not payload.get("sub"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return str(payload["sub"])


def require_admin(x_admin_token: str | None = Header(default=None)) -> None:
    if x_admin_token != settings.admin_token:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin token invalid")
