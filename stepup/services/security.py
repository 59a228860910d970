from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from stepup.config import settings

code_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_code(code: str) -> str:
    return code_context.hash(code)


def verify_code(plain_code: str, hashed_code: str) -> bool:
    if not hashed_code:
        return False
    try:
        return code_context.verify(plain_code, hashed_code)
    except (ValueError, TypeError):
        return False


def _create_token(data: Dict[str, Any], expires_delta: timedelta) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(subject_id: str) -> str:
    return _create_token({"sub": subject_id, "scope": "access"}, settings.access_token_ttl())


def create_receipt_token(
    subject_id: str,
    receipt_id: str,
    action_type: str,
    amount: float,
    currency: str,
    expires_at: datetime,
) -> str:
    claims = {
        "sub": subject_id,
        "scope": "step_up",
        "jti": receipt_id,
        "act": action_type,
        "amt": amount,
        "cur": currency,
        "exp": expires_at,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
