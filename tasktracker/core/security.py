# tasktracker/core/security.py
from datetime import datetime, timedelta, timezone
from typing import Optional
from jose import jwt
from tasktracker.config import settings

ACCESS = "access"
REFRESH = "refresh"


def _create_token(data: dict, token_type: str, expires_delta: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({
        "exp": datetime.now(timezone.utc) + expires_delta,
        "type": token_type,
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        data, ACCESS, expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    return _create_token(
        data, REFRESH, expires_delta or timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
    )


def decode_token(token: str) -> dict:
    """Raises jose.JWTError (ExpiredSignatureError for expired tokens)."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
