# tasktracker/core/auth.py
from typing import Optional
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError
from sqlalchemy.ext.asyncio import AsyncSession
from tasktracker.core.access import get_visible_user
from tasktracker.core.errors import NotFound
from tasktracker.core.security import ACCESS, decode_token
from tasktracker.database import get_db
from tasktracker.models.user import User

# Missing or non-Bearer headers are rejected in get_token_user_id
reusable_oauth2 = HTTPBearer(auto_error=False)


def user_id_from_token(token: str, expected_type: str = ACCESS) -> int:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = decode_token(token)
    except ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired, please login again",
            headers={"WWW-Authenticate": "Bearer"},
        )
    except JWTError:
        raise credentials_exception

    user_id = payload.get("sub")
    if user_id is None or payload.get("type") != expected_type:
        raise credentials_exception
    try:
        return int(user_id)
    except (TypeError, ValueError):
        raise credentials_exception


async def get_token_user_id(
    token: Optional[HTTPAuthorizationCredentials] = Depends(reusable_oauth2)
) -> int:
    """Identity from the token alone. Used by account recovery, which must
    work while the account is soft-deleted."""
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header missing",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user_id_from_token(token.credentials)


async def get_current_user(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_token_user_id)
) -> User:
    try:
        return await get_visible_user(db, user_id)
    except NotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
