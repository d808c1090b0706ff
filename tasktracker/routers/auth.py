# tasktracker/routers/auth.py
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tasktracker.config import settings
from tasktracker.core.access import get_visible_user, get_visible_user_by_email
from tasktracker.core.auth import get_current_user, get_token_user_id, user_id_from_token
from tasktracker.core.clock import Clock, get_clock
from tasktracker.core.errors import NotFound
from tasktracker.core.security import REFRESH, create_access_token, create_refresh_token
from tasktracker.database import get_db
from tasktracker.models.user import User
from tasktracker.schemas.common import ApiResponse
from tasktracker.schemas.user import RefreshRequest, Token, UserCreate, UserLogin, UserResponse, UserUpdate
from tasktracker.services.lifecycle import recover_user, soft_delete_user
from tasktracker.utils.password import hash_password, verify_password


router = APIRouter(prefix="/api/auth", tags=["auth"])


def issue_tokens(user: User) -> Token:
    return Token(
        access_token=create_access_token({"sub": str(user.id)}),
        refresh_token=create_refresh_token({"sub": str(user.id)}),
        token_type="bearer",
        user=UserResponse.model_validate(user),
    )


@router.post("/register", response_model=ApiResponse[UserResponse], status_code=status.HTTP_201_CREATED)
async def register(user_in: UserCreate, db: AsyncSession = Depends(get_db)):
    # Soft-deleted accounts keep their email until purged
    result = await db.execute(select(User).where(User.email == user_in.email))
    if result.scalar_one_or_none():
        raise HTTPException(status_code=400, detail="User already exists")

    try:
        hashed_pw = hash_password(user_in.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    user = User(
        email=user_in.email,
        name=user_in.name,
        hashed_password=hashed_pw
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="User already exists")
    await db.refresh(user)
    return ApiResponse(message="User registered successfully", data=UserResponse.model_validate(user))


@router.post("/login", response_model=ApiResponse[Token])
async def login(user_in: UserLogin, db: AsyncSession = Depends(get_db)):
    # Soft-deleted accounts cannot log in; they look exactly like unknown ones
    try:
        user = await get_visible_user_by_email(db, user_in.email)
    except NotFound:
        raise HTTPException(status_code=404, detail="User not found")

    if not verify_password(user_in.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid credentials")

    return ApiResponse(message="User logged in successfully", data=issue_tokens(user))


@router.post("/refresh", response_model=ApiResponse[Token])
async def refresh(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    user_id = user_id_from_token(body.refresh_token, expected_type=REFRESH)
    try:
        user = await get_visible_user(db, user_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="User not found")
    return ApiResponse(message="Token refreshed", data=issue_tokens(user))


@router.get("/me", response_model=ApiResponse[UserResponse])
async def read_users_me(current_user: User = Depends(get_current_user)):
    return ApiResponse(message="Profile retrieved successfully", data=UserResponse.model_validate(current_user))


@router.put("/me", response_model=ApiResponse[Token])
async def update_my_profile(
    user_in: UserUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user)
):
    if user_in.email and user_in.email != current_user.email:
        existing = await db.execute(
            select(User).where(User.email == user_in.email, User.id != current_user.id)
        )
        if existing.scalar_one_or_none():
            raise HTTPException(status_code=400, detail="Email is already registered")
        current_user.email = user_in.email

    if user_in.name:
        current_user.name = user_in.name

    if user_in.password:
        try:
            current_user.hashed_password = hash_password(user_in.password)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))

    db.add(current_user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Email is already registered")

    # Fresh token so clients pick up the new profile
    return ApiResponse(message="Profile updated successfully", data=issue_tokens(current_user))


@router.delete("/me", response_model=ApiResponse)
async def delete_my_account(
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_user),
    clock: Clock = Depends(get_clock)
):
    await soft_delete_user(db, current_user.id, now=clock.now())
    return ApiResponse(
        message=(
            "Your account has been deleted successfully. "
            f"You have {settings.SOFT_DELETE_GRACE_DAYS} days to recover it."
        )
    )


@router.put("/recover", response_model=ApiResponse[UserResponse])
async def recover_my_account(
    db: AsyncSession = Depends(get_db),
    user_id: int = Depends(get_token_user_id)
):
    try:
        user = await recover_user(db, user_id)
    except NotFound:
        raise HTTPException(status_code=404, detail="User not found or account is not deleted")
    return ApiResponse(
        message="Your account has been recovered successfully",
        data=UserResponse.model_validate(user),
    )
