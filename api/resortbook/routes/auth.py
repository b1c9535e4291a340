"""Guest accounts: register, login, token refresh and the profile.

A guest's phone number is unique across accounts. Coupons are redeemed once
per account and once per phone, so a second account on the same phone would
be the same guest under another name.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.auth import (
    create_access_token,
    create_refresh_token,
    hash_password,
    user_id_from_token,
    verify_password,
)
from resortbook.core.database import get_db
from resortbook.core.dependencies import get_current_user
from resortbook.models.user import User
from resortbook.schemas import (
    LoginRequest,
    ProfileUpdate,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserOut,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _tokens(user: User) -> TokenResponse:
    return TokenResponse(access_token=create_access_token(user), refresh_token=create_refresh_token(user))


async def _ensure_phone_free(db: AsyncSession, phone: str, user_id: int | None = None) -> None:
    query = select(User.id).where(User.phone == phone)
    if user_id is not None:
        query = query.where(User.id != user_id)
    if (await db.execute(query)).first() is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Phone number already registered")


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
async def register(body: RegisterRequest, db: AsyncSession = Depends(get_db)):
    email = body.email.lower()
    existing = await db.execute(select(User).where(User.email == email))
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")
    await _ensure_phone_free(db, body.phone)

    user = User(
        email=email,
        hashed_password=hash_password(body.password),
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    db.add(user)
    await db.flush()
    logger.info("Guest account %s registered", user.id)

    return _tokens(user)


@router.post("/login", response_model=TokenResponse)
async def login(body: LoginRequest, db: AsyncSession = Depends(get_db)):
    result = await db.execute(select(User).where(User.email == body.email.lower()))
    user = result.scalar_one_or_none()

    if not user or not user.hashed_password or not verify_password(body.password, user.hashed_password):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid email or password")

    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account disabled")

    return _tokens(user)


@router.post("/refresh", response_model=TokenResponse)
async def refresh_token(body: RefreshRequest, db: AsyncSession = Depends(get_db)):
    try:
        user_id = user_id_from_token(body.refresh_token, token_type="refresh")
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token") from None

    result = await db.execute(select(User).where(User.id == user_id, User.is_active.is_(True)))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")

    return _tokens(user)


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)):
    return user


@router.patch("/me", response_model=UserOut)
async def update_profile(
    body: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if "phone" in changes and changes["phone"] != user.phone:
        await _ensure_phone_free(db, changes["phone"], user.id)

    for field, value in changes.items():
        setattr(user, field, value)
    await db.flush()
    logger.info("Guest account %s updated %s", user.id, ", ".join(sorted(changes)) or "nothing")
    return user
