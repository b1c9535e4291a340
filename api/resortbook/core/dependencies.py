"""FastAPI dependencies for injection into route handlers."""

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from resortbook.core.auth import user_id_from_token
from resortbook.core.database import get_db
from resortbook.models.user import User, UserRole

bearer_scheme = HTTPBearer(auto_error=False)


def is_admin(user: User | None) -> bool:
    """Check if user has platform-level admin privileges."""
    return user is not None and user.role in (UserRole.ADMIN, UserRole.SUPERADMIN)


async def _load_user(db: AsyncSession, token: str) -> User:
    try:
        user_id = user_id_from_token(token)
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from None

    result = await db.execute(select(User).where(User.id == user_id, User.is_active.is_(True)))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Extract and validate the current user from the JWT bearer token."""
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return await _load_user(db, credentials.credentials)


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Like get_current_user, but anonymous callers get None instead of a 401.

    A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return None
    return await _load_user(db, credentials.credentials)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    """Require the current user to be a platform admin or superadmin."""
    if not is_admin(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def can_access_booking(booking, user: User | None, guest_email: str | None = None) -> bool:
    """Admins see everything, users their own bookings, guests theirs by email."""
    if is_admin(user):
        return True
    if booking.user_id is not None:
        return user is not None and user.id == booking.user_id
    return guest_email is not None and guest_email.lower() == (booking.guest_email or "").lower()
