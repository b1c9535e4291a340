"""Authentication utilities: password hashing and JWT token management.

Access tokens carry the user's role so clients can show staff screens without
another round trip. Authorisation never trusts that claim: dependencies load
the user and check the stored role.
"""

from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt
from passlib.context import CryptContext

from resortbook.core.config import settings
from resortbook.models.user import User

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def _encode(user_id: int, token_type: str, lifetime: timedelta, **claims) -> str:
    payload = {"sub": str(user_id), "exp": datetime.now(UTC) + lifetime, "type": token_type, **claims}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(user: User) -> str:
    lifetime = timedelta(minutes=settings.access_token_expire_minutes)
    return _encode(user.id, "access", lifetime, role=str(user.role))


def create_refresh_token(user: User) -> str:
    return _encode(user.id, "refresh", timedelta(days=settings.refresh_token_expire_days))


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Raises JWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


def user_id_from_token(token: str, token_type: str = "access") -> int:
    """Return the user id of a valid token of the given type. Raises JWTError otherwise."""
    payload = decode_token(token)
    if payload.get("type") != token_type:
        raise JWTError("Invalid token type")
    try:
        return int(payload["sub"])
    except (KeyError, ValueError):
        raise JWTError("Invalid subject") from None
