import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from src.api import db

logger = logging.getLogger(__name__)

_pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
_bearer = HTTPBearer(auto_error=False)

ADMIN_ROLE = "Admin"


def _required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(
            f"Missing required environment variable '{name}'. "
            "Set it in the service environment or the .env file."
        )
    return value


def _jwt_secret() -> str:
    # Required for security; do not default.
    return _required_env("JWT_SECRET")


def _jwt_algorithm() -> str:
    return os.getenv("JWT_ALGORITHM", "HS256")


def _jwt_exp_minutes() -> int:
    return int(os.getenv("JWT_EXPIRES_MINUTES", "60"))


# PUBLIC_INTERFACE
def hash_password(password: str) -> str:
    """Hash a plaintext password."""
    return _pwd_context.hash(password)


# PUBLIC_INTERFACE
def verify_password(password: str, password_hash: str) -> bool:
    """Verify a plaintext password against a stored hash."""
    try:
        return _pwd_context.verify(password, password_hash)
    except ValueError:
        # Stored value is not a recognizable hash.
        return False


def _create_access_token(payload: Dict[str, Any], expires_delta: timedelta) -> str:
    to_encode = payload.copy()
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, _jwt_secret(), algorithm=_jwt_algorithm())


# PUBLIC_INTERFACE
def create_user_access_token(user_id: int, username: str, user_type: str) -> str:
    """Create a JWT access token for a user."""
    return _create_access_token(
        {"sub": str(user_id), "username": username, "user_type": user_type},
        expires_delta=timedelta(minutes=_jwt_exp_minutes()),
    )


# PUBLIC_INTERFACE
def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and verify a token. Raises JWTError when invalid or expired."""
    return jwt.decode(token, _jwt_secret(), algorithms=[_jwt_algorithm()])


def _unauthorized(detail: str = "Access token missing") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


# PUBLIC_INTERFACE
def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer)) -> Dict[str, Any]:
    """Dependency that returns the current authenticated user row."""
    if credentials is None:
        raise _unauthorized()

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = int(payload.get("sub"))
    except (JWTError, TypeError, ValueError):
        logger.info("Rejected bearer token")
        raise _unauthorized("Invalid token")

    user = db.fetch_one(
        "SELECT user_id, username, email, first_name, last_name, user_type, balance, account_status, "
        "created_at, updated_at FROM users WHERE user_id=%s",
        [user_id],
    )
    if not user or user.get("account_status") != "active":
        raise _unauthorized("User inactive or not found")
    return user


# PUBLIC_INTERFACE
def require_role(*roles: str) -> Callable[..., Dict[str, Any]]:
    """Build a dependency that admits only the given user types (admins always pass)."""
    allowed = set(roles) | {ADMIN_ROLE}

    def _dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if user.get("user_type") not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{' or '.join(roles)} access required",
            )
        return user

    return _dependency
