"""
Authentication and authorization utilities for the Storefront service.

Validates JWT tokens issued by the Users service. Tokens carry the user id
in ``sub`` plus ``email`` and ``role``; role ``admin`` grants the
administrative override.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from . import config
from .exceptions import Forbidden, Unauthorized

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"

# Security scheme for JWT bearer tokens
security = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    """Current authenticated user information."""
    id: int
    email: str
    role: str
    token: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def create_access_token(user_id: int, email: str, role: str, expires_delta: Optional[timedelta] = None) -> str:
    """
    Create a JWT access token.

    Args:
        user_id: Subject of the token
        email: User email claim
        role: User role claim
        expires_delta: Optional custom expiration time delta

    Returns:
        Encoded JWT token string
    """
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode = {"sub": str(user_id), "email": email, "role": role, "exp": expire}
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> CurrentUser:
    """
    FastAPI dependency to get the current authenticated user from JWT token.

    Args:
        credentials: HTTP Authorization credentials (injected)

    Returns:
        Current authenticated user information

    Raises:
        Unauthorized: if the token is missing or invalid
    """
    if credentials is None:
        raise Unauthorized("Not authenticated")

    try:
        token = credentials.credentials
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id_str: str = payload.get("sub")
        email: str = payload.get("email")
        role: str = payload.get("role")

        if user_id_str is None or email is None or role is None:
            raise Unauthorized("Could not validate credentials")

        return CurrentUser(id=int(user_id_str), email=email, role=role, token=token)
    except (JWTError, ValueError) as e:
        logger.error(f"JWT validation error: {e}")
        raise Unauthorized("Could not validate credentials") from e


def require_admin(current_user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """
    FastAPI dependency to require admin role.

    Raises:
        Forbidden: if the user is not an admin
    """
    if not current_user.is_admin:
        raise Forbidden("Admin privileges required")
    return current_user
