"""
FraudDesk — Security & Authentication Layer

Provides:
- JWT token generation and validation
- Password hashing
- Role-based route protection
- Rate limiter shared by the routers
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Callable

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from slowapi import Limiter
from slowapi.util import get_remote_address

from frauddesk.config import settings
from frauddesk.models.models import UserRole
from frauddesk.services.errors import AuthenticationError, AuthorizationError

logger = logging.getLogger("frauddesk.security")

# ---------------------------------------------------------------------------
# Password hashing context
# ---------------------------------------------------------------------------
pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# ---------------------------------------------------------------------------
# Security schemes
# ---------------------------------------------------------------------------
http_bearer = HTTPBearer(
    scheme_name="Bearer",
    description="JWT Bearer token",
    auto_error=False,
)

# ---------------------------------------------------------------------------
# Rate limiting
# ---------------------------------------------------------------------------
limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
INGEST_RATE_LIMIT = f"{settings.RATE_LIMIT_REQUESTS_PER_MINUTE}/minute"


# ---------------------------------------------------------------------------
# JWT Operations
# ---------------------------------------------------------------------------
def create_access_token(
    data: Dict[str, Any],
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a JWT access token.

    Parameters
    ----------
    data        : dict of claims to encode
    expires_delta : custom expiration delta (defaults to config)

    Returns
    -------
    token : str
    """
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or settings.jwt_expiration)
    to_encode.update({"exp": expire, "iat": now})

    return jwt.encode(
        to_encode,
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT token.

    Raises
    ------
    AuthenticationError
        If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError as exc:
        logger.warning("JWT verification failed: %s", exc)
        raise AuthenticationError("Invalid authentication credentials") from exc


def create_token_pair(subject: str, role: str) -> Dict[str, str]:
    """
    Create both access and refresh tokens.

    Returns
    -------
    tokens : dict
        {"access_token": str, "refresh_token": str, "token_type": "bearer"}
    """
    access_token = create_access_token(
        {"sub": subject, "role": role, "type": "access"},
    )
    refresh_token = create_access_token(
        {"sub": subject, "role": role, "type": "refresh"},
        expires_delta=settings.jwt_refresh_expiration,
    )
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": "bearer",
    }


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------
def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# Dependencies for FastAPI route protection
# ---------------------------------------------------------------------------
async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Dict[str, Any]:
    """
    Validate and extract claims from the Bearer token.

    Returns
    -------
    claims : dict
        Token claims including sub (username) and role.

    Raises
    ------
    AuthenticationError
        If authentication fails
    """
    if not settings.AUTH_ENABLED:
        # Development mode: allow unauthenticated access
        return {"sub": "system", "role": UserRole.ADMIN.value}

    if credentials is None:
        raise AuthenticationError("Not authenticated")

    claims = verify_token(credentials.credentials)
    if claims.get("type") != "access":
        raise AuthenticationError("Access token required")
    return claims


def require_roles(*roles: UserRole) -> Callable:
    """
    Dependency factory: allow only the given roles.

        current_user = Depends(require_roles(UserRole.ADMIN, UserRole.ANALYST))
    """
    allowed = {UserRole(r).value for r in roles}

    async def _checker(
        current_user: Dict[str, Any] = Depends(get_current_user),
    ) -> Dict[str, Any]:
        if current_user.get("role") not in allowed:
            logger.warning(
                "Forbidden: user=%s role=%s needs one of %s",
                current_user.get("sub"), current_user.get("role"), sorted(allowed),
            )
            raise AuthorizationError(
                f"Role {current_user.get('role')!r} may not perform this operation"
            )
        return current_user

    return _checker


get_current_admin = require_roles(UserRole.ADMIN)
