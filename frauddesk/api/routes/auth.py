"""
FraudDesk — Authentication API

POST /api/v1/auth/token         → exchange username / password for a JWT pair
POST /api/v1/auth/refresh       → refresh JWT token
GET  /api/v1/auth/me            → get current user info
"""

import logging
from typing import Dict, Any

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.config import settings
from frauddesk.models.models import User
from frauddesk.models.schemas import LoginRequest, RefreshRequest, TokenResponse
from frauddesk.services.db import get_db
from frauddesk.services.security import (
    create_token_pair,
    get_current_user,
    verify_password,
    verify_token,
)

logger = logging.getLogger("frauddesk.api.auth")
router = APIRouter()


def _token_response(user: User) -> TokenResponse:
    tokens = create_token_pair(subject=user.username, role=user.role)
    return TokenResponse(
        access_token=tokens["access_token"],
        refresh_token=tokens["refresh_token"],
        token_type=tokens["token_type"],
        expires_in=int(settings.jwt_expiration.total_seconds()),
    )


async def _active_user(db: AsyncSession, username: str) -> User | None:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None or not user.is_active:
        return None
    return user


# ===========================================================================
# POST /api/v1/auth/token
# ===========================================================================
@router.post(
    "/token",
    response_model=TokenResponse,
    summary="Get Access Token",
    description="Issue a JWT access token and refresh token for an active user.",
)
async def get_token(
    credentials: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    user = await _active_user(db, credentials.username)
    if user is None or not verify_password(credentials.password, user.hashed_password):
        logger.warning("Failed login for username=%s", credentials.username)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.info("Token issued for username=%s role=%s", user.username, user.role)
    return _token_response(user)


# ===========================================================================
# POST /api/v1/auth/refresh
# ===========================================================================
@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh Access Token",
    description="Use a refresh token to issue a new token pair.",
)
async def refresh_token(
    body: RefreshRequest,
    db: AsyncSession = Depends(get_db),
):
    claims = verify_token(body.refresh_token)

    if claims.get("type") != "refresh":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is not a refresh token",
        )

    # role may have changed since the refresh token was issued
    user = await _active_user(db, claims.get("sub", ""))
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User is inactive or no longer exists",
        )
    return _token_response(user)


# ===========================================================================
# GET /api/v1/auth/me
# ===========================================================================
@router.get(
    "/me",
    summary="Get Current User",
    description="Retrieve information about the currently authenticated user.",
)
async def get_current_user_info(
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    return {
        "subject": current_user.get("sub"),
        "role": current_user.get("role"),
        "expires_in": settings.JWT_EXPIRATION_HOURS * 3600,  # seconds
    }
