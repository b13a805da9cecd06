"""
FraudDesk — Users API  (Admin only)

POST   /api/v1/users            → create a user
GET    /api/v1/users            → list users
GET    /api/v1/users/{user_id}  → single user
PATCH  /api/v1/users/{user_id}  → change role, active flag, name or password
"""

import logging
from typing import Dict, Any, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.models.models import AuditLog, User
from frauddesk.models.schemas import UserCreate, UserResponse, UserUpdate
from frauddesk.services.db import get_db
from frauddesk.services.security import get_current_admin, hash_password

logger = logging.getLogger("frauddesk.api.users")
router = APIRouter()


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=UserResponse,
    summary="Create a User",
)
async def create_user(
    body: UserCreate,
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    existing = await db.execute(
        select(User).where(or_(User.username == body.username, User.email == body.email))
    )
    if existing.scalars().first() is not None:
        raise HTTPException(status_code=409, detail="Username or email already registered.")

    user = User(
        username=body.username,
        email=body.email,
        full_name=body.full_name,
        hashed_password=hash_password(body.password),
        role=body.role.value,
    )
    db.add(user)
    await db.flush()
    _audit(db, admin, "USER_CREATED", user)
    await db.commit()
    await db.refresh(user)
    logger.info("User created: username=%s role=%s", user.username, user.role)
    return UserResponse.model_validate(user)


@router.get(
    "/",
    response_model=List[UserResponse],
    summary="List Users",
)
async def list_users(
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    result = await db.execute(select(User).order_by(User.username))
    return [UserResponse.model_validate(u) for u in result.scalars()]


@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get a User",
)
async def get_user(
    user_id: str,
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    return UserResponse.model_validate(await _fetch_user(db, user_id))


@router.patch(
    "/{user_id}",
    response_model=UserResponse,
    summary="Update a User",
)
async def update_user(
    user_id: str,
    body: UserUpdate,
    db: AsyncSession = Depends(get_db),
    admin: Dict[str, Any] = Depends(get_current_admin),
):
    user = await _fetch_user(db, user_id)

    if body.full_name is not None:
        user.full_name = body.full_name
    if body.role is not None:
        user.role = body.role.value
    if body.is_active is not None:
        user.is_active = body.is_active
    if body.password is not None:
        user.hashed_password = hash_password(body.password)

    _audit(db, admin, "USER_UPDATED", user)
    await db.commit()
    await db.refresh(user)
    logger.info("User %s updated: role=%s active=%s", user.username, user.role, user.is_active)
    return UserResponse.model_validate(user)


async def _fetch_user(db: AsyncSession, user_id: str) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found.")
    return user


def _audit(db: AsyncSession, admin: Dict[str, Any], action: str, user: User) -> None:
    db.add(AuditLog(
        actor=f"api:{admin.get('sub', 'unknown')}",
        action=action,
        details={
            "user_id": user.id,
            "username": user.username,
            "role": user.role,
            "is_active": user.is_active,
        },
    ))
