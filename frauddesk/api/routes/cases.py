"""
FraudDesk — Cases API

POST   /api/v1/cases            → open an investigation case on a transaction
GET    /api/v1/cases            → list cases (status / assignee / transaction filters)
GET    /api/v1/cases/{case_id}  → single case
PATCH  /api/v1/cases/{case_id}  → change status, reassign, edit notes
"""

import logging
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.models.models import AuditLog, Case, CaseStatus, Transaction, User, UserRole
from frauddesk.models.schemas import CaseCreate, CaseResponse, CaseUpdate
from frauddesk.services.db import get_db
from frauddesk.services.security import get_current_user, require_roles

logger = logging.getLogger("frauddesk.api.cases")
router = APIRouter()

_case_writers = require_roles(UserRole.ADMIN, UserRole.ANALYST, UserRole.INVESTIGATOR)


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=CaseResponse,
    summary="Open a Case",
)
async def create_case(
    body: CaseCreate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(_case_writers),
):
    txn = await db.get(Transaction, body.transaction_id)
    if txn is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    if body.assigned_to is not None:
        await _ensure_user(db, body.assigned_to)

    case = Case(
        transaction_id=body.transaction_id,
        status=CaseStatus.OPEN.value,
        assigned_to=body.assigned_to,
        notes=body.notes,
    )
    db.add(case)
    await db.flush()
    _audit(db, current_user, "CASE_OPENED", case)
    await db.commit()
    await db.refresh(case)
    logger.info("Case %s opened for txn=%s", case.id, case.transaction_id)
    return CaseResponse.model_validate(case)


@router.get(
    "/",
    response_model=List[CaseResponse],
    summary="List Cases",
)
async def list_cases(
    status_filter: Optional[CaseStatus] = Query(None, alias="status"),
    assigned_to: Optional[str] = None,
    transaction_id: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    stmt = select(Case)
    if status_filter is not None:
        stmt = stmt.where(Case.status == status_filter.value)
    if assigned_to:
        stmt = stmt.where(Case.assigned_to == assigned_to)
    if transaction_id:
        stmt = stmt.where(Case.transaction_id == transaction_id)
    result = await db.execute(stmt.order_by(Case.created_at.desc()))
    return [CaseResponse.model_validate(c) for c in result.scalars()]


@router.get(
    "/{case_id}",
    response_model=CaseResponse,
    summary="Get a Case",
)
async def get_case(
    case_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    return CaseResponse.model_validate(await _fetch_case(db, case_id))


@router.patch(
    "/{case_id}",
    response_model=CaseResponse,
    summary="Update a Case",
)
async def update_case(
    case_id: str,
    body: CaseUpdate,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(_case_writers),
):
    case = await _fetch_case(db, case_id)

    if body.assigned_to is not None:
        await _ensure_user(db, body.assigned_to)
        case.assigned_to = body.assigned_to
    if body.status is not None:
        case.status = body.status.value
    if body.notes is not None:
        case.notes = body.notes

    _audit(db, current_user, "CASE_UPDATED", case)
    await db.commit()
    await db.refresh(case)
    logger.info("Case %s updated: status=%s", case_id, case.status)
    return CaseResponse.model_validate(case)


# ===========================================================================
# Helpers
# ===========================================================================
async def _fetch_case(db: AsyncSession, case_id: str) -> Case:
    result = await db.execute(select(Case).where(Case.id == case_id))
    case = result.scalar_one_or_none()
    if case is None:
        raise HTTPException(status_code=404, detail=f"Case {case_id} not found.")
    return case


async def _ensure_user(db: AsyncSession, user_id: str) -> None:
    if await db.get(User, user_id) is None:
        raise HTTPException(status_code=400, detail=f"Unknown assignee {user_id}.")


def _audit(db: AsyncSession, user: Dict[str, Any], action: str, case: Case) -> None:
    db.add(AuditLog(
        transaction_id=case.transaction_id,
        actor=f"api:{user.get('sub', 'unknown')}",
        action=action,
        details={
            "case_id": case.id,
            "status": case.status,
            "assigned_to": case.assigned_to,
        },
    ))
