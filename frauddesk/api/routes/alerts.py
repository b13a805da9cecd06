"""
FraudDesk — Alerts API

GET    /api/v1/alerts                     → paginated flagged transactions (month / severity band / status / rule filters)
GET    /api/v1/alerts/top-accounts        → sender accounts with the most alerts
GET    /api/v1/alerts/{alert_id}          → single alert with its transaction
PATCH  /api/v1/alerts/{alert_id}          → move status forward
PUT    /api/v1/alerts/{alert_id}/resolve  → resolve

The list endpoint works on stored risk scores: severity here is the score
band of the transaction, not the severity stored on its alerts.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select, and_, exists, extract, func
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.config import settings
from frauddesk.models.models import (
    Alert, AlertSeverity, AlertStatus, AuditLog, Case, CaseStatus, Transaction, UserRole,
)
from frauddesk.models.schemas import (
    AlertDetailResponse,
    AlertResponse,
    AlertUpdate,
    FlaggedTransactionListResponse,
    TopAccount,
    TransactionResponse,
)
from frauddesk.rules.engine import score_band_bounds
from frauddesk.services.db import get_db
from frauddesk.services.security import get_current_user, require_roles

logger = logging.getLogger("frauddesk.api.alerts")
router = APIRouter()

# Pending → InReview → Resolved; only forward moves are accepted
_STATUS_ORDER = {
    AlertStatus.PENDING.value: 0,
    AlertStatus.IN_REVIEW.value: 1,
    AlertStatus.RESOLVED.value: 2,
}

_alert_writers = require_roles(UserRole.ADMIN, UserRole.ANALYST, UserRole.INVESTIGATOR)


# ===========================================================================
# GET  /api/v1/alerts
# ===========================================================================
@router.get(
    "/",
    response_model=FlaggedTransactionListResponse,
    summary="List Flagged Transactions",
    description=(
        "Transactions with a positive stored risk score. `severity` selects a "
        "score band (Critical ≥90, High 70–89, Medium 40–69, Low 1–39); "
        "`status` is derived from the investigation case of each transaction."
    ),
)
async def list_alerts(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    month: Optional[int] = Query(None, ge=1, le=12),
    severity: Optional[AlertSeverity] = None,
    status_filter: Optional[AlertStatus] = Query(None, alias="status"),
    rule_name: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    conditions = [Transaction.risk_score > 0]

    if month is not None:
        conditions.append(extract("month", Transaction.created_at) == month)

    if severity is not None:
        lower, upper = score_band_bounds(severity)
        if severity is AlertSeverity.LOW:
            conditions.append(Transaction.risk_score > lower)
        else:
            conditions.append(Transaction.risk_score >= lower)
        if upper is not None:
            conditions.append(Transaction.risk_score < upper)

    if status_filter is not None:
        conditions.append(_case_status_condition(status_filter))

    if rule_name:
        conditions.append(exists().where(and_(
            Alert.transaction_id == Transaction.id,
            func.lower(Alert.rule_name) == rule_name.strip().lower(),
        )))

    stmt = select(Transaction).where(and_(*conditions))

    count_result = await db.execute(select(func.count()).select_from(stmt.subquery()))
    total: int = count_result.scalar() or 0

    result = await db.execute(
        stmt.order_by(Transaction.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return FlaggedTransactionListResponse(
        total=total,
        page=page,
        page_size=page_size,
        items=[TransactionResponse.model_validate(t) for t in result.scalars()],
    )


# ===========================================================================
# GET  /api/v1/alerts/top-accounts
# ===========================================================================
@router.get(
    "/top-accounts",
    response_model=List[TopAccount],
    summary="Top Alerted Accounts",
    description="Sender accounts ranked by number of alerts raised on their transactions.",
)
async def top_accounts(
    top_n: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    alert_count = func.count(Alert.id).label("count")
    result = await db.execute(
        select(Transaction.sender_account_number, alert_count)
        .join(Alert, Alert.transaction_id == Transaction.id)
        .group_by(Transaction.sender_account_number)
        .order_by(alert_count.desc(), Transaction.sender_account_number)
        .limit(top_n)
    )
    return [
        TopAccount(account_number=account, count=count)
        for account, count in result.all()
    ]


# ===========================================================================
# GET  /api/v1/alerts/{alert_id}
# ===========================================================================
@router.get(
    "/{alert_id}",
    response_model=AlertDetailResponse,
    summary="Get Alert Detail",
)
async def get_alert(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    alert = await _fetch_alert(db, alert_id)
    return AlertDetailResponse.model_validate(alert)


# ===========================================================================
# PATCH /api/v1/alerts/{alert_id}
# ===========================================================================
@router.patch(
    "/{alert_id}",
    response_model=AlertResponse,
    summary="Update Alert Status",
    description="Pending → InReview → Resolved. Moving backwards is rejected with 409.",
)
async def update_alert(
    alert_id: str,
    body: AlertUpdate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(_alert_writers),
):
    req_id = getattr(request.state, "request_id", None)
    alert = await _fetch_alert(db, alert_id)

    previous = alert.status
    _transition(alert, body.status, current_user, db)
    await db.commit()
    await db.refresh(alert)

    logger.info(
        "Alert %s updated",
        alert_id,
        extra={
            "request_id": req_id,
            "previous_status": previous,
            "new_status": alert.status,
        },
    )
    return AlertResponse.model_validate(alert)


# ===========================================================================
# PUT  /api/v1/alerts/{alert_id}/resolve
# ===========================================================================
@router.put(
    "/{alert_id}/resolve",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Resolve Alert",
)
async def resolve_alert(
    alert_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(_alert_writers),
):
    alert = await _fetch_alert(db, alert_id)
    _transition(alert, AlertStatus.RESOLVED, current_user, db)
    await db.commit()
    logger.info("Alert %s resolved", alert_id)


# ===========================================================================
# Helpers
# ===========================================================================
async def _fetch_alert(db: AsyncSession, alert_id: str) -> Alert:
    result = await db.execute(select(Alert).where(Alert.id == alert_id))
    alert = result.scalar_one_or_none()
    if alert is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Alert {alert_id} not found",
        )
    return alert


def _transition(
    alert: Alert,
    target: AlertStatus,
    current_user: Dict[str, Any],
    db: AsyncSession,
) -> None:
    """Apply a forward status move; same status is a no-op."""
    target_value = AlertStatus(target).value
    current_rank = _STATUS_ORDER.get(alert.status, 0)
    target_rank = _STATUS_ORDER[target_value]

    if target_rank == current_rank:
        return
    if target_rank < current_rank:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Cannot move alert from {alert.status} back to {target_value}",
        )

    db.add(AuditLog(
        transaction_id=alert.transaction_id,
        actor=f"api:{current_user.get('sub', 'unknown')}",
        action="ALERT_UPDATED",
        details={
            "alert_id": alert.id,
            "from": alert.status,
            "to": target_value,
        },
    ))
    alert.status = target_value
    if target_value == AlertStatus.RESOLVED.value:
        alert.resolved_at = datetime.now(timezone.utc)


def _case_status_condition(alert_status: AlertStatus):
    """
    Alert status on the list endpoint is read from the transaction's cases:
    Pending    – no case, or only Open cases
    InReview   – a case UnderInvestigation
    Resolved   – a Closed case
    """
    if alert_status is AlertStatus.PENDING:
        return ~exists().where(and_(
            Case.transaction_id == Transaction.id,
            Case.status != CaseStatus.OPEN.value,
        ))
    case_status = (
        CaseStatus.UNDER_INVESTIGATION if alert_status is AlertStatus.IN_REVIEW else CaseStatus.CLOSED
    )
    return exists().where(and_(
        Case.transaction_id == Transaction.id,
        Case.status == case_status.value,
    ))
