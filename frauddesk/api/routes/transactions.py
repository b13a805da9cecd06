"""
FraudDesk — Transactions API

POST /api/v1/transactions                      → ingest + score in one call
GET  /api/v1/transactions                      → paginated list with filters
GET  /api/v1/transactions/account/{account}    → all transactions touching an account
GET  /api/v1/transactions/{txn_id}             → single transaction
GET  /api/v1/transactions/{txn_id}/details     → transaction + triggered rules + customers
PUT  /api/v1/transactions/{txn_id}/flag        → manual flag / unflag

Read paths return the stored risk fields; history is never rescored.
"""

import logging
import time
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy import select, and_, or_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.config import settings
from frauddesk.models.models import (
    Alert, AuditLog, Transaction, TransactionStatus, UserRole,
)
from frauddesk.models.schemas import (
    CustomerInfo,
    TransactionCreate,
    TransactionDetailsResponse,
    TransactionListResponse,
    TransactionResponse,
    TriggeredRule,
)
from frauddesk.services.alerting import notify_transaction_flagged
from frauddesk.services.db import get_db
from frauddesk.services.errors import DatabaseError, ScoringError
from frauddesk.services.kafka_producer import scored_event
from frauddesk.services.observability import Metrics, set_user_id
from frauddesk.services.scorer import ingest_transaction
from frauddesk.services.security import (
    INGEST_RATE_LIMIT, get_current_user, limiter, require_roles,
)

logger = logging.getLogger("frauddesk.api.transactions")
router = APIRouter()

_FIELD_LABELS = {"TransactionType": "Transaction Type"}
_CONDITION_LABELS = {
    "GreaterThan": "greater than",
    "LessThan": "less than",
    "Equals": "equals",
    "NotEquals": "not equals",
    "In": "in",
    "NotIn": "not in",
    "Contains": "contains",
}


# ===========================================================================
# POST  /api/v1/transactions
# ===========================================================================
@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    response_model=TransactionResponse,
    summary="Submit & Score a Transaction",
    description=(
        "Scores the transaction against the currently enabled rules, persists "
        "it with its alerts, and notifies once for the first alert if flagged."
    ),
)
@limiter.limit(INGEST_RATE_LIMIT)
async def create_transaction(
    payload: TransactionCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(require_roles(UserRole.ADMIN, UserRole.ANALYST)),
):
    """Submit a transaction for risk scoring."""
    req_id = getattr(request.state, "request_id", None)
    set_user_id(current_user.get("sub", "unknown"))
    start_time = time.perf_counter()

    try:
        txn, alerts = await ingest_transaction(
            db, payload, actor=f"api:{current_user.get('sub', 'unknown')}",
        )
        await db.commit()
    except ScoringError:
        await db.rollback()
        Metrics.transactions_processed_total.labels(status="error").inc()
        raise
    except SQLAlchemyError as exc:
        await db.rollback()
        Metrics.transactions_processed_total.labels(status="error").inc()
        raise DatabaseError(f"Could not persist transaction: {exc}") from exc
    except Exception as exc:
        await db.rollback()
        logger.error(
            "Unexpected error in create_transaction: %s",
            exc,
            exc_info=True,
            extra={"request_id": req_id},
        )
        Metrics.transactions_processed_total.labels(status="error").inc()
        raise HTTPException(
            status_code=500,
            detail="Transaction processing failed"
        ) from exc

    producer = getattr(request.app.state, "kafka_producer", None)

    # ── notify once, for the first alert (never fails the request) ─────────
    if alerts:
        try:
            await notify_transaction_flagged(txn, alerts[0], kafka_producer=producer)
        except Exception as exc:
            logger.warning(
                "Failed to notify for txn=%s: %s",
                txn.id,
                exc,
                extra={"request_id": req_id},
            )

    # ── scored event to Kafka ──────────────────────────────────────────────
    if producer is not None and getattr(producer, "is_running", False):
        try:
            await producer.send(
                topic=settings.KAFKA_SCORED_TOPIC,
                value=scored_event(txn, alerts),
                key=txn.id,
            )
            Metrics.kafka_messages_sent_total.labels(topic=settings.KAFKA_SCORED_TOPIC).inc()
        except Exception as exc:
            logger.warning(
                "Kafka publish failed for txn=%s: %s",
                txn.id,
                exc,
                extra={"request_id": req_id},
            )
            Metrics.kafka_messages_errors_total.labels(topic=settings.KAFKA_SCORED_TOPIC).inc()

    Metrics.transactions_processed_total.labels(status="success").inc()
    Metrics.transaction_processing_duration_seconds.observe(time.perf_counter() - start_time)

    return TransactionResponse.model_validate(txn)


# ===========================================================================
# GET  /api/v1/transactions
# ===========================================================================
@router.get(
    "/",
    response_model=TransactionListResponse,
    summary="List Transactions",
    description="Paginated list with optional filters, newest first.",
)
async def list_transactions(
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status_filter: Optional[str] = Query(None, alias="status"),
    account: Optional[str] = None,
    transaction_type: Optional[str] = Query(None, alias="type"),
    from_date: Optional[datetime] = Query(None, alias="from"),
    to_date: Optional[datetime] = Query(None, alias="to"),
    min_risk: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    conditions = []

    if status_filter:
        if status_filter.lower() == TransactionStatus.FLAGGED.value.lower():
            conditions.append(Transaction.is_flagged.is_(True))
        elif status_filter.lower() == TransactionStatus.NORMAL.value.lower():
            conditions.append(Transaction.is_flagged.is_(False))
        else:
            conditions.append(Transaction.status == status_filter)
    if account:
        conditions.append(_touches_account(account))
    if transaction_type:
        conditions.append(Transaction.transaction_type == transaction_type)
    if from_date:
        conditions.append(Transaction.created_at >= from_date)
    if to_date:
        conditions.append(Transaction.created_at <= to_date)
    if min_risk is not None:
        conditions.append(Transaction.risk_score >= min_risk)

    stmt = select(Transaction)
    if conditions:
        stmt = stmt.where(and_(*conditions))
    stmt = stmt.order_by(Transaction.created_at.desc())

    count_result = await db.execute(select(func.count()).select_from(stmt.subquery()))
    total: int = count_result.scalar() or 0

    result = await db.execute(stmt.offset((page - 1) * page_size).limit(page_size))
    transactions = list(result.scalars())

    return TransactionListResponse(
        total=total,
        page=page,
        page_size=page_size,
        items=[TransactionResponse.model_validate(t) for t in transactions],
    )


# ===========================================================================
# GET  /api/v1/transactions/account/{account_number}
# ===========================================================================
@router.get(
    "/account/{account_number}",
    response_model=List[TransactionResponse],
    summary="Transactions for an Account",
)
async def list_by_account(
    account_number: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    result = await db.execute(
        select(Transaction)
        .where(_touches_account(account_number))
        .order_by(Transaction.created_at.desc())
    )
    return [TransactionResponse.model_validate(t) for t in result.scalars()]


# ===========================================================================
# GET  /api/v1/transactions/{txn_id}
# ===========================================================================
@router.get(
    "/{txn_id}",
    response_model=TransactionResponse,
    summary="Get Transaction",
)
async def get_transaction(
    txn_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    return TransactionResponse.model_validate(await _fetch_transaction(db, txn_id))


# ===========================================================================
# GET  /api/v1/transactions/{txn_id}/details
# ===========================================================================
@router.get(
    "/{txn_id}/details",
    response_model=TransactionDetailsResponse,
    summary="Get Transaction Details",
    description=(
        "Transaction with the rules that triggered it (as recorded on its "
        "alerts at scoring time) and sender / receiver summaries."
    ),
)
async def get_transaction_details(
    txn_id: str,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    txn = await _fetch_transaction(db, txn_id)

    result = await db.execute(
        select(Alert).where(Alert.transaction_id == txn_id).order_by(Alert.created_at, Alert.id)
    )
    triggered_rules = [_describe_alert(alert) for alert in result.scalars()]

    return TransactionDetailsResponse(
        transaction=TransactionResponse.model_validate(txn),
        triggered_rules=triggered_rules,
        sender=await _customer_info(db, txn.sender_account_number),
        receiver=await _customer_info(db, txn.receiver_account_number),
    )


# ===========================================================================
# PUT  /api/v1/transactions/{txn_id}/flag
# ===========================================================================
@router.put(
    "/{txn_id}/flag",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Manually Flag / Unflag a Transaction",
    description="Overrides the flag and status only; the stored risk score is kept.",
)
async def flag_transaction(
    txn_id: str,
    is_flagged: bool = True,
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(
        require_roles(UserRole.ADMIN, UserRole.ANALYST, UserRole.INVESTIGATOR)
    ),
):
    txn = await _fetch_transaction(db, txn_id)
    txn.is_flagged = is_flagged
    txn.status = TransactionStatus.FLAGGED.value if is_flagged else TransactionStatus.NORMAL.value

    db.add(AuditLog(
        transaction_id=txn.id,
        actor=f"api:{current_user.get('sub', 'unknown')}",
        action="TRANSACTION_FLAGGED" if is_flagged else "TRANSACTION_UNFLAGGED",
        details={"is_flagged": is_flagged},
    ))
    await db.commit()
    logger.info("Transaction %s manual flag=%s", txn_id, is_flagged)


# ===========================================================================
# Helpers
# ===========================================================================
async def _fetch_transaction(db: AsyncSession, txn_id: str) -> Transaction:
    result = await db.execute(select(Transaction).where(Transaction.id == txn_id))
    txn = result.scalar_one_or_none()
    if txn is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Transaction not found"
        )
    return txn


def _touches_account(account_number: str):
    return or_(
        Transaction.sender_account_number == account_number,
        Transaction.receiver_account_number == account_number,
    )


def _describe_alert(alert: Alert) -> TriggeredRule:
    """Render a triggered rule from the snapshot stored on the alert."""
    rule_name = alert.rule_name or "Rule Triggered"
    snapshot = alert.rule_snapshot
    if not snapshot:
        return TriggeredRule(
            rule_name=rule_name,
            description=(
                "This rule was triggered when the transaction was processed "
                f"(severity: {alert.severity})."
            ),
            severity=alert.severity,
        )

    field = snapshot.get("field") or ""
    condition = snapshot.get("condition") or ""
    value = snapshot.get("value") or ""
    if field.lower() == "amount":
        try:
            value = f"₦{Decimal(value.strip()):,.2f}"
        except (InvalidOperation, ValueError):
            pass

    return TriggeredRule(
        rule_name=rule_name,
        description=" ".join([
            _FIELD_LABELS.get(field, field),
            _CONDITION_LABELS.get(condition, condition),
            value,
        ]),
        severity=alert.severity,
    )


async def _customer_info(db: AsyncSession, account_number: str) -> Optional[CustomerInfo]:
    result = await db.execute(
        select(
            func.min(Transaction.created_at),
            func.avg(Transaction.amount),
        ).where(_touches_account(account_number))
    )
    first_seen, average = result.one()
    if first_seen is None:
        return None

    return CustomerInfo(
        name=f"Customer {account_number[-5:]}",
        account_number=account_number,
        customer_since=first_seen,
        average_transaction_value=round(float(average or 0), 2),
    )
