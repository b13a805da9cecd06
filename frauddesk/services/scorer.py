"""
FraudDesk — Scoring Pipeline

Runs one transaction through the rule engine and persists the outcome in the
caller's database transaction:

    load enabled rules → score → persist transaction → alerts → audit log

Scores are a snapshot: they are written once here and never recomputed when
rules change later.  Notification is left to the caller, after commit.
"""

import logging
import time
from typing import List, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.config import settings
from frauddesk.models.models import Alert, AlertStatus, AuditLog, Rule, Transaction
from frauddesk.models.schemas import TransactionCreate
from frauddesk.rules.engine import evaluate_transaction
from frauddesk.services.errors import ScoringError
from frauddesk.services.observability import log_alert_created, log_transaction_scored

logger = logging.getLogger("frauddesk.scorer")


async def load_enabled_rules(db: AsyncSession) -> List[Rule]:
    result = await db.execute(
        select(Rule).where(Rule.is_enabled.is_(True)).order_by(Rule.created_at, Rule.id)
    )
    return list(result.scalars())


async def score_transaction(
    db: AsyncSession,
    transaction: Transaction,
) -> List[Alert]:
    """
    Score *transaction* against the rules enabled right now and persist the
    transaction together with its alerts.

    Returns the alerts in creation order (empty when not flagged).
    """
    started = time.perf_counter()
    try:
        rules = await load_enabled_rules(db)
    except Exception as exc:
        raise ScoringError(f"Could not load rules: {exc}") from exc

    evaluation = evaluate_transaction(transaction, rules)

    transaction.risk_score = evaluation.risk_score
    transaction.is_flagged = evaluation.is_flagged
    transaction.status = evaluation.status
    db.add(transaction)
    await db.flush()   # assigns transaction.id

    alerts: List[Alert] = []
    for draft in evaluation.alerts:
        alert = Alert(
            transaction_id=transaction.id,
            severity=draft.severity.value,
            status=AlertStatus.PENDING.value,
            rule_name=draft.rule_name,
            rule_snapshot=draft.rule_snapshot,
        )
        db.add(alert)
        alerts.append(alert)

    db.add(AuditLog(
        transaction_id=transaction.id,
        actor="system",
        action="TRANSACTION_SCORED",
        details={
            "risk_score": evaluation.risk_score,
            "is_flagged": evaluation.is_flagged,
            "rules_evaluated": len(rules),
            "alerts": [draft.rule_name for draft in evaluation.alerts],
        },
    ))
    await db.flush()

    for alert in alerts:
        log_alert_created(
            alert.id,
            transaction.id,
            alert.severity,
            alert.rule_name,
            fallback=alert.rule_name == settings.FALLBACK_RULE_NAME,
        )
    log_transaction_scored(
        transaction.id,
        evaluation.risk_score,
        evaluation.is_flagged,
        len(alerts),
        (time.perf_counter() - started) * 1_000,
    )
    return alerts


async def ingest_transaction(
    db: AsyncSession,
    payload: TransactionCreate,
    actor: str,
) -> Tuple[Transaction, List[Alert]]:
    """Build a Transaction from an inbound payload, score and persist it."""
    txn = Transaction(
        sender_account_number=payload.sender_account_number,
        receiver_account_number=payload.receiver_account_number,
        transaction_type=payload.transaction_type,
        amount=payload.amount,
        location=payload.location,
        device=payload.device,
        ip_address=payload.ip_address,
    )
    alerts = await score_transaction(db, txn)

    db.add(AuditLog(
        transaction_id=txn.id,
        actor=actor,
        action="TRANSACTION_CREATED",
        details={
            "amount": str(txn.amount),
            "transaction_type": txn.transaction_type,
        },
    ))
    await db.flush()
    return txn, alerts
