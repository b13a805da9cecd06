"""
FraudDesk — Dashboard API
GET  /api/v1/dashboard/summary     → KPIs for the analyst panel
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy import select, func, and_, case
from sqlalchemy.ext.asyncio import AsyncSession

from frauddesk.config import settings
from frauddesk.models.models import Alert, AlertSeverity, AlertStatus, Transaction
from frauddesk.models.schemas import DashboardSummary, TransactionResponse
from frauddesk.services.db import get_db
from frauddesk.services.security import get_current_user

logger = logging.getLogger("frauddesk.api.dashboard")
router = APIRouter()


# ===========================================================================
# GET  /api/v1/dashboard/summary
# ===========================================================================
@router.get(
    "/summary",
    response_model=DashboardSummary,
    summary="Dashboard KPI Summary",
    description=(
        "Returns aggregated metrics: transaction counts, pending / critical "
        "alerts, average risk score, top-5 riskiest transactions, alert "
        "distribution by stored severity and flagged transactions by score band."
    ),
)
async def dashboard_summary(
    db: AsyncSession = Depends(get_db),
    current_user: Dict[str, Any] = Depends(get_current_user),
):
    # ── transaction counts ─────────────────────────────────────────────────
    total_txn_result = await db.execute(select(func.count()).select_from(Transaction))
    total_transactions: int = total_txn_result.scalar() or 0

    flagged_result = await db.execute(
        select(func.count()).select_from(Transaction).where(Transaction.is_flagged.is_(True))
    )
    flagged_transactions: int = flagged_result.scalar() or 0

    # ── pending alerts ─────────────────────────────────────────────────────
    pending_result = await db.execute(
        select(func.count()).select_from(Alert).where(Alert.status == AlertStatus.PENDING.value)
    )
    total_alerts_pending: int = pending_result.scalar() or 0

    # ── critical pending alerts ────────────────────────────────────────────
    critical_result = await db.execute(
        select(func.count()).select_from(Alert).where(
            and_(
                Alert.status == AlertStatus.PENDING.value,
                Alert.severity == AlertSeverity.CRITICAL.value,
            )
        )
    )
    total_alerts_critical: int = critical_result.scalar() or 0

    # ── average risk score (all time) ──────────────────────────────────────
    avg_result = await db.execute(select(func.coalesce(func.avg(Transaction.risk_score), 0.0)))
    avg_risk_score = round(float(avg_result.scalar() or 0.0), 2)

    # ── top-5 riskiest transactions ────────────────────────────────────────
    top_result = await db.execute(
        select(Transaction)
        .where(Transaction.risk_score > 0)
        .order_by(Transaction.risk_score.desc(), Transaction.created_at.desc())
        .limit(5)
    )
    top_risk_transactions = [TransactionResponse.model_validate(t) for t in top_result.scalars()]

    # ── alert distribution by stored severity ──────────────────────────────
    dist_result = await db.execute(
        select(Alert.severity, func.count(Alert.id)).group_by(Alert.severity)
    )
    alert_distribution = {severity: count for severity, count in dist_result.all()}

    # ── flagged transactions by score band ─────────────────────────────────
    band = case(
        (Transaction.risk_score >= settings.SEVERITY_CRITICAL_MIN, AlertSeverity.CRITICAL.value),
        (Transaction.risk_score >= settings.SEVERITY_HIGH_MIN, AlertSeverity.HIGH.value),
        (Transaction.risk_score >= settings.SEVERITY_MEDIUM_MIN, AlertSeverity.MEDIUM.value),
        else_=AlertSeverity.LOW.value,
    ).label("band")
    band_result = await db.execute(
        select(band, func.count()).where(Transaction.risk_score > 0).group_by(band)
    )
    score_band_distribution = {member.value: 0 for member in AlertSeverity}
    score_band_distribution.update({name: count for name, count in band_result.all()})

    return DashboardSummary(
        total_transactions=total_transactions,
        flagged_transactions=flagged_transactions,
        total_alerts_pending=total_alerts_pending,
        total_alerts_critical=total_alerts_critical,
        avg_risk_score=avg_risk_score,
        top_risk_transactions=top_risk_transactions,
        alert_distribution=alert_distribution,
        score_band_distribution=score_band_distribution,
    )
