"""
FraudDesk — Alerting Service

Alerts are already persisted by the scorer; this module handles the
*outbound* notification for a flagged transaction, sent once per
transaction for its first alert:
    • Structured log     (always)
    • Kafka alert topic  (when a producer is running)
    • Webhook            (when ALERT_WEBHOOK_URL is set)

Delivery is fire-and-forget: every channel logs its own failure and
nothing propagates back to the ingestion request.
"""

import logging
from typing import Any, Dict

import httpx

from frauddesk.config import settings
from frauddesk.models.models import Alert, Transaction
from frauddesk.services.observability import Metrics

logger = logging.getLogger("frauddesk.alerts")


# ===========================================================================
# Public entry-point
# ===========================================================================
async def notify_transaction_flagged(
    transaction: Transaction,
    alert: Alert,
    kafka_producer=None,
) -> None:
    """
    Fan out the flagged-transaction notification across all channels.

    Parameters
    ----------
    transaction    : the persisted, scored Transaction row
    alert          : the first persisted Alert row for that transaction
    kafka_producer : the app.state.kafka_producer singleton (optional)
    """
    try:
        payload = notification_payload(transaction, alert)
    except Exception as exc:
        logger.error("Could not build notification for txn=%s: %s", transaction.id, exc)
        Metrics.notifications_total.labels(channel="all", outcome="failed").inc()
        return

    # 1. Structured log (always)
    logger.warning(
        "FLAGGED txn=%s score=%s severity=%s rule=%s",
        transaction.id, transaction.risk_score, alert.severity, alert.rule_name,
    )

    # 2. Kafka (if producer available)
    if kafka_producer is not None and getattr(kafka_producer, "is_running", False):
        try:
            await kafka_producer.send(
                topic=settings.KAFKA_ALERT_TOPIC,
                value=payload,
                key=transaction.id,
            )
            Metrics.notifications_total.labels(channel="kafka", outcome="sent").inc()
        except Exception as exc:
            logger.error("Kafka alert send failed for txn=%s: %s", transaction.id, exc)
            Metrics.notifications_total.labels(channel="kafka", outcome="failed").inc()
    else:
        Metrics.notifications_total.labels(channel="kafka", outcome="skipped").inc()

    # 3. Webhook (if configured)
    if settings.ALERT_WEBHOOK_URL:
        await _send_webhook(settings.ALERT_WEBHOOK_URL, payload)
    else:
        Metrics.notifications_total.labels(channel="webhook", outcome="skipped").inc()


# ===========================================================================
# Helpers
# ===========================================================================
def notification_payload(transaction: Transaction, alert: Alert) -> Dict[str, Any]:
    return {
        "subject": f"Fraud Alert: Transaction Flagged - Risk Score: {transaction.risk_score}",
        "transaction": {
            "id": transaction.id,
            "risk_score": transaction.risk_score,
            "amount": str(transaction.amount),
            "transaction_type": transaction.transaction_type,
            "sender_account_number": transaction.sender_account_number,
            "receiver_account_number": transaction.receiver_account_number,
            "location": transaction.location or "N/A",
            "device": transaction.device or "N/A",
            "ip_address": transaction.ip_address or "N/A",
            "created_at": transaction.created_at.isoformat() if transaction.created_at else None,
        },
        "alert": {
            "id": alert.id,
            "severity": str(alert.severity).upper(),
            "rule_name": alert.rule_name,
            "status": alert.status,
        },
    }


async def _send_webhook(url: str, payload: Dict[str, Any]):
    """Fire-and-forget HTTP POST; logs errors but never raises."""
    try:
        async with httpx.AsyncClient(timeout=settings.ALERT_WEBHOOK_TIMEOUT_SECONDS) as client:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
            logger.info("Webhook delivered → %s (status %d)", url, resp.status_code)
            Metrics.notifications_total.labels(channel="webhook", outcome="sent").inc()
    except Exception as exc:
        logger.error("Webhook delivery failed (%s): %s", url, exc)
        Metrics.notifications_total.labels(channel="webhook", outcome="failed").inc()
