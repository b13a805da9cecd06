"""
FraudDesk — Observability Layer

Provides:
- Structured JSON logging
- Prometheus metrics
- Request correlation IDs
"""

import logging
import time
from typing import Optional, Dict, Any
from contextvars import ContextVar

from prometheus_client import Counter, Histogram
from pythonjsonlogger import jsonlogger
from fastapi import Request, Response

from frauddesk.config import settings

# ===========================================================================
# Context Variables (request correlation)
# ===========================================================================
REQUEST_ID_CTX: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
USER_ID_CTX: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def get_request_id() -> Optional[str]:
    """Get the current request ID from context."""
    return REQUEST_ID_CTX.get()


def set_request_id(request_id: str) -> None:
    """Set the request ID in context."""
    REQUEST_ID_CTX.set(request_id)


def get_user_id() -> Optional[str]:
    """Get the current user ID from context."""
    return USER_ID_CTX.get()


def set_user_id(user_id: str) -> None:
    """Set the user ID in context."""
    USER_ID_CTX.set(user_id)


# ===========================================================================
# Structured Logging
# ===========================================================================
class StructuredLogFormatter(jsonlogger.JsonFormatter):
    """JSON log formatter with request context and service fields."""

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        request_id = get_request_id()
        user_id = get_user_id()

        if request_id:
            log_record["request_id"] = request_id
        if user_id:
            log_record["user_id"] = user_id

        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["env"] = settings.APP_ENV
        log_record["service"] = settings.APP_NAME
        log_record["version"] = settings.APP_VERSION


def setup_logging() -> None:
    """Configure structured JSON logging for the application."""
    if not settings.STRUCTURED_LOGGING_ENABLED:
        logging.basicConfig(level=settings.LOG_LEVEL)
        return

    root_logger = logging.getLogger()
    root_logger.setLevel(settings.LOG_LEVEL)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(StructuredLogFormatter("%(asctime)s %(message)s"))
    root_logger.addHandler(console_handler)

    for logger_name in [
        "frauddesk",
        "fastapi",
        "uvicorn",
    ]:
        logging.getLogger(logger_name).setLevel(settings.LOG_LEVEL)
    # SQL echo is controlled by DEBUG, keep the engine logger quiet otherwise
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


# ===========================================================================
# Prometheus Metrics
# ===========================================================================
class Metrics:
    """Application metrics collector."""

    # Request metrics
    http_requests_total = Counter(
        "frauddesk_http_requests_total",
        "Total HTTP requests",
        ["method", "endpoint", "status"],
    )

    http_request_duration_seconds = Histogram(
        "frauddesk_http_request_duration_seconds",
        "HTTP request duration in seconds",
        ["method", "endpoint"],
        buckets=(0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
    )

    # Transaction metrics
    transactions_processed_total = Counter(
        "frauddesk_transactions_processed_total",
        "Total transactions ingested",
        ["status"],  # success, error
    )

    transaction_processing_duration_seconds = Histogram(
        "frauddesk_transaction_processing_duration_seconds",
        "Ingestion time: load rules, score, persist, alert",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0),
    )

    # Scoring metrics
    risk_scores_distribution = Histogram(
        "frauddesk_risk_scores_distribution",
        "Distribution of risk scores (0-100)",
        buckets=(0, 10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
    )

    transactions_flagged_total = Counter(
        "frauddesk_transactions_flagged_total",
        "Transactions flagged by the rule engine",
    )

    alerts_created_total = Counter(
        "frauddesk_alerts_created_total",
        "Alerts created at ingestion",
        ["severity", "kind"],  # kind: rule, fallback
    )

    notifications_total = Counter(
        "frauddesk_notifications_total",
        "Flagged-transaction notifications",
        ["channel", "outcome"],  # outcome: sent, failed, skipped
    )

    # Kafka metrics
    kafka_messages_sent_total = Counter(
        "frauddesk_kafka_messages_sent_total",
        "Total Kafka messages sent",
        ["topic"],
    )

    kafka_messages_errors_total = Counter(
        "frauddesk_kafka_messages_errors_total",
        "Kafka message send errors",
        ["topic"],
    )


# ===========================================================================
# Middleware for automatic metric collection
# ===========================================================================
async def metrics_middleware(request: Request, call_next) -> Response:
    """Record HTTP request metrics."""
    start_time = time.perf_counter()
    path = request.url.path
    method = request.method
    status_code = 500

    try:
        response = await call_next(request)
        status_code = response.status_code
    finally:
        duration = time.perf_counter() - start_time

        Metrics.http_requests_total.labels(
            method=method,
            endpoint=path,
            status=status_code,
        ).inc()

        Metrics.http_request_duration_seconds.labels(
            method=method,
            endpoint=path,
        ).observe(duration)

    return response


# ===========================================================================
# Logging utilities
# ===========================================================================
def log_transaction_scored(
    transaction_id: str,
    risk_score: int,
    is_flagged: bool,
    alert_count: int,
    duration_ms: float,
) -> None:
    """Log a transaction scoring event."""
    logger = logging.getLogger("frauddesk.scoring")
    logger.info(
        "Transaction scored",
        extra={
            "transaction_id": transaction_id,
            "risk_score": risk_score,
            "is_flagged": is_flagged,
            "alert_count": alert_count,
            "duration_ms": duration_ms,
        },
    )

    Metrics.risk_scores_distribution.observe(risk_score)
    if is_flagged:
        Metrics.transactions_flagged_total.inc()


def log_alert_created(
    alert_id: str,
    transaction_id: str,
    severity: str,
    rule_name: str,
    fallback: bool,
) -> None:
    """Log an alert event."""
    logger = logging.getLogger("frauddesk.alerts")
    logger.warning(
        "Alert created",
        extra={
            "alert_id": alert_id,
            "transaction_id": transaction_id,
            "severity": severity,
            "rule_name": rule_name,
        },
    )

    Metrics.alerts_created_total.labels(
        severity=severity,
        kind="fallback" if fallback else "rule",
    ).inc()
