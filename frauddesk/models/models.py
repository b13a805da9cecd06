"""
FraudDesk — ORM Models (PostgreSQL / SQLite)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON, Column, String, Integer, Numeric, Boolean, DateTime, Text, ForeignKey, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship

from frauddesk.services.db import Base

# JSONB on PostgreSQL, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow():
    return datetime.now(timezone.utc)


def _uuid4():
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Enumerations (stored as their string values)
# ---------------------------------------------------------------------------
class AlertSeverity(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class AlertStatus(str, Enum):
    PENDING = "Pending"
    IN_REVIEW = "InReview"
    RESOLVED = "Resolved"


class CaseStatus(str, Enum):
    OPEN = "Open"
    UNDER_INVESTIGATION = "UnderInvestigation"
    CLOSED = "Closed"


class TransactionStatus(str, Enum):
    NORMAL = "Normal"
    FLAGGED = "Flagged"


class UserRole(str, Enum):
    ADMIN = "Admin"
    ANALYST = "Analyst"
    INVESTIGATOR = "Investigator"
    VIEWER = "Viewer"


# ---------------------------------------------------------------------------
# Transaction  (financial fields immutable; risk fields set once at creation)
# ---------------------------------------------------------------------------
class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_sender_created", "sender_account_number", "created_at"),
        Index("ix_transactions_receiver_created", "receiver_account_number", "created_at"),
        Index("ix_transactions_risk_score", "risk_score"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    sender_account_number: str = Column(String(64), nullable=False)
    receiver_account_number: str = Column(String(64), nullable=False)
    transaction_type: str = Column(String(64), nullable=False)       # e.g. Transfer, Withdrawal, POS
    amount = Column(Numeric(18, 2), nullable=False)
    location: str = Column(String(128), nullable=True)               # e.g. NG-LAGOS
    device: str = Column(String(256), nullable=True)
    ip_address: str = Column(String(45), nullable=True)
    risk_score: int = Column(Integer, default=0, nullable=False)      # 0 – 100
    is_flagged: bool = Column(Boolean, default=False, nullable=False)
    status: str = Column(String(16), default=TransactionStatus.NORMAL.value)  # Normal | Flagged
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)

    alerts = relationship("Alert", back_populates="transaction", lazy="selectin")


# ---------------------------------------------------------------------------
# Rule  (dynamic, CRUD-able matching conditions)
# ---------------------------------------------------------------------------
class Rule(Base):
    __tablename__ = "rules"

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    name: str = Column(String(128), nullable=False)                  # e.g. "High Value Transaction"
    field: str = Column(String(32), nullable=False)                  # Amount | Device | Location | TransactionType
    condition: str = Column(String(32), nullable=False)              # GreaterThan | Equals | In | NotIn | …
    value: str = Column(Text, nullable=False)                        # "500000", "NG-LAGOS,NG-ABUJA"
    is_enabled: bool = Column(Boolean, default=True, nullable=False)
    severity: str = Column(String(16), default=AlertSeverity.MEDIUM.value, nullable=False)
    severity_weight: int = Column(Integer, default=25, nullable=False)  # 0 – 100, clamped at evaluation
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# Alert  (one per attributed rule, or one fallback)
# ---------------------------------------------------------------------------
class Alert(Base):
    __tablename__ = "alerts"
    __table_args__ = (
        Index("ix_alerts_severity_created", "severity", "created_at"),
        Index("ix_alerts_status", "status"),
        Index("ix_alerts_rule_name", "rule_name"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    transaction_id: str = Column(String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)
    severity: str = Column(String(16), nullable=False)                # Low | Medium | High | Critical
    status: str = Column(String(16), default=AlertStatus.PENDING.value)  # Pending | InReview | Resolved
    rule_name: str = Column(String(128), nullable=True)
    rule_snapshot: dict = Column(JSONType, nullable=True)             # matched rule as it was at scoring time
    resolved_at: datetime = Column(DateTime(timezone=True), nullable=True)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    transaction = relationship("Transaction", back_populates="alerts", lazy="selectin")


# ---------------------------------------------------------------------------
# Case  (investigation record; drives the alert status read filter)
# ---------------------------------------------------------------------------
class Case(Base):
    __tablename__ = "cases"
    __table_args__ = (
        Index("ix_cases_transaction", "transaction_id"),
        Index("ix_cases_status", "status"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    transaction_id: str = Column(String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False)
    status: str = Column(String(32), default=CaseStatus.OPEN.value)   # Open | UnderInvestigation | Closed
    assigned_to: str = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    notes: str = Column(Text, nullable=True)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
    updated_at: datetime = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------
class User(Base):
    __tablename__ = "users"

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    username: str = Column(String(64), unique=True, nullable=False)
    email: str = Column(String(256), unique=True, nullable=False)
    full_name: str = Column(String(128), nullable=True)
    hashed_password: str = Column(String(256), nullable=False)
    role: str = Column(String(16), default=UserRole.VIEWER.value, nullable=False)
    is_active: bool = Column(Boolean, default=True, nullable=False)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)


# ---------------------------------------------------------------------------
# AuditLog  (immutable append-only)
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_logs"
    __table_args__ = (
        Index("ix_audit_logs_transaction_created", "transaction_id", "created_at"),
        Index("ix_audit_logs_actor", "actor"),
    )

    id: str = Column(String(36), primary_key=True, default=_uuid4)
    transaction_id: str = Column(String(36), ForeignKey("transactions.id", ondelete="CASCADE"), nullable=True)
    actor: str = Column(String(128), nullable=False)                  # system | api:<username>
    action: str = Column(String(64), nullable=False)                  # TRANSACTION_CREATED | ALERT_UPDATED | …
    details: dict = Column(JSONType, default=dict)
    created_at: datetime = Column(DateTime(timezone=True), default=_utcnow)
