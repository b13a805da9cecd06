"""
FraudDesk — Pydantic Schemas (Request / Response DTOs)

All schemas include:
- Input validation with constraints
- Configuration for ORM serialization
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict
from ipaddress import ip_address

from frauddesk.config import settings
from frauddesk.models.models import AlertSeverity, AlertStatus, CaseStatus, UserRole
from frauddesk.rules.engine import RULE_CONDITIONS, RULE_FIELDS


def _canonical(value: str, allowed: tuple, label: str) -> str:
    for option in allowed:
        if value.strip().lower() == option.lower():
            return option
    raise ValueError(f"Unsupported {label} '{value}'. Allowed: {', '.join(allowed)}")


def _severity_lookup(value: Any) -> Any:
    if isinstance(value, str):
        for member in AlertSeverity:
            if value.strip().lower() == member.value.lower():
                return member
    return value


# ===========================================================================
# Transaction
# ===========================================================================
class TransactionCreate(BaseModel):
    """Inbound payload from the ingestion endpoint or the Kafka consumer."""
    sender_account_number: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r'^[a-zA-Z0-9\-_]+$',
        description="Sender account number"
    )
    receiver_account_number: str = Field(
        ...,
        min_length=1,
        max_length=64,
        pattern=r'^[a-zA-Z0-9\-_]+$',
        description="Receiver account number"
    )
    transaction_type: str = Field(
        ...,
        min_length=1,
        max_length=64,
        description="e.g. Transfer | Withdrawal | POS | Deposit"
    )
    amount: Decimal = Field(
        ...,
        gt=0,
        le=Decimal(str(settings.MAX_TRANSACTION_AMOUNT)),
        max_digits=18,
        decimal_places=2,
        description="Transaction amount"
    )
    location: Optional[str] = Field(default=None, max_length=128, description="e.g. NG-LAGOS")
    device: Optional[str] = Field(default=None, max_length=256)
    ip_address: Optional[str] = Field(default=None, description="IPv4 or IPv6 address")

    @field_validator("ip_address")
    @classmethod
    def validate_ip_address(cls, v: Optional[str]) -> Optional[str]:
        """Validate IP address format."""
        if v:
            try:
                ip_address(v)
            except ValueError:
                raise ValueError(f"Invalid IP address: {v}")
        return v


class TransactionResponse(BaseModel):
    """Outbound transaction response."""
    id: str
    sender_account_number: str
    receiver_account_number: str
    transaction_type: str
    amount: float
    location: Optional[str] = None
    device: Optional[str] = None
    ip_address: Optional[str] = None
    risk_score: int
    is_flagged: bool
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TransactionListResponse(BaseModel):
    """Paginated transaction list."""
    total: int
    page: int
    page_size: int
    items: List[TransactionResponse]


class TriggeredRule(BaseModel):
    rule_name: str
    description: str
    severity: Optional[str] = None


class CustomerInfo(BaseModel):
    name: str
    account_number: str
    customer_since: datetime
    average_transaction_value: float


class TransactionDetailsResponse(BaseModel):
    transaction: TransactionResponse
    triggered_rules: List[TriggeredRule]
    sender: Optional[CustomerInfo] = None
    receiver: Optional[CustomerInfo] = None


# ===========================================================================
# Rule
# ===========================================================================
class RuleCreate(BaseModel):
    """Create (or fully replace) a rule."""
    name: str = Field(..., min_length=1, max_length=128)
    field: str = Field(..., description="Amount | Device | Location | TransactionType")
    condition: str = Field(
        ...,
        description="GreaterThan | LessThan | Equals | NotEquals | Contains | In | NotIn",
    )
    value: str = Field(..., max_length=2000, description="Operand; comma-separated for In / NotIn")
    is_enabled: bool = True
    severity: AlertSeverity = AlertSeverity.MEDIUM
    severity_weight: int = Field(default=25, ge=0, le=100)

    @field_validator("field")
    @classmethod
    def canonical_field(cls, v: str) -> str:
        return _canonical(v, RULE_FIELDS, "field")

    @field_validator("condition")
    @classmethod
    def canonical_condition(cls, v: str) -> str:
        return _canonical(v, RULE_CONDITIONS, "condition")

    @field_validator("severity", mode="before")
    @classmethod
    def case_insensitive_severity(cls, v: Any) -> Any:
        return _severity_lookup(v)


class RuleUpdate(BaseModel):
    """Partial update of a rule."""
    name: Optional[str] = Field(default=None, min_length=1, max_length=128)
    field: Optional[str] = None
    condition: Optional[str] = None
    value: Optional[str] = Field(default=None, max_length=2000)
    is_enabled: Optional[bool] = None
    severity: Optional[AlertSeverity] = None
    severity_weight: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("field")
    @classmethod
    def canonical_field(cls, v: Optional[str]) -> Optional[str]:
        return _canonical(v, RULE_FIELDS, "field") if v is not None else v

    @field_validator("condition")
    @classmethod
    def canonical_condition(cls, v: Optional[str]) -> Optional[str]:
        return _canonical(v, RULE_CONDITIONS, "condition") if v is not None else v

    @field_validator("severity", mode="before")
    @classmethod
    def case_insensitive_severity(cls, v: Any) -> Any:
        return _severity_lookup(v)


class RuleResponse(BaseModel):
    """Rule response."""
    id: str
    name: str
    field: str
    condition: str
    value: str
    is_enabled: bool
    severity: str
    severity_weight: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ===========================================================================
# Alert
# ===========================================================================
class AlertResponse(BaseModel):
    """Alert response."""
    id: str
    transaction_id: str
    severity: str
    status: str
    rule_name: Optional[str]
    rule_snapshot: Optional[Dict[str, Any]] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AlertDetailResponse(AlertResponse):
    transaction: TransactionResponse


class AlertUpdate(BaseModel):
    """Move an alert forward: Pending → InReview → Resolved."""
    status: AlertStatus


class FlaggedTransactionListResponse(BaseModel):
    """Paginated flagged transactions, bucketed by score band on request."""
    total: int
    page: int
    page_size: int
    items: List[TransactionResponse]


class TopAccount(BaseModel):
    account_number: str
    count: int


# ===========================================================================
# Case
# ===========================================================================
class CaseCreate(BaseModel):
    transaction_id: str
    assigned_to: Optional[str] = Field(default=None, description="User id of the investigator")
    notes: Optional[str] = Field(default=None, max_length=4000)


class CaseUpdate(BaseModel):
    status: Optional[CaseStatus] = None
    assigned_to: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=4000)


class CaseResponse(BaseModel):
    id: str
    transaction_id: str
    status: str
    assigned_to: Optional[str]
    notes: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


# ===========================================================================
# User
# ===========================================================================
class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=64, pattern=r'^[a-zA-Z0-9._\-]+$')
    email: str = Field(..., min_length=3, max_length=256, pattern=r'^[^@\s]+@[^@\s]+$')
    full_name: Optional[str] = Field(default=None, max_length=128)
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.VIEWER


class UserUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=128)
    role: Optional[UserRole] = None
    is_active: Optional[bool] = None
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    full_name: Optional[str]
    role: str
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ===========================================================================
# Dashboard
# ===========================================================================
class DashboardSummary(BaseModel):
    """Dashboard summary stats."""
    total_transactions: int
    flagged_transactions: int
    total_alerts_pending: int
    total_alerts_critical: int
    avg_risk_score: float
    top_risk_transactions: List[TransactionResponse]
    alert_distribution: Dict[str, int]       # stored alert severity
    score_band_distribution: Dict[str, int]  # severity band of the stored risk score


# ===========================================================================
# Health
# ===========================================================================
class HealthCheck(BaseModel):
    """Health check response."""
    status: str  # healthy | degraded | unhealthy
    db: str
    kafka: str
    uptime_seconds: float
    version: str


# ===========================================================================
# Authentication
# ===========================================================================
class TokenResponse(BaseModel):
    """JWT token response."""
    access_token: str = Field(..., description="Access token (JWT)")
    refresh_token: str = Field(..., description="Refresh token")
    token_type: str = Field(default="bearer")
    expires_in: int = Field(..., description="Token expiration in seconds")


class LoginRequest(BaseModel):
    username: str
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str
