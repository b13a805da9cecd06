"""
FraudDesk — Rule Evaluation Engine
Scores a transaction against the configured rules and works out which rules
an alert should be attributed to.

Two comparator registries are kept on purpose:

* SCORING_OPERATORS      — GreaterThan, Equals, In, NotIn.  Only these add
                           weight to the risk score.
* ATTRIBUTION_OPERATORS  — the scoring set plus LessThan, NotEquals and
                           Contains.  Used after a transaction is flagged to
                           decide which rules the alerts name.

A rule that matches only under the attribution set can therefore raise an
alert without having contributed to the score.

Malformed input never raises: unparseable numbers, unknown fields and unknown
conditions all mean "rule does not match".
"""

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from frauddesk.config import settings
from frauddesk.models.models import AlertSeverity, TransactionStatus

logger = logging.getLogger("frauddesk.rules")

MIN_WEIGHT = 0
MAX_WEIGHT = 100
SCORE_CEILING = 100

# Canonical spellings; matching is case-insensitive
RULE_FIELDS = ("Amount", "Device", "Location", "TransactionType")
RULE_CONDITIONS = (
    "GreaterThan", "LessThan", "Equals", "NotEquals", "Contains", "In", "NotIn",
)


# ===========================================================================
# Value helpers
# ===========================================================================

def clamp_weight(weight: Any) -> int:
    """Clamp a stored severity weight into [0, 100]."""
    try:
        value = int(weight)
    except (TypeError, ValueError):
        return MIN_WEIGHT
    return max(MIN_WEIGHT, min(MAX_WEIGHT, value))


# optional sign, digits with "," group separators, optional fraction
_NUMBER_RE = re.compile(r"\s*([+-]?)((?:\d[\d,]*)?)(?:\.(\d*))?\s*", re.ASCII)


def _parse_decimal(text: str) -> Optional[Decimal]:
    """Plain decimal text only: no exponents, underscores, NaN or Infinity."""
    match = _NUMBER_RE.fullmatch(text or "")
    if match is None:
        return None
    sign, whole, fraction = match.groups()
    whole = whole.replace(",", "")
    if not whole and not fraction:
        return None
    return Decimal(f"{sign}{whole or 0}.{fraction or 0}")


def _amount_text(amount: Any) -> str:
    """Plain decimal string of an amount (never scientific notation)."""
    if amount is None:
        return ""
    if not isinstance(amount, Decimal):
        try:
            amount = Decimal(str(amount))
        except InvalidOperation:
            return str(amount)
    return format(amount, "f")


def _candidates(rule_value: str) -> List[str]:
    return [part.strip().lower() for part in rule_value.split(",")]


# ===========================================================================
# Field extractor
# ===========================================================================
# rule.field (case-insensitive) → how to read it off the transaction

_FIELD_READERS: Dict[str, Callable[[Any], str]] = {
    "amount":          lambda txn: _amount_text(getattr(txn, "amount", None)),
    "device":          lambda txn: getattr(txn, "device", None) or "",
    "location":        lambda txn: getattr(txn, "location", None) or "",
    "transactiontype": lambda txn: getattr(txn, "transaction_type", None) or "",
}


def extract_field(transaction: Any, field_name: Optional[str]) -> str:
    """Unknown or missing fields resolve to the empty string."""
    reader = _FIELD_READERS.get((field_name or "").lower())
    if reader is None:
        return ""
    return str(reader(transaction))


# ===========================================================================
# Operator registry
# Each operator receives (field_value, rule_value) as strings and returns bool.
# ===========================================================================

def _op_greater_than(value: str, target: str) -> bool:
    left, right = _parse_decimal(value), _parse_decimal(target)
    if left is None or right is None:
        return False
    return left > right


def _op_less_than(value: str, target: str) -> bool:
    left, right = _parse_decimal(value), _parse_decimal(target)
    if left is None or right is None:
        return False
    return left < right


def _op_equals(value: str, target: str) -> bool:
    return value.lower() == target.lower()


def _op_not_equals(value: str, target: str) -> bool:
    return not _op_equals(value, target)


def _op_contains(value: str, target: str) -> bool:
    return target.lower() in value.lower()


def _op_in(value: str, target: str) -> bool:
    return value.lower() in _candidates(target)


def _op_not_in(value: str, target: str) -> bool:
    return not _op_in(value, target)


SCORING_OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    "greaterthan": _op_greater_than,
    "equals":      _op_equals,
    "in":          _op_in,
    "notin":       _op_not_in,
}

ATTRIBUTION_OPERATORS: Dict[str, Callable[[str, str], bool]] = {
    **SCORING_OPERATORS,
    "lessthan":    _op_less_than,
    "notequals":   _op_not_equals,
    "contains":    _op_contains,
}


# ===========================================================================
# Single-rule evaluator
# ===========================================================================

def rule_matches(
    transaction: Any,
    rule: Any,
    operators: Dict[str, Callable[[str, str], bool]] = ATTRIBUTION_OPERATORS,
) -> bool:
    op_fn = operators.get((getattr(rule, "condition", None) or "").lower())
    if op_fn is None:
        return False
    value = extract_field(transaction, getattr(rule, "field", None))
    return op_fn(value, getattr(rule, "value", None) or "")


def enabled_rules(rules: Iterable[Any]) -> List[Any]:
    return [rule for rule in rules if getattr(rule, "is_enabled", False)]


# ===========================================================================
# Scoring
# ===========================================================================

def compute_risk_score(transaction: Any, rules: Iterable[Any]) -> int:
    """
    Sum the clamped weights of every enabled rule that matches under the
    scoring comparators.

    The sum is rescaled to 100 only when it exceeds 100 *and* the total
    weight of all enabled rules exceeds 100.  Otherwise the raw sum is
    returned, which can be above 100 when the enabled weights total <= 100
    or the raw sum itself is not above 100.
    """
    active = enabled_rules(rules)
    max_possible_score = sum(clamp_weight(rule.severity_weight) for rule in active)

    score = 0
    for rule in active:
        if rule_matches(transaction, rule, SCORING_OPERATORS):
            score += clamp_weight(rule.severity_weight)
            logger.debug(
                "Rule '%s' matched (weight=%d)", getattr(rule, "name", rule), clamp_weight(rule.severity_weight),
            )

    if score > SCORE_CEILING and max_possible_score > SCORE_CEILING:
        score = int(round(score * SCORE_CEILING / max_possible_score))
    return score


def attribute_rules(transaction: Any, rules: Iterable[Any]) -> List[Any]:
    """Enabled rules that match under the attribution comparators, in input order."""
    return [
        rule for rule in enabled_rules(rules)
        if rule_matches(transaction, rule, ATTRIBUTION_OPERATORS)
    ]


# ===========================================================================
# Severity banding
# ===========================================================================

def severity_for_score(score: int) -> AlertSeverity:
    if score >= settings.SEVERITY_CRITICAL_MIN:
        return AlertSeverity.CRITICAL
    if score >= settings.SEVERITY_HIGH_MIN:
        return AlertSeverity.HIGH
    if score >= settings.SEVERITY_MEDIUM_MIN:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def score_band_bounds(severity: AlertSeverity) -> Tuple[int, Optional[int]]:
    """
    Read-side bucket for a severity as (lower, upper) on the stored risk score.

    lower is inclusive except for Low, whose lower bound 0 is exclusive;
    upper is exclusive and None means unbounded.
    """
    severity = AlertSeverity(severity)
    if severity is AlertSeverity.CRITICAL:
        return settings.SEVERITY_CRITICAL_MIN, None
    if severity is AlertSeverity.HIGH:
        return settings.SEVERITY_HIGH_MIN, settings.SEVERITY_CRITICAL_MIN
    if severity is AlertSeverity.MEDIUM:
        return settings.SEVERITY_MEDIUM_MIN, settings.SEVERITY_HIGH_MIN
    return 0, settings.SEVERITY_MEDIUM_MIN


def coerce_severity(value: Any, default: AlertSeverity = AlertSeverity.MEDIUM) -> AlertSeverity:
    """Case-insensitive lookup of a stored severity string."""
    if isinstance(value, AlertSeverity):
        return value
    for member in AlertSeverity:
        if str(value or "").lower() == member.value.lower():
            return member
    return default


# ===========================================================================
# Public API
# ===========================================================================

@dataclass(frozen=True)
class AlertDraft:
    severity: AlertSeverity
    rule_name: str
    rule_snapshot: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class RuleEvaluation:
    risk_score: int
    is_flagged: bool
    status: str
    alerts: List[AlertDraft] = field(default_factory=list)


def rule_snapshot(rule: Any) -> Dict[str, Any]:
    """Copy of the defining fields of a rule, stored on the alert it raised."""
    return {
        "id": getattr(rule, "id", None),
        "name": getattr(rule, "name", None),
        "field": getattr(rule, "field", None),
        "condition": getattr(rule, "condition", None),
        "value": getattr(rule, "value", None),
        "severity": coerce_severity(getattr(rule, "severity", None)).value,
        "severity_weight": clamp_weight(getattr(rule, "severity_weight", 0)),
    }


def evaluate_transaction(transaction: Any, rules: Iterable[Any]) -> RuleEvaluation:
    """
    Score *transaction* and, when flagged, draft its alerts.

    Returns
    -------
    RuleEvaluation with
        risk_score : int   – see compute_risk_score
        is_flagged : bool  – risk_score > 0
        status     : str   – "Flagged" | "Normal"
        alerts     : list  – one AlertDraft per attributed rule, or a single
                             score-banded fallback when none is attributed
    """
    rules = list(rules)
    score = compute_risk_score(transaction, rules)
    is_flagged = score > 0
    status = TransactionStatus.FLAGGED.value if is_flagged else TransactionStatus.NORMAL.value

    if not is_flagged:
        return RuleEvaluation(risk_score=score, is_flagged=False, status=status)

    matched = attribute_rules(transaction, rules)
    if matched:
        alerts = [
            AlertDraft(
                severity=coerce_severity(rule.severity),
                rule_name=rule.name,
                rule_snapshot=rule_snapshot(rule),
            )
            for rule in matched
        ]
    else:
        logger.info("No rule attributed for flagged score=%d; using fallback alert.", score)
        alerts = [
            AlertDraft(
                severity=severity_for_score(score),
                rule_name=settings.FALLBACK_RULE_NAME,
            )
        ]
    return RuleEvaluation(risk_score=score, is_flagged=True, status=status, alerts=alerts)
