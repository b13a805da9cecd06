"""
FraudDesk — rule engine unit tests (no database)
"""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

import pytest

from frauddesk.config import settings
from frauddesk.models.models import AlertSeverity, Rule, Transaction
from frauddesk.rules import engine
from frauddesk.rules.default_rules import DEFAULT_RULES
from frauddesk.rules.engine import (
    RULE_CONDITIONS,
    RULE_FIELDS,
    attribute_rules,
    clamp_weight,
    compute_risk_score,
    evaluate_transaction,
    extract_field,
    rule_matches,
    score_band_bounds,
    severity_for_score,
)


# ===========================================================================
# Helpers
# ===========================================================================
def _make_transaction(**kwargs) -> Transaction:
    defaults = dict(
        sender_account_number="0011223344",
        receiver_account_number="9988776655",
        transaction_type="Transfer",
        amount=Decimal("1000.00"),
        location="NG-KANO",
        device="iPhone 15",
        ip_address="10.0.0.1",
    )
    defaults.update(kwargs)
    return Transaction(**defaults)


def _make_rule(
    name="Test Rule",
    field="Amount",
    condition="GreaterThan",
    value="500000",
    weight=40,
    severity="High",
    is_enabled=True,
) -> Rule:
    return Rule(
        name=name,
        field=field,
        condition=condition,
        value=value,
        severity=severity,
        severity_weight=weight,
        is_enabled=is_enabled,
    )


def _default_rules():
    return [Rule(**{"is_enabled": True, **data}) for data in DEFAULT_RULES]


# ===========================================================================
# ── Field extraction ───────────────────────────────────────────────────────
# ===========================================================================
class TestFieldExtractor:
    def test_amount_is_plain_decimal_text(self):
        txn = _make_transaction(amount=Decimal("1E+6"))
        assert extract_field(txn, "Amount") == "1000000"

    def test_field_name_is_case_insensitive(self):
        txn = _make_transaction(transaction_type="POS")
        assert extract_field(txn, "transactiontype") == "POS"

    def test_missing_optional_field_is_empty(self):
        txn = _make_transaction(device=None)
        assert extract_field(txn, "Device") == ""

    def test_unknown_field_is_empty(self):
        assert extract_field(_make_transaction(), "Merchant") == ""


# ===========================================================================
# ── Comparators ─────────────────────────────────────────────────────────────
# ===========================================================================
class TestComparators:
    def test_greater_than_numeric(self):
        txn = _make_transaction(amount=Decimal("600000.00"))
        assert rule_matches(txn, _make_rule(value="500000"))
        assert not rule_matches(txn, _make_rule(value="600000"))

    def test_greater_than_accepts_group_separators(self):
        txn = _make_transaction(amount=Decimal("600000.00"))
        assert rule_matches(txn, _make_rule(value="500,000"))
        assert rule_matches(txn, _make_rule(value=" 500,000.50 "))
        assert not rule_matches(txn, _make_rule(value="600,000"))

    def test_greater_than_rejects_exponent_and_underscores(self):
        txn = _make_transaction(amount=Decimal("600000.00"))
        assert not rule_matches(txn, _make_rule(value="5e5"))
        assert not rule_matches(txn, _make_rule(value="5E5"))
        assert not rule_matches(txn, _make_rule(value="500_000"))
        assert not rule_matches(txn, _make_rule(value="Infinity"))

    def test_less_than_handles_sign_and_bare_fraction(self):
        txn = _make_transaction(amount=Decimal("0.25"))
        rule = _make_rule(condition="LessThan", value=".5")
        assert rule_matches(txn, rule)
        assert not rule_matches(txn, _make_rule(condition="LessThan", value="-1"))

    def test_text_comparison_folds_case_without_expanding(self):
        rule = _make_rule(field="Location", condition="Equals", value="STRASSE")
        assert rule_matches(_make_transaction(location="strasse"), rule)
        assert not rule_matches(_make_transaction(location="straße"), rule)

    def test_greater_than_non_numeric_never_matches(self):
        txn = _make_transaction(device="9999")
        assert not rule_matches(txn, _make_rule(value="abc"))
        assert not rule_matches(txn, _make_rule(field="Location", value="5"))
        assert not rule_matches(txn, _make_rule(value="NaN"))

    def test_equals_is_case_insensitive(self):
        txn = _make_transaction(device="ANDROID emulator")
        rule = _make_rule(field="Device", condition="Equals", value="Android Emulator")
        assert rule_matches(txn, rule)

    def test_in_trims_and_ignores_case(self):
        txn = _make_transaction(location="ng-lagos")
        rule = _make_rule(field="Location", condition="In", value="NG-LAGOS, NG-ABUJA")
        assert rule_matches(txn, rule)

    def test_not_in(self):
        rule = _make_rule(field="Location", condition="NotIn", value="NG-LAGOS,NG-ABUJA")
        assert rule_matches(_make_transaction(location="NG-KANO"), rule)
        assert not rule_matches(_make_transaction(location="NG-Abuja"), rule)

    def test_condition_name_is_case_insensitive(self):
        txn = _make_transaction(amount=Decimal("600000"))
        assert rule_matches(txn, _make_rule(condition="greaterthan"))

    def test_unknown_condition_never_matches(self):
        txn = _make_transaction(amount=Decimal("600000"))
        assert not rule_matches(txn, _make_rule(condition="Between"))

    def test_attribution_only_comparators(self):
        txn = _make_transaction(amount=Decimal("100"), device="HeadlessChrome")
        assert rule_matches(txn, _make_rule(condition="LessThan", value="500"))
        assert rule_matches(txn, _make_rule(field="Device", condition="Contains", value="headless"))
        assert rule_matches(txn, _make_rule(field="Device", condition="NotEquals", value="iPhone"))

        for condition in ("LessThan", "Contains", "NotEquals"):
            rule = _make_rule(field="Device", condition=condition, value="headless")
            assert not rule_matches(txn, rule, engine.SCORING_OPERATORS)


# ===========================================================================
# ── Scoring ─────────────────────────────────────────────────────────────────
# ===========================================================================
class TestRiskScore:
    def test_no_rules_scores_zero(self):
        assert compute_risk_score(_make_transaction(), []) == 0

    def test_no_match_scores_zero_and_not_flagged(self):
        result = evaluate_transaction(_make_transaction(), [_make_rule()])
        assert result.risk_score == 0
        assert result.is_flagged is False
        assert result.status == "Normal"
        assert result.alerts == []

    def test_single_match_scores_its_weight(self):
        txn = _make_transaction(amount=Decimal("600000"))
        assert compute_risk_score(txn, [_make_rule(weight=40)]) == 40

    def test_disabled_rules_are_inert(self):
        txn = _make_transaction(amount=Decimal("600000"))
        rules = [_make_rule(weight=40, is_enabled=False)]
        assert compute_risk_score(txn, rules) == 0
        assert attribute_rules(txn, rules) == []

    def test_weights_are_clamped(self):
        assert clamp_weight(150) == 100
        assert clamp_weight(-5) == 0
        assert clamp_weight(None) == 0
        txn = _make_transaction(amount=Decimal("600000"))
        assert compute_risk_score(txn, [_make_rule(weight=150)]) == 100
        assert compute_risk_score(txn, [_make_rule(weight=-5)]) == 0

    def test_rescaled_when_raw_and_max_exceed_100(self):
        txn = _make_transaction(amount=Decimal("600000"), location="NG-LAGOS")
        rules = [
            _make_rule(name="A", weight=60),
            _make_rule(name="B", field="Location", condition="Equals", value="NG-LAGOS", weight=60),
        ]
        assert compute_risk_score(txn, rules) == 100

    def test_rescale_uses_total_enabled_weight(self):
        txn = _make_transaction(amount=Decimal("600000"), location="NG-LAGOS")
        rules = [
            _make_rule(name="A", weight=60),
            _make_rule(name="B", field="Location", condition="Equals", value="NG-LAGOS", weight=60),
            _make_rule(name="C", field="Device", condition="Equals", value="Android Emulator", weight=30),
        ]
        # 120 * 100 / 150
        assert compute_risk_score(txn, rules) == 80

    def test_not_rescaled_when_raw_is_at_most_100(self):
        txn = _make_transaction(amount=Decimal("600000"))
        rules = [
            _make_rule(name="A", weight=150),
            _make_rule(name="B", field="Device", condition="Equals", value="Android Emulator", weight=120),
        ]
        assert compute_risk_score(txn, rules) == 100

    def test_not_rescaled_when_only_a_fraction_matches(self):
        txn = _make_transaction(amount=Decimal("600000"))
        rules = [
            _make_rule(name="A", weight=30),
            _make_rule(name="B", field="Device", condition="Equals", value="Android Emulator", weight=90),
        ]
        assert compute_risk_score(txn, rules) == 30


# ===========================================================================
# ── Flagging & alert drafts ────────────────────────────────────────────────
# ===========================================================================
class TestEvaluateTransaction:
    def test_default_rules_high_value_in_lagos(self):
        txn = _make_transaction(amount=Decimal("600000.00"), location="NG-LAGOS")
        result = evaluate_transaction(txn, _default_rules())

        assert result.risk_score == 70
        assert result.is_flagged is True
        assert result.status == "Flagged"
        assert [a.rule_name for a in result.alerts] == [
            "High Value Transaction",
            "High Risk Location",
        ]
        assert [a.severity for a in result.alerts] == [AlertSeverity.HIGH, AlertSeverity.MEDIUM]
        assert severity_for_score(result.risk_score) is AlertSeverity.HIGH

    def test_alert_carries_rule_snapshot(self):
        txn = _make_transaction(amount=Decimal("600000"))
        result = evaluate_transaction(txn, [_make_rule(name="Big", weight=140)])
        snapshot = result.alerts[0].rule_snapshot
        assert snapshot["name"] == "Big"
        assert snapshot["field"] == "Amount"
        assert snapshot["condition"] == "GreaterThan"
        assert snapshot["value"] == "500000"
        assert snapshot["severity"] == "High"
        assert snapshot["severity_weight"] == 100

    def test_contains_rule_alone_does_not_flag(self):
        txn = _make_transaction(device="Android Emulator")
        rules = [_make_rule(field="Device", condition="Contains", value="emul", weight=30)]
        result = evaluate_transaction(txn, rules)
        assert result.risk_score == 0
        assert result.is_flagged is False
        assert result.alerts == []

    def test_attribution_uses_wider_comparator_set(self):
        txn = _make_transaction(amount=Decimal("600000"), device="Android Emulator")
        rules = [
            _make_rule(name="Amount", weight=20, severity="Low"),
            _make_rule(name="Emu", field="Device", condition="Contains", value="emul", weight=30),
        ]
        result = evaluate_transaction(txn, rules)
        assert result.risk_score == 20
        assert [a.rule_name for a in result.alerts] == ["Amount", "Emu"]

    def test_fallback_alert_when_nothing_attributed(self, monkeypatch):
        monkeypatch.setattr(engine, "attribute_rules", lambda txn, rules: [])
        txn = _make_transaction(amount=Decimal("600000"))
        result = evaluate_transaction(txn, [_make_rule(weight=70)])

        assert result.risk_score == 70
        assert len(result.alerts) == 1
        alert = result.alerts[0]
        assert alert.rule_name == settings.FALLBACK_RULE_NAME == "RuleEngine:AutoFlag"
        assert alert.severity is AlertSeverity.HIGH
        assert alert.rule_snapshot is None

    def test_unknown_severity_defaults_to_medium(self):
        txn = _make_transaction(amount=Decimal("600000"))
        result = evaluate_transaction(txn, [_make_rule(severity="Severe")])
        assert result.alerts[0].severity is AlertSeverity.MEDIUM

    def test_concurrent_evaluations_are_isolated(self):
        rules = _default_rules()
        txns = [
            _make_transaction(
                amount=Decimal(100_000 * (i % 70)),
                location="NG-LAGOS" if i % 3 == 0 else "NG-KANO",
                device="Android Emulator" if i % 5 == 0 else "iPhone",
            )
            for i in range(200)
        ]
        expected = [evaluate_transaction(t, rules) for t in txns]

        with ThreadPoolExecutor(max_workers=8) as pool:
            actual = list(pool.map(lambda t: evaluate_transaction(t, rules), txns))

        assert actual == expected


# ===========================================================================
# ── Severity banding ───────────────────────────────────────────────────────
# ===========================================================================
class TestSeverityBands:
    @pytest.mark.parametrize("score,expected", [
        (100, AlertSeverity.CRITICAL),
        (90, AlertSeverity.CRITICAL),
        (89, AlertSeverity.HIGH),
        (70, AlertSeverity.HIGH),
        (69, AlertSeverity.MEDIUM),
        (40, AlertSeverity.MEDIUM),
        (39, AlertSeverity.LOW),
        (1, AlertSeverity.LOW),
    ])
    def test_severity_for_score(self, score, expected):
        assert severity_for_score(score) is expected

    def test_score_band_bounds(self):
        assert score_band_bounds(AlertSeverity.CRITICAL) == (90, None)
        assert score_band_bounds(AlertSeverity.HIGH) == (70, 90)
        assert score_band_bounds(AlertSeverity.MEDIUM) == (40, 70)
        assert score_band_bounds(AlertSeverity.LOW) == (0, 40)


class TestDefaultRules:
    def test_all_default_rules_are_valid(self):
        for data in DEFAULT_RULES:
            assert data["field"] in RULE_FIELDS
            assert data["condition"] in RULE_CONDITIONS
            assert 0 <= data["severity_weight"] <= 100
            assert AlertSeverity(data["severity"])

    def test_disabled_default_rule_is_skipped(self):
        txn = _make_transaction(device="HeadlessChrome")
        rules = [Rule(**data) for data in DEFAULT_RULES]
        for rule in rules:
            if rule.is_enabled is None:
                rule.is_enabled = True
        assert "Headless Browser Device" not in [r.name for r in attribute_rules(txn, rules)]
