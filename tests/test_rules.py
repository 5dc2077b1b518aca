"""Tests for the closed operator set and pure rule evaluation."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

import pytest

from txn_monitoring.rules import EvaluationResult, Operator, evaluate
from txn_monitoring.rules.base import compute_rule_hash
from txn_monitoring.rules.operators import OperatorError, apply_operator, to_decimal


@dataclass
class FakeRule:
    id: int
    rule_name: str
    field: str
    operator: str
    value: str
    status: str = "ACTIVE"


TXN = {
    "transaction_id": "txn_001",
    "user_id": "user_001",
    "amount": Decimal("150000"),
    "currency": "USD",
    "country": "US",
}


@pytest.mark.parametrize(
    ("op", "actual", "raw", "expected"),
    [
        (Operator.GREATER_THAN, Decimal("150000"), "100000", True),
        (Operator.GREATER_THAN, Decimal("100000"), "100000", False),
        (Operator.GREATER_THAN_OR_EQUAL, Decimal("100000"), "100000", True),
        (Operator.LESS_THAN, 5, "10.5", True),
        (Operator.LESS_THAN_OR_EQUAL, 10.5, "10.50", True),
        (Operator.EQUAL, "USD", "USD", True),
        (Operator.EQUAL, "usd", "USD", False),
        (Operator.NOT_EQUAL, "US", "GB", True),
        (Operator.IN, "GB", "US, GB ,FR", True),
        (Operator.IN, "DE", "US,GB,FR", False),
        (Operator.IN, Decimal("200"), "100,200.00", True),
    ],
)
def test_apply_operator(op, actual, raw, expected) -> None:
    assert apply_operator(op, actual, raw) is expected


def test_numeric_comparison_is_not_lexicographic() -> None:
    """'9' > '10' as strings; numerically it is not."""
    assert apply_operator("GREATER_THAN", Decimal("9"), "10") is False


def test_numeric_runtime_value_with_non_numeric_rule_value_raises() -> None:
    with pytest.raises(OperatorError):
        apply_operator(Operator.GREATER_THAN, Decimal("5"), "lots")


def test_unknown_operator_raises() -> None:
    with pytest.raises(OperatorError):
        apply_operator("CONTAINS", "abc", "a")


def test_to_decimal_rejects_non_finite() -> None:
    with pytest.raises(OperatorError):
        to_decimal("NaN")
    with pytest.raises(OperatorError):
        to_decimal("Infinity")


def test_evaluate_flags_matching_rule() -> None:
    rules = [FakeRule(1, "Big", "amount", "GREATER_THAN", "100000")]
    result = evaluate(TXN, rules)
    assert isinstance(result, EvaluationResult)
    assert result.flagged is True
    assert result.matched_rule_names == ["Big"]
    assert result.errors == []


def test_evaluate_no_match() -> None:
    rules = [FakeRule(1, "Big", "amount", "GREATER_THAN", "100000")]
    result = evaluate({**TXN, "amount": Decimal("500")}, rules)
    assert result.flagged is False
    assert result.matched_rule_names == []


def test_evaluate_keeps_rule_order_and_duplicates() -> None:
    """Matched names follow rule-set order; same-named rules are not deduplicated."""
    rules = [
        FakeRule(1, "Country", "country", "EQUAL", "US"),
        FakeRule(2, "Big", "amount", "GREATER_THAN", "1"),
        FakeRule(3, "Country", "currency", "IN", "USD,EUR"),
    ]
    result = evaluate(TXN, rules)
    assert result.matched_rule_names == ["Country", "Big", "Country"]
    assert [r.id for r in result.matched_rules] == [1, 2, 3]


def test_evaluate_skips_non_active_rules() -> None:
    rules = [
        FakeRule(1, "Draft", "amount", "GREATER_THAN", "1", status="DRAFT"),
        FakeRule(2, "Archived", "amount", "GREATER_THAN", "1", status="ARCHIVED"),
    ]
    assert evaluate(TXN, rules).flagged is False


def test_evaluate_records_errors_and_continues() -> None:
    """A broken rule is reported and never prevents later rules from matching."""
    rules = [
        FakeRule(1, "Missing field", "merchant", "EQUAL", "x"),
        FakeRule(2, "Bad value", "amount", "GREATER_THAN", "not-a-number"),
        FakeRule(3, "Bad operator", "amount", "CONTAINS", "1"),
        FakeRule(4, "Big", "amount", "GREATER_THAN", "100000"),
    ]
    result = evaluate(TXN, rules)
    assert result.flagged is True
    assert result.matched_rule_names == ["Big"]
    assert [e.rule_id for e in result.errors] == [1, 2, 3]


def test_evaluate_missing_transaction_value_is_an_error() -> None:
    rules = [FakeRule(1, "User", "user_id", "EQUAL", "u1")]
    result = evaluate({"amount": 1}, rules)
    assert result.flagged is False
    assert len(result.errors) == 1


def test_evaluate_is_pure() -> None:
    """Same input, same output; inputs are not mutated."""
    rules = [FakeRule(1, "Big", "amount", "GREATER_THAN", "100")]
    txn = dict(TXN)
    first = evaluate(txn, rules)
    second = evaluate(txn, rules)
    assert first.matched_rule_names == second.matched_rule_names
    assert txn == TXN
    assert rules[0].value == "100"


def test_evaluate_reads_attributes() -> None:
    @dataclass
    class Txn:
        amount: Decimal
        currency: str

    rules = [FakeRule(1, "EUR", "currency", "EQUAL", "EUR")]
    assert evaluate(Txn(Decimal("1"), "EUR"), rules).flagged is True


def test_rule_hash_is_stable_and_content_sensitive() -> None:
    h1 = compute_rule_hash("R", "amount", "GREATER_THAN", "100", None)
    assert h1 == compute_rule_hash("R", "amount", "GREATER_THAN", "100", "")
    assert len(h1) == 64
    assert h1 != compute_rule_hash("R", "amount", "GREATER_THAN", "101", None)
    assert h1 != compute_rule_hash("R", "amount", "GREATER_THAN", "100", "EU")
