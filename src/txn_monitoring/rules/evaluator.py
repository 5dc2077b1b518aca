"""Rule evaluation: pure, no I/O. Applies an organization's ACTIVE rules to one transaction."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from txn_monitoring.rules.base import RuleField, RuleStatus
from txn_monitoring.rules.operators import OperatorError, apply_operator

logger = logging.getLogger(__name__)

_MISSING = object()


@dataclass
class RuleError:
    rule_id: int | None
    rule_name: str
    message: str


@dataclass
class EvaluationResult:
    flagged: bool = False
    matched_rule_names: list[str] = field(default_factory=list)
    matched_rules: list[Any] = field(default_factory=list)
    errors: list[RuleError] = field(default_factory=list)


def _read_field(transaction: Any, name: str) -> Any:
    if isinstance(transaction, Mapping):
        return transaction.get(name, _MISSING)
    return getattr(transaction, name, _MISSING)


def evaluate(transaction: Any, rules: Iterable[Any]) -> EvaluationResult:
    """Apply each ACTIVE rule to the transaction; per-rule failures are collected, never raised.

    matched_rule_names keeps rule-set order and is not deduplicated.
    """
    result = EvaluationResult()
    for rule in rules:
        status = getattr(rule, "status", RuleStatus.ACTIVE.value)
        if str(getattr(status, "value", status)) != RuleStatus.ACTIVE.value:
            continue
        rule_id = getattr(rule, "id", None)
        field_name = str(getattr(rule.field, "value", rule.field))
        if field_name not in {f.value for f in RuleField}:
            _record_error(result, rule, rule_id, f"unsupported field: {field_name!r}")
            continue
        actual = _read_field(transaction, field_name)
        if actual is _MISSING or actual is None:
            _record_error(result, rule, rule_id, f"transaction has no field {field_name!r}")
            continue
        try:
            matched = apply_operator(rule.operator, actual, rule.value)
        except OperatorError as e:
            _record_error(result, rule, rule_id, str(e))
            continue
        if matched:
            result.matched_rule_names.append(rule.rule_name)
            result.matched_rules.append(rule)
    result.flagged = bool(result.matched_rules)
    return result


def _record_error(result: EvaluationResult, rule: Any, rule_id: int | None, message: str) -> None:
    logger.warning("Rule %s (%s) skipped: %s", rule_id, rule.rule_name, message)
    result.errors.append(RuleError(rule_id=rule_id, rule_name=rule.rule_name, message=message))
