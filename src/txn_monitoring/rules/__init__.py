"""Organization-defined rules: vocabulary, evaluation, lifecycle, storage and crawler import."""

from txn_monitoring.rules.base import (
    Operator,
    RuleField,
    RuleSource,
    RuleStatus,
    compute_rule_hash,
)
from txn_monitoring.rules.evaluator import EvaluationResult, RuleError, evaluate

__all__ = [
    "EvaluationResult",
    "Operator",
    "RuleError",
    "RuleField",
    "RuleSource",
    "RuleStatus",
    "compute_rule_hash",
    "evaluate",
]
