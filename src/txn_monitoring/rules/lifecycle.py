"""Rule status lifecycle: valid transitions and validation."""

from __future__ import annotations

from txn_monitoring.errors import ValidationError
from txn_monitoring.rules.base import RuleStatus

RULE_STATUS_VALUES = frozenset(s.value for s in RuleStatus)

# Valid (from_status -> to_status). ARCHIVED cannot transition.
VALID_RULE_TRANSITIONS: dict[str, frozenset[str]] = {
    "DRAFT": frozenset({"ACTIVE", "ARCHIVED"}),
    "ACTIVE": frozenset({"ARCHIVED"}),
    "ARCHIVED": frozenset(),
}


def validate_rule_status_transition(current: str, new: str) -> None:
    """Raise ValidationError if transition from current to new is invalid."""
    if current not in RULE_STATUS_VALUES:
        raise ValidationError(f"Current status must be one of {sorted(RULE_STATUS_VALUES)}")
    if new not in RULE_STATUS_VALUES:
        raise ValidationError(
            f"New status must be one of {sorted(RULE_STATUS_VALUES)}", {"status": new}
        )
    allowed = VALID_RULE_TRANSITIONS.get(current, frozenset())
    if new not in allowed:
        raise ValidationError(
            f"Invalid transition: {current} -> {new}. Allowed from {current}: {sorted(allowed) or 'none'}",
            {"status": new},
        )
