"""Starter rule set seeded for every new organization."""

from __future__ import annotations

from typing import Any

DEFAULT_RULES: tuple[dict[str, Any], ...] = (
    {
        "rule_name": "High-value transaction alert",
        "field": "amount",
        "operator": "GREATER_THAN",
        "value": "10000",
    },
    {
        "rule_name": "Transaction from a high-risk currency",
        "field": "currency",
        "operator": "EQUAL",
        "value": "POL",
    },
)
