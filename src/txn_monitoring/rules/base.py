"""Rule vocabulary: fields, operators, lifecycle states and the content hash."""

from __future__ import annotations

import hashlib
from enum import Enum


class RuleField(str, Enum):
    AMOUNT = "amount"
    CURRENCY = "currency"
    COUNTRY = "country"
    USER_ID = "user_id"
    TRANSACTION_ID = "transaction_id"


class Operator(str, Enum):
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_THAN_OR_EQUAL = "GREATER_THAN_OR_EQUAL"
    LESS_THAN_OR_EQUAL = "LESS_THAN_OR_EQUAL"
    EQUAL = "EQUAL"
    NOT_EQUAL = "NOT_EQUAL"
    IN = "IN"


class RuleStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class RuleSource(str, Enum):
    MANUAL = "manual"
    CRAWLER = "crawler"


def compute_rule_hash(
    rule_name: str, field: str, operator: str, value: str, jurisdiction: str | None
) -> str:
    """Content hash identifying a rule within an organization (sha256 hex)."""
    payload = f"{rule_name}|{field}|{operator}|{value}|{jurisdiction or ''}"
    return hashlib.sha256(payload.encode()).hexdigest()
