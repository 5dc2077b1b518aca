"""Closed operator set: each Operator maps to a pure comparison function."""

from __future__ import annotations

import operator as _op
from collections.abc import Callable
from decimal import Decimal, InvalidOperation
from typing import Any

from txn_monitoring.rules.base import Operator


class OperatorError(Exception):
    """Rule cannot be applied to a value (unknown operator or uncoercible rule value)."""


_BINARY: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.GREATER_THAN: _op.gt,
    Operator.LESS_THAN: _op.lt,
    Operator.GREATER_THAN_OR_EQUAL: _op.ge,
    Operator.LESS_THAN_OR_EQUAL: _op.le,
    Operator.EQUAL: _op.eq,
    Operator.NOT_EQUAL: _op.ne,
}


def is_numeric(value: Any) -> bool:
    return isinstance(value, int | float | Decimal) and not isinstance(value, bool)


def to_decimal(value: Any) -> Decimal:
    """Coerce a runtime or rule value to Decimal; raises OperatorError when not a number."""
    if isinstance(value, Decimal):
        return value
    text = str(value).strip()
    try:
        out = Decimal(text)
    except InvalidOperation as err:
        raise OperatorError(f"not a number: {value!r}") from err
    if not out.is_finite():
        raise OperatorError(f"not a finite number: {value!r}")
    return out


def _coerce(actual: Any, raw: str) -> tuple[Any, Any]:
    if is_numeric(actual):
        return to_decimal(actual), to_decimal(raw)
    return str(actual), str(raw)


def apply_operator(operator: Operator | str, actual: Any, raw_value: str) -> bool:
    """Compare the transaction's runtime value against the rule's stored value.

    Numeric runtime values compare numerically; everything else compares as strings.
    IN treats raw_value as a comma-delimited list.
    """
    try:
        op = Operator(operator)
    except ValueError as err:
        raise OperatorError(f"unsupported operator: {operator!r}") from err
    if op is Operator.IN:
        items = [item.strip() for item in str(raw_value).split(",")]
        if is_numeric(actual):
            lhs = to_decimal(actual)
            return any(lhs == to_decimal(item) for item in items if item)
        return str(actual) in items
    lhs, rhs = _coerce(actual, raw_value)
    return _BINARY[op](lhs, rhs)
