"""Tests for log redaction and the error-to-status mapping."""

from __future__ import annotations

import logging

import pytest

from txn_monitoring.errors import (
    AuthorizationError,
    DependencyError,
    DuplicateError,
    MonitoringError,
    NotFoundError,
    SignatureVerificationError,
    ValidationError,
    get_status_code,
    public_message,
)
from txn_monitoring.logging_config import RedactionFilter, _redact_message, _sanitize_extra


def _record(msg: str, args: tuple = (), **extra) -> logging.LogRecord:
    record = logging.LogRecord("t", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_redact_message_masks_user_ids_and_tokens() -> None:
    out = _redact_message("lookup user_id=alice failed with token xoxb-123-abc")
    assert "alice" not in out
    assert "xoxb-123-abc" not in out
    assert "user_id=[REDACTED]" in out


def test_sanitize_extra() -> None:
    out = _sanitize_extra({"signature": "abc", "user_id": "bob", "organization_id": 3})
    assert out == {"signature": "***", "user_id": "[REDACTED]", "organization_id": 3}


def test_filter_keeps_numeric_args_formattable() -> None:
    record = _record("alert %s delivered=%d", ("user_id=carol", 2))
    RedactionFilter().filter(record)
    assert record.getMessage() == "alert user_id=[REDACTED] delivered=2"


def test_filter_redacts_extra_attributes() -> None:
    record = _record("x", webhook_url="https://hooks.example/secret")
    RedactionFilter().filter(record)
    assert record.webhook_url == "***"


@pytest.mark.parametrize(
    ("error", "status"),
    [
        (ValidationError("bad"), 400),
        (SignatureVerificationError("sig"), 401),
        (AuthorizationError("scope"), 403),
        (NotFoundError("missing"), 404),
        (DuplicateError("dup"), 409),
        (DependencyError("db down"), 503),
        (MonitoringError("other"), 500),
        (RuntimeError("boom"), 500),
    ],
)
def test_status_codes(error: Exception, status: int) -> None:
    assert get_status_code(error) == status


def test_dependency_error_message_is_generic() -> None:
    err = DependencyError("postgres at 10.0.0.5 refused connection", {"host": "10.0.0.5"})
    assert "10.0.0.5" not in public_message(err)
    assert public_message(NotFoundError("Rule not found")) == "Rule not found"
