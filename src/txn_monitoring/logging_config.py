"""Structured logging setup - no secrets, user identifiers redacted."""

from __future__ import annotations

import logging
import re
import sys
from typing import Any

# Redact secrets
REDACT_FIELDS = frozenset(
    {"password", "secret", "token", "api_key", "authorization", "signature", "webhook_url"}
)
# PII: log only surrogate IDs, not user identifiers
PII_REDACT_KEYS = frozenset({"user_id", "access_token", "webhook_url"})
PII_KEY_PATTERN = re.compile(
    r"(\b" + "|".join(re.escape(k) for k in sorted(PII_REDACT_KEYS)) + r")[\s=:]+[^\s,\)\]]+",
    re.IGNORECASE,
)
# Slack bot/user tokens may leak through provider error bodies
SLACK_TOKEN_PATTERN = re.compile(r"xox[abprs]-[A-Za-z0-9-]+")


def _sanitize_extra(extra: dict[str, Any] | None) -> dict[str, Any]:
    if not extra:
        return {}
    out: dict[str, Any] = {}
    for k, v in extra.items():
        key_lower = k.lower()
        if any(r in key_lower for r in REDACT_FIELDS):
            out[k] = "***"
        elif any(p in key_lower for p in PII_REDACT_KEYS):
            out[k] = "[REDACTED]"
        else:
            out[k] = v
    return out


def _redact_message(msg: str) -> str:
    """Replace secret or PII key=value / key: value pairs in message with [REDACTED]."""
    if not isinstance(msg, str):
        return str(msg)
    msg = SLACK_TOKEN_PATTERN.sub("[REDACTED]", msg)
    return PII_KEY_PATTERN.sub(r"\1=[REDACTED]", msg)


class RedactionFilter(logging.Filter):
    """Filter that redacts secrets and user identifiers from log records (message and args)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = _redact_message(record.msg)
        if getattr(record, "args", None) and isinstance(record.args, tuple | dict):
            if isinstance(record.args, tuple):
                record.args = tuple(
                    _redact_message(a) if isinstance(a, str) else a for a in record.args
                )
            else:
                record.args = _sanitize_extra(record.args)
        for key, value in _sanitize_extra(
            {k: v for k, v in record.__dict__.items() if k in PII_REDACT_KEYS | REDACT_FIELDS}
        ).items():
            setattr(record, key, value)
        return True


def setup_logging(log_level: str = "INFO") -> None:
    """Configure root logger: stdout, redaction filter, no secrets."""
    level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%SZ",
        stream=sys.stdout,
        force=True,
    )
    redaction = RedactionFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(redaction)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for module `name` (redaction applied at the root handlers)."""
    return logging.getLogger(name)
