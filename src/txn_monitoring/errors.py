"""
Domain exceptions for the monitoring core.

These represent business and dependency failures and are mapped to HTTP
status codes by the API layer. The core never raises HTTPException itself.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class FailurePolicy(str, Enum):
    """How a component reacts when one of its dependencies fails.

    FAIL_OPEN: log and continue with an empty/neutral result.
    FAIL_CLOSED: raise DependencyError to the caller.
    """

    FAIL_OPEN = "fail_open"
    FAIL_CLOSED = "fail_closed"


class MonitoringError(Exception):
    """Base exception for all monitoring core errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(MonitoringError):
    """
    Raised when input fails schema checks.

    Examples:
    - Missing transaction_id
    - Non-positive amount
    - Currency not a 3-letter code

    HTTP Status: 400 Bad Request
    """


class DuplicateError(MonitoringError):
    """
    Raised on a unique-constraint violation of a business identity.

    Examples:
    - transaction_id already ingested for the organization
    - rule with the same content hash already exists
    - webhook event already recorded in the ledger

    HTTP Status: 409 Conflict
    """


class NotFoundError(MonitoringError):
    """
    Raised when a resource does not exist within the caller's organization.

    HTTP Status: 404 Not Found
    """


class AuthorizationError(MonitoringError):
    """
    Raised on scoping or role violations.

    HTTP Status: 403 Forbidden
    """


class SignatureVerificationError(AuthorizationError):
    """
    Raised when an inbound webhook signature is missing or invalid.

    HTTP Status: 401 Unauthorized
    """


class DependencyError(MonitoringError):
    """
    Raised when the store, the watchlist lookup or a channel provider fails.

    The message returned to callers is generic; details stay in the logs.

    HTTP Status: 503 Service Unavailable
    """


ERROR_STATUS_MAP: dict[type[MonitoringError], int] = {
    ValidationError: 400,
    SignatureVerificationError: 401,
    AuthorizationError: 403,
    NotFoundError: 404,
    DuplicateError: 409,
    DependencyError: 503,
}


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for a given exception.

    Args:
        error: The exception instance

    Returns:
        HTTP status code (defaults to 500 for unknown errors)
    """
    return ERROR_STATUS_MAP.get(type(error), 500)


def public_message(error: MonitoringError) -> str:
    """Message safe to show to API callers (dependency failures are not detailed)."""
    if isinstance(error, DependencyError):
        return "A dependent service is temporarily unavailable"
    return error.message
