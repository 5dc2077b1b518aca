"""Inbound webhook authentication: crawler HMAC (legacy shared secret too) and billing signatures."""

from __future__ import annotations

import hashlib
import hmac
import logging
from collections.abc import Mapping

import stripe

from txn_monitoring.errors import SignatureVerificationError, ValidationError

logger = logging.getLogger(__name__)

CRAWLER_SIGNATURE_HEADERS = ("x-webhook-signature", "x-webhook-signature-256")
LEGACY_SECRET_HEADER = "x-webhook-secret"
BILLING_SIGNATURE_HEADER = "stripe-signature"
DEFAULT_BILLING_TOLERANCE_SECONDS = 300


def compute_signature(secret: str, payload: bytes) -> str:
    """HMAC-SHA256 hex digest of payload."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a hex signature, with or without a ``sha256=`` prefix."""
    if not signature or not secret:
        return False
    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256=") :]
    expected = compute_signature(secret, payload)
    return hmac.compare_digest(provided.lower().encode(), expected.encode())


def extract_signature(headers: Mapping[str, str]) -> str | None:
    lowered = {k.lower(): v for k, v in headers.items()}
    for name in CRAWLER_SIGNATURE_HEADERS:
        if lowered.get(name):
            return lowered[name]
    return None


def verify_crawler_request(
    body: bytes,
    headers: Mapping[str, str],
    secret: str | None,
    allow_unsigned: bool = False,
) -> None:
    """Authenticate a crawler delivery; raises SignatureVerificationError.

    Without a configured secret deliveries are rejected, unless ``allow_unsigned``
    (``webhooks.crawler_allow_unsigned``, local development only) is set.
    A signature header takes precedence over the legacy shared-secret header.
    """
    if not secret:
        if allow_unsigned:
            logger.warning("Crawler webhook secret not configured, accepting unsigned webhooks")
            return
        logger.error("Crawler webhook secret not configured; rejecting delivery")
        raise SignatureVerificationError("Crawler webhook signature cannot be verified")
    signature = extract_signature(headers)
    if signature is not None:
        if not verify_signature(body, signature, secret):
            logger.warning("Invalid crawler webhook signature")
            raise SignatureVerificationError("Unauthorized - Invalid signature")
        return
    lowered = {k.lower(): v for k, v in headers.items()}
    provided = lowered.get(LEGACY_SECRET_HEADER)
    if not provided or not hmac.compare_digest(provided.encode(), secret.encode()):
        logger.warning("Invalid crawler webhook secret (legacy header)")
        raise SignatureVerificationError("Unauthorized - Invalid secret")
    logger.debug("Crawler webhook verified using legacy secret header")


def verify_billing_signature(
    body: bytes,
    header: str | None,
    secret: str | None,
    tolerance_seconds: int = DEFAULT_BILLING_TOLERANCE_SECONDS,
) -> None:
    """Verify the provider's ``Stripe-Signature`` header with the Stripe SDK.

    Raises SignatureVerificationError for a missing secret or header, a bad
    signature or a timestamp outside the tolerance; ValidationError when the
    body is not JSON.
    """
    if not secret:
        logger.error("Billing webhook secret not configured; rejecting delivery")
        raise SignatureVerificationError("Billing webhook signature cannot be verified")
    if not header:
        raise SignatureVerificationError("Missing billing signature header")
    try:
        stripe.Webhook.construct_event(body, header, secret, tolerance=tolerance_seconds)
    except stripe.SignatureVerificationError as e:
        logger.warning("Invalid billing webhook signature")
        raise SignatureVerificationError("Invalid billing signature") from e
    except ValueError as e:
        raise ValidationError("Request body must be valid JSON") from e
