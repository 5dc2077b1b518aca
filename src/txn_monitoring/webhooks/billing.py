"""Billing provider events: subscription state for organizations, applied exactly once.

Effects and the ledger row share one store transaction. A replayed event is
acknowledged without effects; a racing duplicate loses on the ledger's unique
key and rolls back its own effects.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from txn_monitoring.db import record_audit, session_scope
from txn_monitoring.errors import DuplicateError, ValidationError
from txn_monitoring.models import BillingSubscription
from txn_monitoring.webhooks.ledger import WebhookLedger

logger = logging.getLogger(__name__)

PROVIDER = "stripe"
REACTIVATABLE_STATUSES = frozenset({"past_due", "incomplete"})


def _ts(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring malformed billing timestamp %r", value)
        return None


def _organization_id(obj: dict[str, Any]) -> int | None:
    raw = (obj.get("metadata") or {}).get("organizationId")
    if raw in (None, ""):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Billing subscription %s has a non-numeric organizationId", obj.get("id"))
        return None


def _plan(obj: dict[str, Any]) -> str | None:
    plan = (obj.get("metadata") or {}).get("plan")
    if plan:
        return str(plan)
    items = ((obj.get("items") or {}).get("data")) or []
    if items:
        price = items[0].get("price") or {}
        return price.get("lookup_key") or price.get("id")
    return None


def _by_provider_id(session: Session, subscription_id: str | None) -> BillingSubscription | None:
    if not subscription_id:
        return None
    return session.execute(
        select(BillingSubscription).where(
            BillingSubscription.provider_subscription_id == subscription_id
        )
    ).scalar_one_or_none()


def _subscription_upserted(session: Session, obj: dict[str, Any]) -> bool:
    org_id = _organization_id(obj)
    row: BillingSubscription | None = None
    if org_id is not None:
        row = session.execute(
            select(BillingSubscription).where(BillingSubscription.organization_id == org_id)
        ).scalar_one_or_none()
    if row is None:
        row = _by_provider_id(session, obj.get("id"))
    if row is None:
        if org_id is None:
            logger.warning(
                "Billing subscription %s has no organizationId and no known record; ignored",
                obj.get("id"),
            )
            return False
        row = BillingSubscription(organization_id=org_id)
        session.add(row)
    row.provider_customer_id = obj.get("customer") or row.provider_customer_id
    row.provider_subscription_id = obj.get("id") or row.provider_subscription_id
    row.plan = _plan(obj) or row.plan
    row.status = obj.get("status") or row.status or "incomplete"
    row.current_period_start = _ts(obj.get("current_period_start"))
    row.current_period_end = _ts(obj.get("current_period_end"))
    row.trial_start = _ts(obj.get("trial_start"))
    row.trial_end = _ts(obj.get("trial_end"))
    row.cancel_at_period_end = bool(obj.get("cancel_at_period_end", False))
    session.flush()
    record_audit(
        session,
        "Billing Subscription Updated",
        "billing_subscription",
        row.id,
        {"status": row.status, "plan": row.plan},
        organization_id=row.organization_id,
    )
    return True


def _subscription_deleted(session: Session, obj: dict[str, Any]) -> bool:
    row = _by_provider_id(session, obj.get("id"))
    if row is None:
        logger.warning("Deleted billing subscription %s is unknown; ignored", obj.get("id"))
        return False
    row.status = "canceled"
    row.cancel_at_period_end = False
    record_audit(
        session,
        "Billing Subscription Canceled",
        "billing_subscription",
        row.id,
        organization_id=row.organization_id,
    )
    return True


def _payment_succeeded(session: Session, obj: dict[str, Any]) -> bool:
    row = _by_provider_id(session, obj.get("subscription"))
    if row is None:
        return False
    if row.status in REACTIVATABLE_STATUSES:
        logger.info("Billing subscription %s reactivated after payment", row.id)
        row.status = "active"
    return True


def _payment_failed(session: Session, obj: dict[str, Any]) -> bool:
    row = _by_provider_id(session, obj.get("subscription"))
    if row is None:
        return False
    row.status = "past_due"
    logger.warning("Payment failed for billing subscription %s", row.id)
    return True


HANDLERS: dict[str, Callable[[Session, dict[str, Any]], bool]] = {
    "customer.subscription.created": _subscription_upserted,
    "customer.subscription.updated": _subscription_upserted,
    "customer.subscription.deleted": _subscription_deleted,
    "invoice.payment_succeeded": _payment_succeeded,
    "invoice.payment_failed": _payment_failed,
}


def process_billing_event(event: dict[str, Any]) -> dict[str, Any]:
    """Apply one verified billing event. Raises ValidationError if the event is malformed.

    Once the event is structurally valid the result is always an acknowledgement;
    processing failures are logged and reported in the body.
    """
    if not isinstance(event, dict):
        raise ValidationError("Malformed billing event")
    event_id = event.get("id")
    event_type = event.get("type")
    obj = (event.get("data") or {}).get("object")
    if not event_id or not event_type or not isinstance(obj, dict):
        raise ValidationError("Malformed billing event", {"event_id": event_id})

    try:
        with session_scope() as session:
            ledger = WebhookLedger(session)
            if ledger.has_processed(event_id):
                logger.info("Billing event %s already processed", event_id)
                return {"received": True, "already_processed": True}
            handler = HANDLERS.get(event_type)
            if handler is None:
                logger.info("Unhandled billing event type %s", event_type)
                handled = False
            else:
                handled = handler(session, obj)
            ledger.mark_processed(event_id, event_type, PROVIDER)
    except DuplicateError:
        logger.info("Billing event %s recorded by a concurrent delivery", event_id)
        return {"received": True, "already_processed": True}
    except SQLAlchemyError as e:
        logger.error("Billing event %s (%s) failed: %s", event_id, event_type, type(e).__name__)
        return {"received": True, "processed": False}
    return {"received": True, "processed": True, "handled": handled}
