"""Insert-only ledger of processed inbound webhook events (replay protection)."""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from txn_monitoring.errors import DuplicateError
from txn_monitoring.models import WebhookEvent

logger = logging.getLogger(__name__)


def crawler_event_id(organization_id: int, crawl_id: str) -> str:
    return f"crawler:{organization_id}:{crawl_id}"


class WebhookLedger:
    """Ledger operations bound to the caller's session.

    ``mark_processed`` participates in the caller's transaction so that an event's
    effects and its ledger row commit together. The unique provider_event_id is
    the arbiter between racing deliveries.
    """

    def __init__(self, session: Session):
        self.session = session

    def has_processed(self, event_id: str) -> bool:
        stmt = select(WebhookEvent.id).where(WebhookEvent.provider_event_id == event_id)
        return self.session.execute(stmt).first() is not None

    def mark_processed(self, event_id: str, event_type: str, provider: str) -> WebhookEvent:
        event = WebhookEvent(provider=provider, provider_event_id=event_id, event_type=event_type)
        self.session.add(event)
        try:
            self.session.flush()
        except IntegrityError as e:
            raise DuplicateError("Webhook event already processed", {"event_id": event_id}) from e
        logger.debug("Webhook event %s (%s) recorded", event_id, event_type)
        return event
