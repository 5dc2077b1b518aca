"""Crawler batch delivery: check the webhook ledger, import the envelope, record the crawl."""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import SQLAlchemyError

from txn_monitoring.db import session_scope
from txn_monitoring.errors import DuplicateError, ValidationError
from txn_monitoring.rules.importer import import_rules
from txn_monitoring.schemas import CrawlEnvelope, ImportResult
from txn_monitoring.webhooks.ledger import WebhookLedger, crawler_event_id

logger = logging.getLogger(__name__)

PROVIDER = "crawler"
EVENT_TYPE = "crawler.batch"


def parse_crawler_body(body: Any) -> tuple[int, CrawlEnvelope]:
    """Extract (organizationId, envelope); raises ValidationError when either is missing."""
    if not isinstance(body, dict) or not body.get("organizationId") or not body.get("envelope"):
        raise ValidationError("organizationId and envelope are required")
    try:
        organization_id = int(body["organizationId"])
    except (TypeError, ValueError) as err:
        raise ValidationError("organizationId must be an integer") from err
    try:
        envelope = CrawlEnvelope.model_validate(body["envelope"])
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid crawler envelope", {"errors": e.errors(include_url=False)}
        ) from e
    return organization_id, envelope


def handle_crawler_batch(organization_id: int, envelope: CrawlEnvelope) -> ImportResult:
    """Import the batch unless its crawl is already in the ledger, then record it.

    A batch whose ``crawl_id`` was recorded before is acknowledged with
    ``already_processed`` and imports nothing. The ledger row is written after
    the import in its own transaction; failing to write it is logged at
    CRITICAL level.
    """
    logger.info(
        "Received crawler batch for organization %s (jurisdiction=%s, crawl=%s, rules=%d)",
        organization_id,
        envelope.jurisdiction,
        envelope.crawl_id,
        len(envelope.rules),
    )
    if not envelope.crawl_id:
        return import_rules(organization_id, envelope)
    event_id = crawler_event_id(organization_id, envelope.crawl_id)
    with session_scope() as session:
        if WebhookLedger(session).has_processed(event_id):
            logger.info("Crawl %s already processed; skipping import", event_id)
            return ImportResult(already_processed=True)

    result = import_rules(organization_id, envelope)
    try:
        with session_scope() as session:
            WebhookLedger(session).mark_processed(event_id, EVENT_TYPE, PROVIDER)
    except DuplicateError:
        logger.info("Crawl %s recorded by a concurrent delivery", event_id)
    except SQLAlchemyError as e:
        logger.critical(
            "Crawl %s imported but could not be recorded in the webhook ledger: %s",
            event_id,
            type(e).__name__,
        )
    return result
