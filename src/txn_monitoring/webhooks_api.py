"""Inbound webhook router: crawler rule batches and billing provider events.

Both endpoints authenticate the raw body before parsing it. Once authenticated
and structurally valid, a delivery is acknowledged with 2xx even when some of
its processing fails.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from fastapi import APIRouter
from starlette.requests import Request

from txn_monitoring.audit_context import set_actor
from txn_monitoring.config import get_config
from txn_monitoring.errors import ValidationError
from txn_monitoring.webhooks.billing import process_billing_event
from txn_monitoring.webhooks.crawler import handle_crawler_batch, parse_crawler_body
from txn_monitoring.webhooks.signature import (
    BILLING_SIGNATURE_HEADER,
    DEFAULT_BILLING_TOLERANCE_SECONDS,
    verify_billing_signature,
    verify_crawler_request,
)

webhooks_router = APIRouter(tags=["webhooks"])


def _json_body(raw: bytes) -> Any:
    try:
        return json.loads(raw)
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ValidationError("Request body must be valid JSON") from err


@webhooks_router.post("/crawlers/webhook")
async def crawler_webhook(request: Request) -> dict[str, Any]:
    """Receive a crawler batch: verify, import candidates as DRAFT rules, report counts."""
    raw = await request.body()
    webhooks_cfg = get_config().get("webhooks", {})
    verify_crawler_request(
        raw,
        request.headers,
        webhooks_cfg.get("crawler_secret"),
        allow_unsigned=bool(webhooks_cfg.get("crawler_allow_unsigned", False)),
    )
    organization_id, envelope = parse_crawler_body(_json_body(raw))
    set_actor("crawler", organization_id)
    result = await asyncio.to_thread(handle_crawler_batch, organization_id, envelope)
    return {"success": True, "data": result.model_dump(mode="json")}


@webhooks_router.post("/webhooks/billing")
async def billing_webhook(request: Request) -> dict[str, Any]:
    """Receive a billing provider event; replays are acknowledged without effects."""
    raw = await request.body()
    webhooks_cfg = get_config().get("webhooks", {})
    verify_billing_signature(
        raw,
        request.headers.get(BILLING_SIGNATURE_HEADER),
        webhooks_cfg.get("billing_secret"),
        tolerance_seconds=int(
            webhooks_cfg.get("billing_tolerance_seconds", DEFAULT_BILLING_TOLERANCE_SECONDS)
        ),
    )
    set_actor("billing")
    return await asyncio.to_thread(process_billing_event, _json_body(raw))
