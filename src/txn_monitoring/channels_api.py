"""Channels API router: channel config, rule subscriptions and test notifications."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from starlette.requests import Request

from txn_monitoring.auth import Principal, require_api_key, require_api_key_write
from txn_monitoring.channels import list_channels, replace_subscriptions, upsert_channel
from txn_monitoring.config import get_config
from txn_monitoring.db import session_scope
from txn_monitoring.notifications.dispatcher import NotificationDispatcher
from txn_monitoring.schemas import ChannelResponse, ChannelUpsert, SubscriptionsReplace

channels_router = APIRouter(tags=["channels"])


def get_dispatcher(request: Request) -> NotificationDispatcher:
    """Dispatcher built at startup; created from config when the app runs without lifespan."""
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = NotificationDispatcher.from_config(get_config())
        request.app.state.dispatcher = dispatcher
    return dispatcher


@channels_router.get("/channels")
def get_channels(principal: Principal = Depends(require_api_key)) -> dict[str, Any]:
    with session_scope() as session:
        channels = list_channels(session, principal.organization_id)
        return {
            "success": True,
            "data": [ChannelResponse.model_validate(c).model_dump(mode="json") for c in channels],
        }


@channels_router.put("/channels/{channel_type}")
def put_channel(
    channel_type: str, body: ChannelUpsert, principal: Principal = Depends(require_api_key_write)
) -> dict[str, Any]:
    """Create or replace the organization's channel of this type. Audited."""
    with session_scope() as session:
        channel = upsert_channel(session, principal.organization_id, channel_type, body)
        return {"success": True, "data": ChannelResponse.model_validate(channel).model_dump(mode="json")}


@channels_router.put("/channels/{channel_type}/subscriptions")
def put_subscriptions(
    channel_type: str,
    body: SubscriptionsReplace,
    principal: Principal = Depends(require_api_key_write),
) -> dict[str, Any]:
    with session_scope() as session:
        subs = replace_subscriptions(session, principal.organization_id, channel_type, body)
        return {
            "success": True,
            "data": {"rule_ids": [s.rule_id for s in subs], "enabled": body.enabled},
        }


@channels_router.post("/channels/{channel_id}/test")
async def test_channel(
    channel_id: int,
    principal: Principal = Depends(require_api_key_write),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    """Send a sample alert to one channel through the normal delivery path."""
    return await dispatcher.send_test_notification(channel_id, principal.organization_id)
