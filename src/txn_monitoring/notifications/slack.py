"""Slack delivery via chat.postMessage with a block-formatted alert."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from txn_monitoring.notifications.base import ChannelTarget, DeliveryError, SenderOptions
from txn_monitoring.schemas import AlertNotification

logger = logging.getLogger(__name__)


def _fmt_time(value: Any) -> str:
    return value.isoformat() if hasattr(value, "isoformat") else str(value)


def format_alert_message(notification: AlertNotification) -> dict[str, Any]:
    """Build the chat.postMessage body (without channel) for one alert."""
    alert, txn, rule = notification.alert, notification.transaction, notification.rule
    amount = f"{txn.currency} {txn.amount:.2f}"
    return {
        "text": f"🚨 Transaction Alert: {rule.rule_name} - {txn.transaction_id} - {amount}",
        "blocks": [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": "🚨 Transaction Alert", "emoji": True},
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*Rule:*\n{rule.rule_name}"},
                    {"type": "mrkdwn", "text": f"*Transaction ID:*\n{txn.transaction_id}"},
                    {"type": "mrkdwn", "text": f"*Amount:*\n{amount}"},
                    {"type": "mrkdwn", "text": f"*Country:*\n{txn.country}"},
                    {"type": "mrkdwn", "text": f"*User ID:*\n{txn.user_id}"},
                    {"type": "mrkdwn", "text": f"*Time:*\n{_fmt_time(txn.timestamp)}"},
                ],
            },
            {"type": "section", "text": {"type": "mrkdwn", "text": f"*Reason:*\n{alert.reason}"}},
            {"type": "divider"},
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"Flagged at {_fmt_time(alert.flagged_at)}"}
                ],
            },
        ],
    }


async def send_slack(
    client: httpx.AsyncClient,
    channel: ChannelTarget,
    notification: AlertNotification,
    options: SenderOptions,
) -> None:
    token = channel.setting("access_token", "accessToken")
    destination = channel.setting("selected_channel", "selectedChannel")
    if not token:
        raise DeliveryError("Slack channel has no access token configured")
    if not destination:
        raise DeliveryError("Slack channel has no destination selected")
    body = {"channel": destination, **format_alert_message(notification)}
    response = await client.post(
        f"{options.slack_api_url.rstrip('/')}/chat.postMessage",
        json=body,
        headers={"Authorization": f"Bearer {token}"},
    )
    response.raise_for_status()
    data = response.json()
    if not data.get("ok"):
        raise DeliveryError(f"Slack API error: {data.get('error', 'unknown')}")
    logger.debug("Slack message posted for alert %s", notification.alert.id)
