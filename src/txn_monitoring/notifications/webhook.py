"""Outbound webhook delivery: signed JSON POST to a customer URL."""

from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any

import httpx

from txn_monitoring.notifications.base import ChannelTarget, DeliveryError, SenderOptions
from txn_monitoring.schemas import AlertNotification

SIGNATURE_HEADER = "X-Webhook-Signature"


def build_payload(notification: AlertNotification) -> dict[str, Any]:
    alert, txn, rule = notification.alert, notification.transaction, notification.rule
    return {
        "event": "alert.flagged",
        "alert": {
            "id": alert.id,
            "reason": alert.reason,
            "flagged_at": alert.flagged_at.isoformat(),
        },
        "transaction": {
            "transaction_id": txn.transaction_id,
            "user_id": txn.user_id,
            "amount": str(txn.amount),
            "currency": txn.currency,
            "country": txn.country,
            "timestamp": txn.timestamp.isoformat(),
        },
        "rule": {"id": rule.id, "rule_name": rule.rule_name},
    }


def sign_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


async def send_webhook(
    client: httpx.AsyncClient,
    channel: ChannelTarget,
    notification: AlertNotification,
    options: SenderOptions,
) -> None:
    url = channel.setting("url", "webhook_url", "webhookUrl")
    if not url:
        raise DeliveryError("Webhook channel has no URL configured")
    body = json.dumps(build_payload(notification), sort_keys=True).encode()
    headers = {"Content-Type": "application/json"}
    secret = channel.setting("secret", "signing_secret") or options.webhook_signing_secret
    if secret:
        headers[SIGNATURE_HEADER] = f"sha256={sign_body(secret, body)}"
    response = await client.post(url, content=body, headers=headers)
    response.raise_for_status()
