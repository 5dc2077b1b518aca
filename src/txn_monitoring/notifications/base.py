"""Shared types for channel senders."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from txn_monitoring.schemas import AlertNotification


class DeliveryError(Exception):
    """A channel could not be delivered to (bad config or provider rejection)."""


@dataclass(frozen=True)
class ChannelTarget:
    """Detached copy of a Channel row, safe to use outside the session."""

    id: int
    organization_id: int
    channel_type: str
    name: str
    config: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_model(cls, channel: Any) -> ChannelTarget:
        return cls(
            id=channel.id,
            organization_id=channel.organization_id,
            channel_type=channel.channel_type,
            name=channel.name,
            config=dict(channel.config or {}),
        )

    def setting(self, *keys: str) -> Any:
        """First non-empty config value among keys (snake_case and camelCase are both accepted)."""
        for key in keys:
            value = self.config.get(key)
            if value:
                return value
        return None


@dataclass(frozen=True)
class SenderOptions:
    slack_api_url: str = "https://slack.com/api"
    webhook_signing_secret: str | None = None


Sender = Callable[
    [httpx.AsyncClient, ChannelTarget, AlertNotification, SenderOptions], Awaitable[None]
]
