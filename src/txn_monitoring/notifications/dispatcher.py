"""Fan alerts out to an organization's subscribed channels.

Deliveries run concurrently and are joined before ``notify`` returns; one
channel failing or timing out never affects the others, and ``notify`` itself
never raises. There is no retry.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import httpx
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from txn_monitoring.db import session_scope
from txn_monitoring.errors import DependencyError, NotFoundError, ValidationError
from txn_monitoring.models import Channel, Subscription
from txn_monitoring.notifications.base import ChannelTarget, Sender, SenderOptions
from txn_monitoring.notifications.slack import send_slack
from txn_monitoring.notifications.webhook import send_webhook
from txn_monitoring.schemas import (
    AlertNotification,
    AlertSnapshot,
    RuleSnapshot,
    TransactionSnapshot,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

# email is a known channel type without a sender yet; such channels are reported as skipped.
DEFAULT_SENDERS: dict[str, Sender] = {
    "slack": send_slack,
    "webhook": send_webhook,
}

TEST_ALERT_REASON = "This is a test alert to verify your integration is working correctly."
TEST_SUCCESS_MESSAGE = "Test notification sent successfully"


def _describe_failure(error: BaseException) -> str:
    if isinstance(error, TimeoutError | httpx.TimeoutException):
        return "timeout"
    if isinstance(error, httpx.HTTPStatusError):
        return f"HTTP {error.response.status_code}"
    if isinstance(error, httpx.HTTPError):
        return type(error).__name__
    return str(error) or type(error).__name__


@dataclass
class DispatchReport:
    delivered: list[int] = field(default_factory=list)
    failed: dict[int, str] = field(default_factory=dict)
    skipped: list[int] = field(default_factory=list)


class NotificationDispatcher:
    def __init__(
        self,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        *,
        slack_api_url: str = "https://slack.com/api",
        webhook_signing_secret: str | None = None,
        client: httpx.AsyncClient | None = None,
        senders: Mapping[str, Sender] | None = None,
    ):
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")
        self.timeout_seconds = float(timeout_seconds)
        self.options = SenderOptions(
            slack_api_url=slack_api_url, webhook_signing_secret=webhook_signing_secret
        )
        self._client = client
        self.senders: dict[str, Sender] = dict(DEFAULT_SENDERS if senders is None else senders)

    @classmethod
    def from_config(cls, config: dict[str, Any], **kwargs: Any) -> NotificationDispatcher:
        cfg = config.get("notifications") or {}
        return cls(
            timeout_seconds=float(cfg.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS)),
            slack_api_url=cfg.get("slack_api_url") or "https://slack.com/api",
            webhook_signing_secret=cfg.get("webhook_signing_secret"),
            **kwargs,
        )

    # --- channel lookup (sync; run in a worker thread) ---
    def load_channels(self, organization_id: int, rule_id: int) -> list[ChannelTarget]:
        """Active channels of the organization with an enabled subscription to the rule."""
        stmt = (
            select(Channel)
            .join(Subscription, Subscription.channel_id == Channel.id)
            .where(
                Channel.organization_id == organization_id,
                Channel.status == "active",
                Subscription.rule_id == rule_id,
                Subscription.enabled.is_(True),
            )
            .order_by(Channel.id)
        )
        with session_scope() as session:
            return [ChannelTarget.from_model(c) for c in session.execute(stmt).scalars().all()]

    def load_channel(self, organization_id: int, channel_id: int) -> ChannelTarget:
        with session_scope() as session:
            channel = session.execute(
                select(Channel).where(
                    Channel.id == channel_id, Channel.organization_id == organization_id
                )
            ).scalar_one_or_none()
            if channel is None:
                raise NotFoundError("Channel not found", {"channel_id": channel_id})
            return ChannelTarget.from_model(channel)

    # --- delivery ---
    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))

    async def _deliver(
        self, client: httpx.AsyncClient, channel: ChannelTarget, notification: AlertNotification
    ) -> None:
        sender = self.senders[channel.channel_type]
        await asyncio.wait_for(
            sender(client, channel, notification, self.options), timeout=self.timeout_seconds
        )

    async def _fan_out(
        self, channels: Sequence[ChannelTarget], notification: AlertNotification
    ) -> DispatchReport:
        report = DispatchReport()
        deliverable: list[ChannelTarget] = []
        for channel in channels:
            if channel.channel_type in self.senders:
                deliverable.append(channel)
            else:
                logger.info(
                    "Channel %s of type %r has no sender; skipped", channel.id, channel.channel_type
                )
                report.skipped.append(channel.id)
        if not deliverable:
            return report

        async def run(client: httpx.AsyncClient) -> list[Any]:
            return await asyncio.gather(
                *(self._deliver(client, ch, notification) for ch in deliverable),
                return_exceptions=True,
            )

        if self._client is not None:
            results = await run(self._client)
        else:
            async with self._http_client() as client:
                results = await run(client)

        for channel, outcome in zip(deliverable, results, strict=True):
            if isinstance(outcome, BaseException):
                reason = _describe_failure(outcome)
                logger.warning(
                    "Delivery to %s channel %s failed for alert %s: %s",
                    channel.channel_type,
                    channel.id,
                    notification.alert.id,
                    reason,
                )
                report.failed[channel.id] = reason
            else:
                report.delivered.append(channel.id)
        return report

    async def notify(
        self,
        alert: AlertSnapshot,
        transaction: TransactionSnapshot,
        rule: RuleSnapshot,
        organization_id: int,
    ) -> DispatchReport:
        """Deliver one rule-caused alert to every subscribed channel. Never raises."""
        try:
            channels = await asyncio.to_thread(self.load_channels, organization_id, rule.id)
        except (SQLAlchemyError, RuntimeError) as e:
            logger.error(
                "Could not load channels for organization %s rule %s: %s",
                organization_id,
                rule.id,
                type(e).__name__,
            )
            return DispatchReport()
        if not channels:
            logger.info(
                "No channels subscribed to rule %s for organization %s", rule.id, organization_id
            )
            return DispatchReport()
        notification = AlertNotification(alert=alert, transaction=transaction, rule=rule)
        report = await self._fan_out(channels, notification)
        logger.info(
            "Alert %s dispatched: delivered=%d failed=%d skipped=%d",
            alert.id,
            len(report.delivered),
            len(report.failed),
            len(report.skipped),
        )
        return report

    async def notify_all(self, notifications: Sequence[AlertNotification]) -> list[DispatchReport]:
        reports: list[DispatchReport] = []
        for n in notifications:
            reports.append(
                await self.notify(n.alert, n.transaction, n.rule, n.transaction.organization_id)
            )
        return reports

    async def send_test_notification(self, channel_id: int, organization_id: int) -> dict[str, Any]:
        """Send a sample alert through the normal delivery path to one channel.

        Raises NotFoundError (channel not in organization), ValidationError (no sender
        for its type) or DependencyError (delivery failed).
        """
        channel = await asyncio.to_thread(self.load_channel, organization_id, channel_id)
        if channel.channel_type not in self.senders:
            raise ValidationError(
                f"Channel type {channel.channel_type!r} does not support notifications yet",
                {"channel_id": channel_id},
            )
        report = await self._fan_out([channel], sample_notification(organization_id))
        if channel.id in report.failed:
            raise DependencyError(
                "Test notification failed",
                {"channel_id": channel_id, "reason": report.failed[channel.id]},
            )
        return {"success": True, "message": TEST_SUCCESS_MESSAGE}


def sample_notification(organization_id: int) -> AlertNotification:
    now = datetime.now(UTC)
    return AlertNotification(
        alert=AlertSnapshot(
            id=0,
            organization_id=organization_id,
            transaction_id=0,
            rule_id=0,
            source="rule",
            reason=TEST_ALERT_REASON,
            flagged_at=now,
        ),
        transaction=TransactionSnapshot(
            id=0,
            organization_id=organization_id,
            transaction_id=f"TEST-{int(now.timestamp() * 1000)}",
            user_id="test-user",
            amount=Decimal("1000.00"),
            currency="USD",
            country="US",
            timestamp=now,
            flagged=True,
        ),
        rule=RuleSnapshot(
            id=0,
            organization_id=organization_id,
            rule_name="Test Rule",
            field="amount",
            operator="GREATER_THAN",
            value="0",
            status="ACTIVE",
            source="manual",
            rule_hash="test",
        ),
    )
