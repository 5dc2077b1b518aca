"""Alert notifications to external channels (Slack, outbound webhooks)."""

from txn_monitoring.notifications.base import ChannelTarget, DeliveryError
from txn_monitoring.notifications.dispatcher import DispatchReport, NotificationDispatcher

__all__ = ["ChannelTarget", "DeliveryError", "DispatchReport", "NotificationDispatcher"]
