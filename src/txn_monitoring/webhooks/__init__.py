"""Inbound webhooks: signature checks, replay ledger, billing and crawler handlers."""

from txn_monitoring.webhooks.ledger import WebhookLedger, crawler_event_id

__all__ = ["WebhookLedger", "crawler_event_id"]
