"""Notification channel configuration and rule subscriptions, scoped to one organization."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from txn_monitoring.db import record_audit
from txn_monitoring.errors import NotFoundError, ValidationError
from txn_monitoring.models import Channel, Rule, Subscription
from txn_monitoring.schemas import ChannelUpsert, SubscriptionsReplace

logger = logging.getLogger(__name__)

CHANNEL_TYPES = frozenset({"slack", "email", "webhook"})


def _check_type(channel_type: str) -> str:
    value = channel_type.lower()
    if value not in CHANNEL_TYPES:
        raise ValidationError(
            f"channel_type must be one of {sorted(CHANNEL_TYPES)}", {"channel_type": channel_type}
        )
    return value


def list_channels(session: Session, organization_id: int) -> Sequence[Channel]:
    return (
        session.execute(
            select(Channel).where(Channel.organization_id == organization_id).order_by(Channel.id)
        )
        .scalars()
        .all()
    )


def get_channel_by_type(session: Session, organization_id: int, channel_type: str) -> Channel:
    channel = session.execute(
        select(Channel).where(
            Channel.organization_id == organization_id,
            Channel.channel_type == _check_type(channel_type),
        )
    ).scalar_one_or_none()
    if channel is None:
        raise NotFoundError("Channel not found", {"channel_type": channel_type})
    return channel


def upsert_channel(
    session: Session, organization_id: int, channel_type: str, data: ChannelUpsert
) -> Channel:
    """Create or replace the organization's channel of this type (one per type)."""
    kind = _check_type(channel_type)
    channel = session.execute(
        select(Channel).where(
            Channel.organization_id == organization_id, Channel.channel_type == kind
        )
    ).scalar_one_or_none()
    created = channel is None
    if channel is None:
        channel = Channel(organization_id=organization_id, channel_type=kind)
        session.add(channel)
    channel.name = data.name
    channel.config = dict(data.config)
    channel.status = data.status
    session.flush()
    record_audit(
        session,
        "Channel Created" if created else "Channel Updated",
        "channel",
        channel.id,
        {"channel_type": kind, "status": channel.status},
        organization_id=organization_id,
    )
    return channel


def replace_subscriptions(
    session: Session, organization_id: int, channel_type: str, data: SubscriptionsReplace
) -> list[Subscription]:
    """Replace the channel's subscriptions; every rule must belong to the organization."""
    channel = get_channel_by_type(session, organization_id, channel_type)
    rule_ids = list(dict.fromkeys(data.rule_ids))
    if rule_ids:
        owned = set(
            session.execute(
                select(Rule.id).where(Rule.organization_id == organization_id, Rule.id.in_(rule_ids))
            )
            .scalars()
            .all()
        )
        missing = [rid for rid in rule_ids if rid not in owned]
        if missing:
            raise ValidationError("Rules not found in organization", {"rule_ids": missing})
    session.execute(delete(Subscription).where(Subscription.channel_id == channel.id))
    subs = [Subscription(channel_id=channel.id, rule_id=rid, enabled=data.enabled) for rid in rule_ids]
    session.add_all(subs)
    session.flush()
    record_audit(
        session,
        "Subscriptions Replaced",
        "channel",
        channel.id,
        {"rule_ids": rule_ids, "enabled": data.enabled},
        organization_id=organization_id,
    )
    logger.info("Channel %s now subscribed to %d rules", channel.id, len(subs))
    return subs
