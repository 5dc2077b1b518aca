"""Watchlist matching: organization-scoped USER / COUNTRY entries against one transaction."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from txn_monitoring.db import record_audit
from txn_monitoring.errors import DependencyError, FailurePolicy, NotFoundError
from txn_monitoring.models import WatchlistEntry
from txn_monitoring.schemas import WatchlistCreate

logger = logging.getLogger(__name__)


@dataclass
class WatchlistResult:
    flagged: bool = False
    reasons: list[str] = field(default_factory=list)


def _get(transaction: Any, name: str) -> Any:
    if isinstance(transaction, Mapping):
        return transaction.get(name)
    return getattr(transaction, name, None)


def format_reason(entry: WatchlistEntry) -> str:
    return f"Watchlist match: {entry.type.upper()} {entry.value} (risk level {entry.risk_level})"


class WatchlistMatcher:
    """Look up watchlist entries for a transaction's user and country.

    The lookup runs inside a SAVEPOINT so a failed read leaves the caller's
    transaction usable. What happens on failure is decided by ``policy``.
    """

    def __init__(self, policy: FailurePolicy = FailurePolicy.FAIL_OPEN):
        self.policy = FailurePolicy(policy)

    def _query(self, session: Session, organization_id: int, user_id: Any, country: Any):
        entry_type = func.upper(WatchlistEntry.type)
        stmt = (
            select(WatchlistEntry)
            .where(
                WatchlistEntry.organization_id == organization_id,
                or_(
                    and_(entry_type == "USER", WatchlistEntry.value == str(user_id)),
                    and_(entry_type == "COUNTRY", WatchlistEntry.value == str(country)),
                ),
            )
            .order_by(WatchlistEntry.id)
        )
        return list(session.execute(stmt).scalars().all())

    def check(
        self, session: Session, transaction: Any, organization_id: int | None = None
    ) -> WatchlistResult:
        org_id = organization_id if organization_id is not None else _get(transaction, "organization_id")
        try:
            with session.begin_nested():
                entries = self._query(
                    session, org_id, _get(transaction, "user_id"), _get(transaction, "country")
                )
        except SQLAlchemyError as e:
            if self.policy is FailurePolicy.FAIL_CLOSED:
                logger.error("Watchlist lookup failed (fail_closed): %s", type(e).__name__)
                raise DependencyError("Watchlist lookup failed", {"organization_id": org_id}) from e
            logger.error(
                "Watchlist lookup failed (fail_open), continuing without watchlist: %s",
                type(e).__name__,
                extra={"organization_id": org_id},
            )
            return WatchlistResult()
        reasons = [format_reason(entry) for entry in entries]
        return WatchlistResult(flagged=bool(reasons), reasons=reasons)


def list_entries(session: Session, organization_id: int) -> list[WatchlistEntry]:
    stmt = (
        select(WatchlistEntry)
        .where(WatchlistEntry.organization_id == organization_id)
        .order_by(WatchlistEntry.id.desc())
    )
    return list(session.execute(stmt).scalars().all())


def add_entry(session: Session, organization_id: int, data: WatchlistCreate) -> WatchlistEntry:
    entry = WatchlistEntry(
        organization_id=organization_id,
        name=data.name,
        type=data.type,
        value=data.value,
        risk_level=data.risk_level,
        description=data.description,
    )
    session.add(entry)
    session.flush()
    record_audit(
        session,
        "Watchlist Entry Added",
        "watchlist_entry",
        entry.id,
        {"type": entry.type, "risk_level": entry.risk_level},
        organization_id=organization_id,
    )
    return entry


def delete_entry(session: Session, organization_id: int, entry_id: int) -> None:
    result = session.execute(
        delete(WatchlistEntry).where(
            WatchlistEntry.id == entry_id, WatchlistEntry.organization_id == organization_id
        )
    )
    if result.rowcount == 0:
        raise NotFoundError("Watchlist entry not found", {"entry_id": entry_id})
    record_audit(
        session, "Watchlist Entry Deleted", "watchlist_entry", entry_id, organization_id=organization_id
    )
