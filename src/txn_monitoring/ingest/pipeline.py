"""Atomic transaction ingestion: validate, check watchlist + rules, persist verdict and alerts.

The transaction row, its alerts and the audit entry commit together or not at
all. Notifications are handed to ``dispatch`` only after the commit.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from txn_monitoring.db import is_unique_violation, record_audit, session_scope
from txn_monitoring.errors import DuplicateError, NotFoundError, ValidationError
from txn_monitoring.models import Alert, Rule, Transaction
from txn_monitoring.rules.evaluator import evaluate
from txn_monitoring.rules.store import active_rules
from txn_monitoring.schemas import (
    AlertNotification,
    AlertSnapshot,
    IngestResult,
    RuleSnapshot,
    TransactionCreate,
    TransactionSnapshot,
)
from txn_monitoring.watchlist import WatchlistMatcher

logger = logging.getLogger(__name__)

MESSAGE_FLAGGED = "Transaction flagged!"
MESSAGE_CREATED = "Transaction created!"

Dispatch = Callable[[list[AlertNotification]], Any]


def rule_reason(rule_name: str) -> str:
    return f"Custom rule triggered: {rule_name}"


def validate_transaction(data: dict[str, Any] | TransactionCreate) -> TransactionCreate:
    """Parse input into TransactionCreate; raise ValidationError with per-field details."""
    if isinstance(data, TransactionCreate):
        return data
    try:
        return TransactionCreate.model_validate(data)
    except PydanticValidationError as e:
        fields = {
            ".".join(str(p) for p in err["loc"]) or "body": err["msg"] for err in e.errors()
        }
        raise ValidationError("Invalid transaction", {"fields": fields}) from e


def _insert_alerts(
    session: Session,
    organization_id: int,
    transaction: Transaction,
    watchlist_reasons: Sequence[str],
    matched_rules: Sequence[Rule],
    correlation_id: str | None,
) -> list[tuple[Alert, Rule | None]]:
    """One Alert row per reason: watchlist reasons first, then matched rules in evaluation order."""
    rows: list[tuple[Alert, Rule | None]] = []
    for reason in watchlist_reasons:
        rows.append(
            (
                Alert(
                    organization_id=organization_id,
                    transaction_id=transaction.id,
                    rule_id=None,
                    source="watchlist",
                    reason=reason,
                    correlation_id=correlation_id,
                ),
                None,
            )
        )
    for rule in matched_rules:
        rows.append(
            (
                Alert(
                    organization_id=organization_id,
                    transaction_id=transaction.id,
                    rule_id=rule.id,
                    source="rule",
                    reason=rule_reason(rule.rule_name),
                    correlation_id=correlation_id,
                ),
                rule,
            )
        )
    session.add_all([alert for alert, _ in rows])
    session.flush()
    return rows


def ingest_transaction(
    data: dict[str, Any] | TransactionCreate,
    organization_id: int,
    *,
    dispatch: Dispatch | None = None,
    matcher: WatchlistMatcher | None = None,
) -> IngestResult:
    """Validate, evaluate and persist one transaction for an organization.

    Raises ValidationError on bad input and DuplicateError when the organization
    already has this transaction_id. Any failure while persisting rolls back the
    transaction row, its alerts and the audit entry together. A failing
    ``dispatch`` is logged and does not affect the result.
    """
    payload = validate_transaction(data)
    matcher = matcher or WatchlistMatcher()

    with session_scope() as session:
        watch = matcher.check(session, payload, organization_id=organization_id)
        rules = active_rules(session, organization_id)
        evaluation = evaluate(payload, rules)
        flagged = watch.flagged or evaluation.flagged

        txn = Transaction(
            organization_id=organization_id,
            transaction_id=payload.transaction_id,
            user_id=payload.user_id,
            amount=payload.amount,
            currency=payload.currency,
            country=payload.country,
            timestamp=payload.timestamp,
            flagged=flagged,
        )
        session.add(txn)
        try:
            session.flush()
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise NotFoundError(
                    "Organization not found", {"organization_id": organization_id}
                ) from e
            raise DuplicateError(
                "Transaction already exists",
                {"transaction_id": payload.transaction_id},
            ) from e

        alert_rows: list[tuple[Alert, Rule | None]] = []
        if flagged:
            correlation_id = record_audit(
                session,
                "Transaction Flagged",
                "transaction",
                txn.id,
                {
                    "transaction_id": payload.transaction_id,
                    "watchlist_reasons": len(watch.reasons),
                    "matched_rules": [r.id for r in evaluation.matched_rules],
                    "rule_errors": len(evaluation.errors),
                },
                organization_id=organization_id,
            ).correlation_id
            alert_rows = _insert_alerts(
                session,
                organization_id,
                txn,
                watch.reasons,
                evaluation.matched_rules,
                correlation_id,
            )
        else:
            record_audit(
                session,
                "Transaction Created",
                "transaction",
                txn.id,
                {"transaction_id": payload.transaction_id, "rule_errors": len(evaluation.errors)},
                organization_id=organization_id,
            )
        session.flush()

        txn_snapshot = TransactionSnapshot.model_validate(txn)
        alerts = [AlertSnapshot.model_validate(alert) for alert, _ in alert_rows]
        notifications = [
            AlertNotification(
                alert=snapshot,
                transaction=txn_snapshot,
                rule=RuleSnapshot.model_validate(rule),
            )
            for snapshot, (_, rule) in zip(alerts, alert_rows, strict=True)
            if rule is not None
        ]

    logger.info(
        "Transaction %s ingested for organization %s (flagged=%s, alerts=%d)",
        txn_snapshot.id,
        organization_id,
        flagged,
        len(alerts),
    )
    result = IngestResult(
        flagged=flagged,
        message=MESSAGE_FLAGGED if flagged else MESSAGE_CREATED,
        transaction_id=payload.transaction_id,
        alerts=alerts,
        notifications=notifications,
    )
    if notifications and dispatch is not None:
        try:
            dispatch(notifications)
        except Exception:
            logger.exception(
                "Notification dispatch failed for transaction %s; ingestion is unaffected",
                txn_snapshot.id,
            )
    return result
