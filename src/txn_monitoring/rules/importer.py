"""Crawler rule import: idempotent, content-hash based, one store transaction per candidate.

New and changed rules land as DRAFT so a human activates them; a value change
for an existing rule identity archives the previous version, and crawled content
matching an archived version restores that version as DRAFT.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from txn_monitoring.db import record_audit, session_scope
from txn_monitoring.errors import MonitoringError, ValidationError
from txn_monitoring.models import Rule
from txn_monitoring.rules.base import RuleSource, RuleStatus, compute_rule_hash
from txn_monitoring.schemas import CandidateRule, CrawlEnvelope, ImportResult

logger = logging.getLogger(__name__)


def _same_content(rule: Rule, candidate: CandidateRule) -> bool:
    return (
        rule.rule_name == candidate.rule_name
        and rule.field == candidate.field.value
        and rule.operator == candidate.operator.value
        and rule.value == candidate.value
    )


def _find_live_identity(session: Session, organization_id: int, candidate: CandidateRule) -> Rule | None:
    """Non-archived rule with the same name/field/operator/jurisdiction but another value."""
    stmt = select(Rule).where(
        Rule.organization_id == organization_id,
        Rule.rule_name == candidate.rule_name,
        Rule.field == candidate.field.value,
        Rule.operator == candidate.operator.value,
        Rule.value != candidate.value,
        Rule.status != RuleStatus.ARCHIVED.value,
    )
    if candidate.jurisdiction is None:
        stmt = stmt.where(Rule.jurisdiction.is_(None))
    else:
        stmt = stmt.where(Rule.jurisdiction == candidate.jurisdiction)
    return session.execute(stmt.order_by(Rule.id)).scalars().first()


def _archive(session: Session, rule: Rule, organization_id: int, replaced_by_hash: str) -> None:
    rule.status = RuleStatus.ARCHIVED.value
    # The archived row keeps a hash of its own stored content so the new version can take the candidate hash.
    rule.rule_hash = compute_rule_hash(
        rule.rule_name, rule.field, rule.operator, rule.value, rule.jurisdiction
    )
    session.flush()
    record_audit(
        session,
        "Rule Archived",
        "rule",
        rule.id,
        {"rule_name": rule.rule_name, "replaced_by_hash": replaced_by_hash},
        organization_id=organization_id,
    )


def _import_one(
    session: Session,
    organization_id: int,
    candidate: CandidateRule,
    rule_hash: str,
    crawled_at: datetime,
    metadata: dict[str, Any],
) -> tuple[str, Rule | None, Rule | None]:
    """Returns (outcome, new_rule, archived_rule); outcome is 'skipped' or 'imported'."""
    existing = session.execute(
        select(Rule).where(Rule.organization_id == organization_id, Rule.rule_hash == rule_hash)
    ).scalar_one_or_none()
    if existing is not None and existing.status != RuleStatus.ARCHIVED.value:
        if _same_content(existing, candidate):
            return "skipped", existing, None
        archived: Rule | None = existing
    else:
        archived = _find_live_identity(session, organization_id, candidate)
    if archived is not None:
        _archive(session, archived, organization_id, rule_hash)

    if existing is not None and existing.status == RuleStatus.ARCHIVED.value:
        # uq_rules_org_hash allows one row per content; restore the archived version as DRAFT.
        rule = existing
        rule.status = RuleStatus.DRAFT.value
        rule.source = RuleSource.CRAWLER.value
        rule.source_url = candidate.source_url
        rule.crawled_at = crawled_at
        rule.metadata_json = metadata
        action = "Rule Restored"
    else:
        rule = Rule(
            organization_id=organization_id,
            rule_name=candidate.rule_name,
            field=candidate.field.value,
            operator=candidate.operator.value,
            value=candidate.value,
            status=RuleStatus.DRAFT.value,
            source=RuleSource.CRAWLER.value,
            source_url=candidate.source_url,
            jurisdiction=candidate.jurisdiction,
            crawled_at=crawled_at,
            rule_hash=rule_hash,
            metadata_json=metadata,
        )
        session.add(rule)
        action = "Rule Imported"
    session.flush()
    record_audit(
        session,
        action,
        "rule",
        rule.id,
        {"rule_name": rule.rule_name, "rule_hash": rule_hash, "crawl_id": metadata.get("crawlId")},
        organization_id=organization_id,
    )
    return "imported", rule, archived


def import_rules(organization_id: int, envelope: CrawlEnvelope | dict[str, Any]) -> ImportResult:
    """Import a crawler batch for one organization.

    Each candidate is validated and written in its own store transaction; a failing
    candidate is logged, listed under details["failed"] and excluded from the counts.
    Raises ValidationError only when the envelope itself is malformed.
    """
    if not isinstance(envelope, CrawlEnvelope):
        try:
            envelope = CrawlEnvelope.model_validate(envelope)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid crawler envelope", {"errors": e.errors(include_url=False)}
            ) from e

    now = datetime.now(UTC)
    crawled_at = envelope.crawl_started_at or now
    metadata = {
        "pluginVersion": envelope.plugin_version,
        "crawlId": envelope.crawl_id,
        "pipelineVersion": now.strftime("%Y-%m-%d"),
    }
    result = ImportResult()

    for index, raw in enumerate(envelope.rules):
        rule_name = raw.get("rule_name")
        try:
            candidate = CandidateRule.model_validate(
                {**raw, "jurisdiction": raw.get("jurisdiction") or envelope.jurisdiction}
            )
            rule_hash = compute_rule_hash(
                candidate.rule_name,
                candidate.field.value,
                candidate.operator.value,
                candidate.value,
                candidate.jurisdiction,
            )
            with session_scope() as session:
                outcome, rule, archived = _import_one(
                    session, organization_id, candidate, rule_hash, crawled_at, metadata
                )
                rule_id = rule.id if rule is not None else None
                archived_id = archived.id if archived is not None else None
        except PydanticValidationError as e:
            logger.warning("Crawler rule #%d rejected: %d validation error(s)", index, e.error_count())
            result.details["failed"].append(
                {
                    "index": index,
                    "rule_name": rule_name,
                    "error": "validation",
                    "errors": e.errors(include_url=False, include_context=False),
                }
            )
            continue
        except IntegrityError:
            logger.warning("Crawler rule #%d conflicts with an existing rule", index)
            result.details["failed"].append(
                {"index": index, "rule_name": rule_name, "error": "conflict"}
            )
            continue
        except (SQLAlchemyError, MonitoringError) as e:
            logger.error("Crawler rule #%d failed to import: %s", index, type(e).__name__)
            result.details["failed"].append(
                {"index": index, "rule_name": rule_name, "error": type(e).__name__}
            )
            continue

        if outcome == "skipped":
            result.skipped += 1
            result.details["skipped"].append(
                {"rule_id": rule_id, "rule_name": candidate.rule_name, "reason": "unchanged"}
            )
            continue
        result.imported += 1
        result.details["imported"].append(
            {"rule_id": rule_id, "rule_name": candidate.rule_name, "rule_hash": rule_hash}
        )
        if archived_id is not None:
            result.archived += 1
            result.details["archived"].append(
                {"rule_id": archived_id, "rule_name": candidate.rule_name, "replaced_by": rule_id}
            )

    logger.info(
        "Crawler import for organization %s: imported=%d skipped=%d archived=%d failed=%d",
        organization_id,
        result.imported,
        result.skipped,
        result.archived,
        len(result.details["failed"]),
    )
    return result
