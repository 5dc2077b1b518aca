"""Organization-scoped rule persistence. Every read and write filters by organization_id."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from txn_monitoring.db import record_audit
from txn_monitoring.errors import DuplicateError, NotFoundError, ValidationError
from txn_monitoring.models import Rule
from txn_monitoring.rules.base import (
    Operator,
    RuleField,
    RuleSource,
    RuleStatus,
    compute_rule_hash,
)
from txn_monitoring.rules.defaults import DEFAULT_RULES
from txn_monitoring.rules.lifecycle import validate_rule_status_transition
from txn_monitoring.schemas import RuleCreate, RuleUpdate, check_rule_value

logger = logging.getLogger(__name__)


def _flush_or_duplicate(session: Session, message: str, details: dict) -> None:
    try:
        session.flush()
    except IntegrityError as e:
        raise DuplicateError(message, details) from e


def list_rules(
    session: Session, organization_id: int, status: RuleStatus | str | None = None
) -> Sequence[Rule]:
    stmt = select(Rule).where(Rule.organization_id == organization_id)
    if status is not None:
        stmt = stmt.where(Rule.status == RuleStatus(status).value)
    return session.execute(stmt.order_by(Rule.id)).scalars().all()


def active_rules(session: Session, organization_id: int) -> Sequence[Rule]:
    """ACTIVE rules of the organization in evaluation order (by id)."""
    return list_rules(session, organization_id, RuleStatus.ACTIVE)


def get_rule(session: Session, organization_id: int, rule_id: int) -> Rule:
    rule = session.execute(
        select(Rule).where(Rule.id == rule_id, Rule.organization_id == organization_id)
    ).scalar_one_or_none()
    if rule is None:
        raise NotFoundError("Rule not found", {"rule_id": rule_id})
    return rule


def create_rule(
    session: Session,
    organization_id: int,
    data: RuleCreate,
    source: RuleSource = RuleSource.MANUAL,
) -> Rule:
    rule = Rule(
        organization_id=organization_id,
        rule_name=data.rule_name,
        field=data.field.value,
        operator=data.operator.value,
        value=data.value,
        status=data.status.value,
        source=RuleSource(source).value,
        jurisdiction=data.jurisdiction,
        rule_hash=compute_rule_hash(
            data.rule_name, data.field.value, data.operator.value, data.value, data.jurisdiction
        ),
    )
    session.add(rule)
    _flush_or_duplicate(
        session,
        "A rule with the same name or content already exists",
        {"rule_name": data.rule_name},
    )
    record_audit(
        session,
        "Rule Created",
        "rule",
        rule.id,
        {"rule_name": rule.rule_name, "status": rule.status, "source": rule.source},
        organization_id=organization_id,
    )
    logger.info("Rule %s created for organization %s", rule.id, organization_id)
    return rule


def update_rule(session: Session, organization_id: int, rule_id: int, data: RuleUpdate) -> Rule:
    """Apply a partial update. Content changes recompute rule_hash; status follows the lifecycle.

    The UPDATE statement itself is scoped by organization_id.
    """
    rule = get_rule(session, organization_id, rule_id)
    changes = data.model_dump(exclude_unset=True, exclude_none=True)
    new_status = changes.pop("status", None)
    if new_status is not None:
        new_status = RuleStatus(new_status).value
        if new_status != rule.status:
            validate_rule_status_transition(rule.status, new_status)
    for key in ("field", "operator"):
        if key in changes:
            changes[key] = changes[key].value
    values = dict(changes)
    if changes:
        if rule.status == RuleStatus.ARCHIVED.value:
            raise ValidationError("Archived rules cannot be edited", {"rule_id": rule_id})
        merged = {
            "rule_name": rule.rule_name,
            "field": rule.field,
            "operator": rule.operator,
            "value": rule.value,
            **changes,
        }
        field, operator, value = merged["field"], merged["operator"], merged["value"]
        try:
            check_rule_value(RuleField(field), Operator(operator), value)
        except ValueError as e:
            raise ValidationError(str(e), {"value": value}) from e
        values["rule_hash"] = compute_rule_hash(
            merged["rule_name"], field, operator, value, rule.jurisdiction
        )
    if new_status is not None:
        values["status"] = new_status
    if values:
        try:
            result = session.execute(
                update(Rule)
                .where(Rule.id == rule_id, Rule.organization_id == organization_id)
                .values(**values)
            )
        except IntegrityError as e:
            raise DuplicateError(
                "A rule with the same name or content already exists", {"rule_id": rule_id}
            ) from e
        if result.rowcount == 0:
            raise NotFoundError("Rule not found", {"rule_id": rule_id})
    record_audit(
        session,
        "Rule Updated",
        "rule",
        rule.id,
        {"changes": sorted(changes), "status": rule.status},
        organization_id=organization_id,
    )
    return rule


def delete_rule(session: Session, organization_id: int, rule_id: int) -> None:
    result = session.execute(
        delete(Rule).where(Rule.id == rule_id, Rule.organization_id == organization_id)
    )
    if result.rowcount == 0:
        raise NotFoundError("Rule not found", {"rule_id": rule_id})
    record_audit(session, "Rule Deleted", "rule", rule_id, organization_id=organization_id)


def seed_default_rules(session: Session, organization_id: int) -> list[Rule]:
    """Create the starter rule set for a new organization (ACTIVE, manual)."""
    created: list[Rule] = []
    for spec in DEFAULT_RULES:
        created.append(create_rule(session, organization_id, RuleCreate(**spec)))
    return created
