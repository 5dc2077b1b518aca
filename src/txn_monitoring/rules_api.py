"""Rules API router: organization-scoped CRUD for /rules."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from txn_monitoring.auth import Principal, require_api_key, require_api_key_write
from txn_monitoring.db import session_scope
from txn_monitoring.rules.base import RuleStatus
from txn_monitoring.rules.store import create_rule, delete_rule, get_rule, list_rules, update_rule
from txn_monitoring.schemas import RuleCreate, RuleSnapshot, RuleUpdate

rules_router = APIRouter(tags=["rules"])


def _dump(rule: Any) -> dict[str, Any]:
    return RuleSnapshot.model_validate(rule).model_dump(mode="json")


@rules_router.get("/rules")
def get_rules(
    status: RuleStatus | None = Query(None),
    principal: Principal = Depends(require_api_key),
) -> dict[str, Any]:
    """List the organization's rules, optionally filtered by status."""
    with session_scope() as session:
        rules = list_rules(session, principal.organization_id, status)
        return {"success": True, "data": [_dump(r) for r in rules]}


@rules_router.get("/rules/{rule_id}")
def get_one_rule(rule_id: int, principal: Principal = Depends(require_api_key)) -> dict[str, Any]:
    with session_scope() as session:
        return {"success": True, "data": _dump(get_rule(session, principal.organization_id, rule_id))}


@rules_router.post("/rules", status_code=201)
def post_rule(
    body: RuleCreate, principal: Principal = Depends(require_api_key_write)
) -> dict[str, Any]:
    """Create a manual rule. Audited."""
    with session_scope() as session:
        rule = create_rule(session, principal.organization_id, body)
        return {"success": True, "data": _dump(rule)}


@rules_router.patch("/rules/{rule_id}")
def patch_rule(
    rule_id: int, body: RuleUpdate, principal: Principal = Depends(require_api_key_write)
) -> dict[str, Any]:
    """Partial update; status changes must follow DRAFT -> ACTIVE -> ARCHIVED. Audited."""
    with session_scope() as session:
        rule = update_rule(session, principal.organization_id, rule_id, body)
        return {"success": True, "data": _dump(rule)}


@rules_router.delete("/rules/{rule_id}")
def remove_rule(rule_id: int, principal: Principal = Depends(require_api_key_write)) -> dict[str, Any]:
    with session_scope() as session:
        delete_rule(session, principal.organization_id, rule_id)
    return {"success": True, "message": "Rule deleted"}
