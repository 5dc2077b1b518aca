"""Tests for webhook signatures, the webhook ledger, billing events and crawler batches."""

from __future__ import annotations

import hashlib
import hmac
import time

import pytest
from sqlalchemy import func, select

from txn_monitoring.db import session_scope
from txn_monitoring.errors import DuplicateError, SignatureVerificationError, ValidationError
from txn_monitoring.models import BillingSubscription, Rule, WebhookEvent
from txn_monitoring.rules.store import delete_rule
from txn_monitoring.webhooks import WebhookLedger, crawler_event_id
from txn_monitoring.webhooks.billing import process_billing_event
from txn_monitoring.webhooks.crawler import handle_crawler_batch, parse_crawler_body
from txn_monitoring.webhooks.signature import (
    compute_signature,
    verify_billing_signature,
    verify_crawler_request,
    verify_signature,
)

SECRET = "whsec_test"


def _billing_header(body: bytes, ts: int, secret: str = SECRET) -> str:
    sig = hmac.new(secret.encode(), f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


# --- signatures ---
def test_verify_signature_accepts_prefix_and_rejects_tampering() -> None:
    body = b'{"organizationId": 1}'
    sig = compute_signature(SECRET, body)
    assert verify_signature(body, sig, SECRET)
    assert verify_signature(body, f"sha256={sig}", SECRET)
    assert not verify_signature(body + b" ", sig, SECRET)
    assert not verify_signature(body, sig, "other-secret")
    assert not verify_signature(body, "", SECRET)


def test_crawler_request_with_signature_header() -> None:
    body = b"{}"
    headers = {"X-Webhook-Signature": f"sha256={compute_signature(SECRET, body)}"}
    verify_crawler_request(body, headers, SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_crawler_request(b"{ }", headers, SECRET)


def test_crawler_request_legacy_secret_header() -> None:
    verify_crawler_request(b"{}", {"X-Webhook-Secret": SECRET}, SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_crawler_request(b"{}", {"X-Webhook-Secret": "nope"}, SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_crawler_request(b"{}", {}, SECRET)


def test_crawler_request_without_configured_secret_is_rejected() -> None:
    with pytest.raises(SignatureVerificationError):
        verify_crawler_request(b"{}", {}, None)
    with pytest.raises(SignatureVerificationError):
        verify_crawler_request(b"{}", {"X-Webhook-Secret": ""}, "")


def test_crawler_request_unsigned_allowed_only_when_enabled() -> None:
    verify_crawler_request(b"{}", {}, None, allow_unsigned=True)


def test_billing_signature() -> None:
    body = b'{"id": "evt_1"}'
    now = int(time.time())
    verify_billing_signature(body, _billing_header(body, now), SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_billing_signature(body, _billing_header(body, now, "wrong"), SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_billing_signature(body, _billing_header(body, now - 3600), SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_billing_signature(body, "garbage", SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_billing_signature(body, None, SECRET)
    with pytest.raises(SignatureVerificationError):
        verify_billing_signature(body, _billing_header(body, now), None)


def test_billing_signature_requires_json_body() -> None:
    body = b"not json"
    with pytest.raises(ValidationError):
        verify_billing_signature(body, _billing_header(body, int(time.time())), SECRET)


# --- ledger ---
def test_ledger_marks_once(db: str) -> None:
    with session_scope() as session:
        ledger = WebhookLedger(session)
        assert ledger.has_processed("evt_1") is False
        ledger.mark_processed("evt_1", "invoice.payment_failed", "stripe")
        assert ledger.has_processed("evt_1") is True
    with pytest.raises(DuplicateError):
        with session_scope() as session:
            WebhookLedger(session).mark_processed("evt_1", "invoice.payment_failed", "stripe")


# --- billing ---
def _subscription_event(event_id: str, org: int, status: str = "active", **obj) -> dict:
    return {
        "id": event_id,
        "type": obj.pop("event_type", "customer.subscription.created"),
        "data": {
            "object": {
                "id": "sub_123",
                "customer": "cus_9",
                "status": status,
                "metadata": {"organizationId": str(org), "plan": "pro"},
                "current_period_start": 1767225600,
                "current_period_end": 1769904000,
                **obj,
            }
        },
    }


def _subscription(org: int) -> BillingSubscription:
    with session_scope() as session:
        return session.execute(
            select(BillingSubscription).where(BillingSubscription.organization_id == org)
        ).scalar_one()


def test_billing_subscription_created(bare_org_id: int) -> None:
    out = process_billing_event(_subscription_event("evt_1", bare_org_id))
    assert out == {"received": True, "processed": True, "handled": True}
    sub = _subscription(bare_org_id)
    assert (sub.status, sub.plan, sub.provider_subscription_id) == ("active", "pro", "sub_123")
    assert sub.current_period_end is not None


def test_billing_replay_has_no_effect(bare_org_id: int) -> None:
    event = _subscription_event("evt_1", bare_org_id)
    process_billing_event(event)
    process_billing_event(
        {
            "id": "evt_2",
            "type": "invoice.payment_failed",
            "data": {"object": {"subscription": "sub_123"}},
        }
    )
    assert _subscription(bare_org_id).status == "past_due"
    # replaying the creation must not reset the status
    assert process_billing_event(event) == {"received": True, "already_processed": True}
    assert _subscription(bare_org_id).status == "past_due"
    with session_scope() as session:
        assert session.execute(select(func.count()).select_from(WebhookEvent)).scalar_one() == 2


def test_billing_payment_succeeded_reactivates(bare_org_id: int) -> None:
    process_billing_event(_subscription_event("evt_1", bare_org_id, status="past_due"))
    process_billing_event(
        {
            "id": "evt_2",
            "type": "invoice.payment_succeeded",
            "data": {"object": {"subscription": "sub_123"}},
        }
    )
    assert _subscription(bare_org_id).status == "active"


def test_billing_subscription_deleted(bare_org_id: int) -> None:
    process_billing_event(_subscription_event("evt_1", bare_org_id, cancel_at_period_end=True))
    process_billing_event(
        {"id": "evt_2", "type": "customer.subscription.deleted", "data": {"object": {"id": "sub_123"}}}
    )
    sub = _subscription(bare_org_id)
    assert sub.status == "canceled"
    assert sub.cancel_at_period_end is False


def test_billing_unhandled_type_is_acknowledged(db: str) -> None:
    out = process_billing_event({"id": "evt_9", "type": "charge.refunded", "data": {"object": {}}})
    assert out == {"received": True, "processed": True, "handled": False}


def test_billing_malformed_event(db: str) -> None:
    with pytest.raises(ValidationError):
        process_billing_event({"type": "invoice.payment_failed"})
    with pytest.raises(ValidationError):
        process_billing_event(["not", "an", "event"])


# --- crawler ---
def test_parse_crawler_body() -> None:
    org, envelope = parse_crawler_body(
        {"organizationId": "7", "envelope": {"crawlId": "c1", "rules": []}}
    )
    assert org == 7
    assert envelope.crawl_id == "c1"
    with pytest.raises(ValidationError):
        parse_crawler_body({"envelope": {"rules": []}})
    with pytest.raises(ValidationError):
        parse_crawler_body({"organizationId": "seven", "envelope": {"rules": []}})


def _crawl_body(org_id: int, crawl_id: str = "c1") -> dict:
    return {
        "organizationId": org_id,
        "envelope": {
            "crawlId": crawl_id,
            "rules": [{"rule_name": "KP", "field": "country", "operator": "EQUAL", "value": "KP"}],
        },
    }


def test_crawler_batch_replay_is_acknowledged_without_import(bare_org_id: int) -> None:
    body = _crawl_body(bare_org_id)
    first = handle_crawler_batch(*parse_crawler_body(body))
    second = handle_crawler_batch(*parse_crawler_body(body))
    assert (first.imported, first.already_processed) == (1, False)
    assert (second.imported, second.skipped, second.already_processed) == (0, 0, True)
    with session_scope() as session:
        assert WebhookLedger(session).has_processed(crawler_event_id(bare_org_id, "c1"))
        assert session.execute(select(func.count()).select_from(Rule)).scalar_one() == 1


def test_crawler_replay_does_not_recreate_deleted_rule(bare_org_id: int) -> None:
    body = _crawl_body(bare_org_id)
    rule_id = handle_crawler_batch(*parse_crawler_body(body)).details["imported"][0]["rule_id"]
    with session_scope() as session:
        delete_rule(session, bare_org_id, rule_id)

    replay = handle_crawler_batch(*parse_crawler_body(body))
    assert replay.already_processed is True
    assert replay.imported == 0
    with session_scope() as session:
        assert session.execute(select(func.count()).select_from(Rule)).scalar_one() == 0

    # a new crawl of the same content is imported again
    fresh = handle_crawler_batch(*parse_crawler_body(_crawl_body(bare_org_id, "c2")))
    assert (fresh.imported, fresh.already_processed) == (1, False)
