"""API tests with TestClient."""

from __future__ import annotations

import hashlib
import hmac
import json
import time

import httpx
import pytest
from fastapi.testclient import TestClient

from txn_monitoring.api import app
from txn_monitoring.notifications import NotificationDispatcher
from txn_monitoring.webhooks.signature import compute_signature

AUTH_HEADERS = {"X-API-Key": "test_admin_key"}
READ_ONLY_HEADERS = {"X-API-Key": "test_viewer_key"}
OTHER_ORG_HEADERS = {"X-API-Key": "test_other_key"}


@pytest.fixture
def delivered() -> list[httpx.Request]:
    return []


@pytest.fixture
def api_client(
    org_id: int,
    other_org_id: int,
    config_path: str,
    delivered: list,
    monkeypatch: pytest.MonkeyPatch,
):
    """Client bound to the test DB; org_id has read_write and read_only keys."""
    monkeypatch.setenv(
        "TXN_API_KEYS",
        f"admin:test_admin_key:{org_id},viewer:test_viewer_key:{org_id}:read_only,"
        f"other:test_other_key:{other_org_id}",
    )
    monkeypatch.setenv("TXN_CONFIG_PATH", config_path)

    def handler(request: httpx.Request) -> httpx.Response:
        delivered.append(request)
        return httpx.Response(200, json={"ok": True})

    app.state.dispatcher = NotificationDispatcher(
        2, slack_api_url="https://slack.test/api", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    try:
        yield TestClient(app)
    finally:
        app.state.dispatcher = None


def _txn(**overrides) -> dict:
    data = {
        "transaction_id": "txn_001",
        "user_id": "user_001",
        "amount": 150000,
        "currency": "USD",
        "country": "US",
        "timestamp": "2025-01-01T10:00:00Z",
    }
    data.update(overrides)
    return data


def test_health(api_client: TestClient) -> None:
    resp = api_client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ok"
    assert body["db_status"] == "ok"


def test_correlation_id_echoed(api_client: TestClient) -> None:
    resp = api_client.get("/health", headers={"X-Correlation-ID": "corr-abc"})
    assert resp.headers["X-Correlation-ID"] == "corr-abc"
    assert api_client.get("/health").headers["X-Correlation-ID"]


def test_requires_api_key(api_client: TestClient) -> None:
    assert api_client.post("/transactions", json=_txn()).status_code == 401
    assert (
        api_client.post("/transactions", json=_txn(), headers={"X-API-Key": "nope"}).status_code
        == 401
    )


def test_read_only_key_cannot_write(api_client: TestClient) -> None:
    resp = api_client.post("/transactions", json=_txn(), headers=READ_ONLY_HEADERS)
    assert resp.status_code == 403
    assert api_client.get("/alerts", headers=READ_ONLY_HEADERS).status_code == 200


def test_flagged_transaction(api_client: TestClient) -> None:
    resp = api_client.post("/transactions", json=_txn(), headers=AUTH_HEADERS)
    assert resp.status_code == 201
    body = resp.json()
    assert body["success"] is True
    assert body["message"] == "Transaction flagged!"
    assert len(body["data"]["alert_ids"]) == 1

    detail = api_client.get("/transactions/txn_001", headers=AUTH_HEADERS).json()["data"]
    assert detail["flagged"] is True
    assert detail["alerts"][0]["reason"] == "Custom rule triggered: High-value transaction alert"


def test_unflagged_transaction(api_client: TestClient) -> None:
    resp = api_client.post("/transactions", json=_txn(amount=500), headers=AUTH_HEADERS)
    assert resp.status_code == 201
    assert resp.json()["message"] == "Transaction created!"
    assert api_client.get("/alerts", headers=AUTH_HEADERS).json()["data"] == []


def test_duplicate_transaction_is_409(api_client: TestClient) -> None:
    api_client.post("/transactions", json=_txn(), headers=AUTH_HEADERS)
    resp = api_client.post("/transactions", json=_txn(), headers=AUTH_HEADERS)
    assert resp.status_code == 409
    assert resp.json()["success"] is False
    # another organization may reuse the id
    assert api_client.post("/transactions", json=_txn(), headers=OTHER_ORG_HEADERS).status_code == 201


def test_invalid_transaction_is_400(api_client: TestClient) -> None:
    resp = api_client.post("/transactions", json=_txn(amount=0, currency="US"), headers=AUTH_HEADERS)
    assert resp.status_code == 400
    assert set(resp.json()["details"]["fields"]) == {"amount", "currency"}


def test_transactions_are_scoped_to_organization(api_client: TestClient) -> None:
    api_client.post("/transactions", json=_txn(), headers=AUTH_HEADERS)
    assert api_client.get("/transactions/txn_001", headers=OTHER_ORG_HEADERS).status_code == 404
    assert api_client.get("/alerts", headers=OTHER_ORG_HEADERS).json()["pagination"]["total"] == 0


def test_alert_delivered_in_background(api_client: TestClient, delivered: list) -> None:
    channel = api_client.put(
        "/channels/slack",
        json={"name": "Slack", "config": {"access_token": "xoxb-1", "selected_channel": "C1"}},
        headers=AUTH_HEADERS,
    )
    assert channel.status_code == 200
    assert "config" not in channel.json()["data"]
    rules = api_client.get("/rules", params={"status": "ACTIVE"}, headers=AUTH_HEADERS).json()["data"]
    subs = api_client.put(
        "/channels/slack/subscriptions",
        json={"rule_ids": [rules[0]["id"]]},
        headers=AUTH_HEADERS,
    )
    assert subs.status_code == 200
    api_client.post("/transactions", json=_txn(), headers=AUTH_HEADERS)
    assert [r.url.path for r in delivered] == ["/api/chat.postMessage"]


def test_channel_test_notification(api_client: TestClient, delivered: list) -> None:
    channel_id = api_client.put(
        "/channels/webhook",
        json={"name": "Hook", "config": {"url": "https://hooks.test/in"}},
        headers=AUTH_HEADERS,
    ).json()["data"]["id"]
    resp = api_client.post(f"/channels/{channel_id}/test", headers=AUTH_HEADERS)
    assert resp.json() == {"success": True, "message": "Test notification sent successfully"}
    assert delivered[0].url.host == "hooks.test"
    assert api_client.post(f"/channels/{channel_id}/test", headers=OTHER_ORG_HEADERS).status_code == 404


def test_unknown_channel_type_is_400(api_client: TestClient) -> None:
    resp = api_client.put("/channels/pager", json={"name": "P"}, headers=AUTH_HEADERS)
    assert resp.status_code == 400


def test_rule_crud(api_client: TestClient) -> None:
    resp = api_client.post(
        "/rules",
        json={"rule_name": "UK", "field": "country", "operator": "EQUAL", "value": "GB", "status": "DRAFT"},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 201
    rule_id = resp.json()["data"]["id"]

    resp = api_client.patch(f"/rules/{rule_id}", json={"status": "ACTIVE"}, headers=AUTH_HEADERS)
    assert resp.json()["data"]["status"] == "ACTIVE"
    resp = api_client.patch(f"/rules/{rule_id}", json={"status": "DRAFT"}, headers=AUTH_HEADERS)
    assert resp.status_code == 400

    assert api_client.delete(f"/rules/{rule_id}", headers=OTHER_ORG_HEADERS).status_code == 404
    assert api_client.delete(f"/rules/{rule_id}", headers=AUTH_HEADERS).status_code == 200
    assert api_client.get(f"/rules/{rule_id}", headers=AUTH_HEADERS).status_code == 404


def test_invalid_rule_body_is_400(api_client: TestClient) -> None:
    resp = api_client.post(
        "/rules",
        json={"rule_name": "x", "field": "amount", "operator": "MATCHES", "value": "1"},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_watchlist_endpoints(api_client: TestClient) -> None:
    resp = api_client.post(
        "/watchlist", json={"type": "user", "value": "user_001"}, headers=AUTH_HEADERS
    )
    assert resp.status_code == 201
    entry_id = resp.json()["data"]["id"]
    flagged = api_client.post("/transactions", json=_txn(amount=5), headers=AUTH_HEADERS).json()
    assert flagged["message"] == "Transaction flagged!"
    assert len(api_client.get("/watchlist", headers=AUTH_HEADERS).json()["data"]) == 1
    assert api_client.delete(f"/watchlist/{entry_id}", headers=OTHER_ORG_HEADERS).status_code == 404
    assert api_client.delete(f"/watchlist/{entry_id}", headers=AUTH_HEADERS).status_code == 200


def test_alerts_pagination(api_client: TestClient) -> None:
    for i in range(3):
        api_client.post("/transactions", json=_txn(transaction_id=f"t{i}"), headers=AUTH_HEADERS)
    body = api_client.get("/alerts", params={"page": 2, "limit": 2}, headers=AUTH_HEADERS).json()
    assert body["pagination"] == {"page": 2, "limit": 2, "total": 3, "pages": 2}
    assert len(body["data"]) == 1
    assert api_client.get("/alerts", params={"limit": 500}, headers=AUTH_HEADERS).status_code == 400


def test_crawler_webhook(api_client: TestClient, org_id: int, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TXN_CRAWLER_WEBHOOK_SECRET", "crawl-secret")
    body = json.dumps(
        {
            "organizationId": org_id,
            "envelope": {
                "crawlId": "c-1",
                "rules": [{"rule_name": "KP", "field": "country", "operator": "EQUAL", "value": "KP"}],
            },
        }
    ).encode()
    signed = {"X-Webhook-Signature": f"sha256={compute_signature('crawl-secret', body)}"}
    resp = api_client.post("/crawlers/webhook", content=body, headers=signed)
    assert resp.status_code == 200
    assert resp.json()["data"]["imported"] == 1
    replay = api_client.post("/crawlers/webhook", content=body, headers=signed)
    assert replay.status_code == 200
    assert replay.json()["data"]["already_processed"] is True
    assert replay.json()["data"]["imported"] == 0

    bad = api_client.post("/crawlers/webhook", content=body, headers={"X-Webhook-Signature": "0" * 64})
    assert bad.status_code == 401
    unsigned = api_client.post("/crawlers/webhook", content=body)
    assert unsigned.status_code == 401


def test_crawler_webhook_requires_envelope(
    api_client: TestClient, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("TXN_CRAWLER_WEBHOOK_SECRET", "crawl-secret")
    body = b'{"organizationId": 1}'
    headers = {"X-Webhook-Secret": "crawl-secret"}
    assert api_client.post("/crawlers/webhook", content=body, headers=headers).status_code == 400
    assert (
        api_client.post("/crawlers/webhook", content=b"not json", headers=headers).status_code == 400
    )


def test_billing_webhook(api_client: TestClient, org_id: int, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TXN_BILLING_WEBHOOK_SECRET", "bill-secret")
    body = json.dumps(
        {
            "id": "evt_api_1",
            "type": "customer.subscription.created",
            "data": {"object": {"id": "sub_1", "status": "trialing", "metadata": {"organizationId": org_id}}},
        }
    ).encode()
    ts = int(time.time())
    sig = hmac.new(b"bill-secret", f"{ts}.".encode() + body, hashlib.sha256).hexdigest()
    headers = {"Stripe-Signature": f"t={ts},v1={sig}"}
    resp = api_client.post("/webhooks/billing", content=body, headers=headers)
    assert resp.status_code == 200
    assert resp.json()["processed"] is True
    replay = api_client.post("/webhooks/billing", content=body, headers=headers)
    assert replay.json() == {"received": True, "already_processed": True}
    assert api_client.post("/webhooks/billing", content=body).status_code == 401


def test_billing_webhook_without_secret_is_rejected(api_client: TestClient) -> None:
    resp = api_client.post("/webhooks/billing", content=b"{}", headers={"Stripe-Signature": "t=1,v1=ab"})
    assert resp.status_code == 401


def test_crawler_webhook_without_secret_is_rejected(api_client: TestClient, org_id: int) -> None:
    body = json.dumps({"organizationId": org_id, "envelope": {"crawlId": "c-x", "rules": []}}).encode()
    assert api_client.post("/crawlers/webhook", content=body).status_code == 401
