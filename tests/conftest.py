"""Pytest fixtures: file-based SQLite DB per test, organizations, sample config."""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path

import pytest

# Tests always run against a temporary SQLite file, whatever the shell exports.
for _var in ("DATABASE_URL", "TXN_DATABASE_URL", "TXN_CONFIG_PATH", "TXN_API_KEYS", "TXN_ENV"):
    os.environ.pop(_var, None)

from txn_monitoring.audit_context import set_audit_context
from txn_monitoring.db import init_db, session_scope
from txn_monitoring.models import Organization
from txn_monitoring.organizations import create_organization


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "TXN_CRAWLER_WEBHOOK_SECRET",
        "TXN_BILLING_WEBHOOK_SECRET",
        "TXN_OUTBOUND_WEBHOOK_SECRET",
        "TXN_LOG_LEVEL",
    ):
        monkeypatch.delenv(var, raising=False)
    set_audit_context("test-run", "test")


@pytest.fixture
def config_path(tmp_path: Path) -> str:
    """Return path to a temporary config dir with default.yaml."""
    cfg_dir = tmp_path / "config"
    cfg_dir.mkdir()
    (cfg_dir / "default.yaml").write_text(
        f"""
app:
  log_level: INFO
database:
  url: "sqlite:///{tmp_path / 'txn.db'}"
  echo: false
notifications:
  timeout_seconds: 2
webhooks:
  billing_tolerance_seconds: 300
"""
    )
    return str(cfg_dir / "default.yaml")


@pytest.fixture
def db(tmp_path: Path) -> str:
    """Initialize a fresh SQLite file DB; returns its URL."""
    url = f"sqlite:///{tmp_path / 'txn.db'}"
    init_db(url, echo=False)
    return url


@pytest.fixture
def org_id(db: str) -> int:
    """Organization seeded with the default rules."""
    with session_scope() as session:
        return create_organization(session, "Acme Payments").id


@pytest.fixture
def bare_org_id(db: str) -> int:
    """Organization without any rules."""
    with session_scope() as session:
        org = Organization(name="Bare Org")
        session.add(org)
        session.flush()
        return org.id


@pytest.fixture
def other_org_id(db: str) -> int:
    with session_scope() as session:
        return create_organization(session, "Other Bank").id


@pytest.fixture
def make_txn():
    """Factory for a valid transaction payload; override any field."""

    def _make(**overrides) -> dict:
        data = {
            "transaction_id": "T1",
            "user_id": "u1",
            "amount": "50.00",
            "currency": "USD",
            "country": "US",
            "timestamp": datetime(2026, 1, 15, 12, 0, tzinfo=UTC).isoformat(),
        }
        data.update(overrides)
        return data

    return _make
