"""Optional Postgres smoke test; run only when POSTGRES_TEST_URL is set."""

import os
import uuid

import pytest
from sqlalchemy import text

from txn_monitoring.db import get_engine, init_db, session_scope
from txn_monitoring.errors import DuplicateError
from txn_monitoring.ingest import ingest_transaction
from txn_monitoring.models import Base
from txn_monitoring.organizations import create_organization

POSTGRES_TEST_URL = os.environ.get("POSTGRES_TEST_URL")

pytestmark = [
    pytest.mark.postgres,
    pytest.mark.skipif(
        not POSTGRES_TEST_URL or "postgresql" not in (POSTGRES_TEST_URL or ""),
        reason="POSTGRES_TEST_URL (postgresql URL) not set",
    ),
]


def test_postgres_connect_and_query() -> None:
    """Minimal smoke test: connect to Postgres and run a query."""
    init_db(POSTGRES_TEST_URL, echo=False)
    with session_scope() as session:
        row = session.execute(text("SELECT 1 AS n")).first()
    assert row is not None
    assert row[0] == 1


def test_postgres_duplicate_detection() -> None:
    """Unique violations are reported by SQLSTATE 23505 on Postgres."""
    init_db(POSTGRES_TEST_URL, echo=False)
    Base.metadata.create_all(bind=get_engine())
    with session_scope() as session:
        org_id = create_organization(session, f"smoke-{uuid.uuid4().hex[:8]}").id
    txn = {
        "transaction_id": "smoke-1",
        "user_id": "u1",
        "amount": 10,
        "currency": "USD",
        "country": "US",
        "timestamp": "2026-01-01T00:00:00Z",
    }
    ingest_transaction(txn, org_id)
    with pytest.raises(DuplicateError):
        ingest_transaction(txn, org_id)
