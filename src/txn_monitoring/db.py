"""SQLAlchemy 2.x engine and session (SQLite and Postgres)."""

from __future__ import annotations

import hashlib
import json
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from logging import getLogger
from typing import Any

from sqlalchemy import create_engine, event, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from txn_monitoring.audit_context import get_audit_context, get_organization_id
from txn_monitoring.models import AuditLog, Base

logger = getLogger(__name__)

# Module-level engine/session_factory; set via init_db()
_engine = None
_SessionLocal: sessionmaker[Session] | None = None

_IS_SQLITE = False


def _audit_row_canonical(row: AuditLog) -> str:
    """Canonical string for hashing (excludes id, prev_hash, row_hash)."""
    ts = row.ts
    if ts is not None and ts.tzinfo is not None:
        # stored naive on SQLite; hash the UTC wall time so verification matches on read
        ts = ts.astimezone(UTC).replace(tzinfo=None)
    ts_str = ts.isoformat() if ts else ""
    details = json.dumps(row.details_json or {}, sort_keys=True, default=str)
    return (
        f"{row.correlation_id or ''}|{row.organization_id or ''}|{row.action}|"
        f"{row.entity_type}|{row.entity_id}|{ts_str}|{row.actor}|{details}"
    )


def compute_row_hash(prev_hash: str | None, row: AuditLog) -> str:
    payload = (prev_hash or "") + _audit_row_canonical(row)
    return hashlib.sha256(payload.encode()).hexdigest()


def _compute_audit_chain(session: Session) -> None:
    """Set prev_hash and row_hash on new AuditLog instances (tamper resistance)."""
    new_logs = [o for o in session.new if isinstance(o, AuditLog)]
    if not new_logs:
        return
    stmt = select(AuditLog.row_hash).order_by(AuditLog.id.desc()).limit(1)
    prev_hash: str | None = session.execute(stmt).scalar_one_or_none()
    for row in new_logs:
        if row.ts is None:
            row.ts = datetime.now(UTC)
        row.prev_hash = prev_hash
        row.row_hash = compute_row_hash(prev_hash, row)
        prev_hash = row.row_hash


@event.listens_for(Session, "before_flush")
def _before_flush_audit_chain(session, flush_context, instances):
    _compute_audit_chain(session)


def record_audit(
    session: Session,
    action: str,
    entity_type: str,
    entity_id: str | int,
    details: dict[str, Any] | None = None,
    organization_id: int | None = None,
) -> AuditLog:
    """Add an AuditLog row stamped with the current correlation_id and actor."""
    correlation_id, actor = get_audit_context()
    row = AuditLog(
        correlation_id=correlation_id,
        organization_id=organization_id if organization_id is not None else get_organization_id(),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        ts=datetime.now(UTC),
        actor=actor,
        details_json=details,
    )
    session.add(row)
    return row


def is_unique_violation(exc: IntegrityError) -> bool:
    """True when the IntegrityError comes from a unique constraint (not a FK or NOT NULL)."""
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if code:
        return code == "23505"
    return "unique" in str(orig).lower()


def _sqlite_on_connect(dbapi_connection, connection_record) -> None:
    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT; SQLAlchemy emits BEGIN instead.
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_on_begin(conn) -> None:
    conn.exec_driver_sql("BEGIN")


def init_db(database_url: str, echo: bool = False) -> None:
    """Create engine and session factory. Call once at startup.
    SQLite: create_all. Postgres: engine only (schema via Alembic).
    """
    global _engine, _SessionLocal, _IS_SQLITE
    _IS_SQLITE = "sqlite" in database_url
    connect_args = {} if not _IS_SQLITE else {"check_same_thread": False}
    if _engine is not None:
        _engine.dispose()
    _engine = create_engine(
        database_url,
        echo=echo,
        connect_args=connect_args,
    )
    _SessionLocal = sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=_engine
    )
    if _IS_SQLITE:
        event.listen(_engine, "connect", _sqlite_on_connect)
        event.listen(_engine, "begin", _sqlite_on_begin)
        Base.metadata.create_all(bind=_engine)
    # Postgres: schema is applied via Alembic; do not create_all here
    logger.debug("Database initialized (sqlite=%s)", _IS_SQLITE)


def get_engine():
    """Return the global engine. Raises if init_db() was not called."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> sessionmaker[Session]:
    if _SessionLocal is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _SessionLocal


@contextmanager
def session_scope() -> Generator[Session, None, None]:
    """Provide a transactional scope for a block."""
    factory = get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
