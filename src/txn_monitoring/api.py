"""FastAPI app: transaction ingestion, alerts, and the rule/watchlist/channel/webhook routers."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import BackgroundTasks, Body, Depends, FastAPI, Query
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from txn_monitoring import ENGINE_VERSION, __version__
from txn_monitoring.audit_context import set_audit_context
from txn_monitoring.auth import Principal, require_api_key, require_api_key_write
from txn_monitoring.channels_api import channels_router, get_dispatcher
from txn_monitoring.config import get_config
from txn_monitoring.db import get_engine, init_db, session_scope
from txn_monitoring.errors import (
    DependencyError,
    MonitoringError,
    NotFoundError,
    get_status_code,
    public_message,
)
from txn_monitoring.ingest.pipeline import ingest_transaction
from txn_monitoring.logging_config import get_logger, setup_logging
from txn_monitoring.models import Alert, Transaction
from txn_monitoring.notifications.dispatcher import NotificationDispatcher
from txn_monitoring.rules_api import rules_router
from txn_monitoring.schemas import AlertSnapshot, TransactionSnapshot
from txn_monitoring.watchlist_api import watchlist_router
from txn_monitoring.webhooks_api import webhooks_router

logger = get_logger(__name__)

MAX_PAGE_SIZE = 100


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = get_config()
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    db_url = config.get("database", {}).get("url", "sqlite:///./data/txn_monitoring.db")
    echo = config.get("database", {}).get("echo", False)
    init_db(db_url, echo=echo)
    app.state.dispatcher = NotificationDispatcher.from_config(config)
    yield


app = FastAPI(title="Transaction Monitoring API", version=__version__, lifespan=lifespan)


class AuditContextMiddleware(BaseHTTPMiddleware):
    """Set correlation_id per request; echo X-Correlation-ID in response.
    Actor and organization are set by require_api_key from the API key identity.
    """

    async def dispatch(self, request: Request, call_next: Any) -> Any:
        correlation_id = request.headers.get("X-Correlation-ID") or str(uuid.uuid4())
        set_audit_context(correlation_id, "anonymous")
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = correlation_id
        return response


app.add_middleware(AuditContextMiddleware)


@app.exception_handler(MonitoringError)
async def monitoring_error_handler(request: Request, exc: MonitoringError) -> JSONResponse:
    status = get_status_code(exc)
    if status >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    body: dict[str, Any] = {"success": False, "error": public_message(exc)}
    if exc.details and not isinstance(exc, DependencyError):
        body["details"] = exc.details
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = {
        ".".join(str(p) for p in err.get("loc", ()) if p != "body") or "body": err.get("msg")
        for err in exc.errors()
    }
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": "Validation failed", "details": {"fields": fields}},
    )


app.include_router(rules_router)
app.include_router(watchlist_router)
app.include_router(channels_router)
app.include_router(webhooks_router)


@app.get("/health")
def health() -> dict[str, Any]:
    """Liveness and version; db_status indicates DB connectivity."""
    db_status = "unknown"
    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "error"
    return {"status": "ok", "engine_version": ENGINE_VERSION, "db_status": db_status}


@app.post("/transactions", status_code=201)
def create_transaction(
    background_tasks: BackgroundTasks,
    body: dict[str, Any] = Body(...),
    principal: Principal = Depends(require_api_key_write),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> dict[str, Any]:
    """Ingest one transaction; notifications for rule alerts go out after the response."""
    result = ingest_transaction(
        body,
        principal.organization_id,
        dispatch=lambda notifications: background_tasks.add_task(
            dispatcher.notify_all, notifications
        ),
    )
    return {
        "success": True,
        "message": result.message,
        "data": {
            "transaction_id": result.transaction_id,
            "flagged": result.flagged,
            "alert_ids": [a.id for a in result.alerts],
        },
    }


@app.get("/transactions/{transaction_id}")
def get_transaction(
    transaction_id: str, principal: Principal = Depends(require_api_key)
) -> dict[str, Any]:
    """Fetch one of the organization's transactions with its alerts."""
    with session_scope() as session:
        txn = session.execute(
            select(Transaction).where(
                Transaction.organization_id == principal.organization_id,
                Transaction.transaction_id == transaction_id,
            )
        ).scalar_one_or_none()
        if txn is None:
            raise NotFoundError("Transaction not found", {"transaction_id": transaction_id})
        alerts = session.execute(
            select(Alert).where(Alert.transaction_id == txn.id).order_by(Alert.id)
        ).scalars()
        return {
            "success": True,
            "data": {
                **TransactionSnapshot.model_validate(txn).model_dump(mode="json"),
                "alerts": [AlertSnapshot.model_validate(a).model_dump(mode="json") for a in alerts],
            },
        }


@app.get("/alerts")
def list_alerts(
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=MAX_PAGE_SIZE),
    principal: Principal = Depends(require_api_key),
) -> dict[str, Any]:
    """Organization's alerts, newest first, paginated."""
    org_id = principal.organization_id
    with session_scope() as session:
        total = session.execute(
            select(func.count(Alert.id)).where(Alert.organization_id == org_id)
        ).scalar_one()
        alerts = session.execute(
            select(Alert)
            .where(Alert.organization_id == org_id)
            .order_by(Alert.flagged_at.desc(), Alert.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars()
        items = [AlertSnapshot.model_validate(a).model_dump(mode="json") for a in alerts]
    return {
        "success": True,
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }
