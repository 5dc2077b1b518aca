"""Typer CLI: init-db, create-org, ingest, import-rules, activate-rule, add-watchlist, test-channel, serve-api."""

from __future__ import annotations

import asyncio
import json
import os
import uuid
from pathlib import Path

import typer

from txn_monitoring.audit_context import set_audit_context
from txn_monitoring.config import get_config
from txn_monitoring.db import init_db, session_scope
from txn_monitoring.errors import DuplicateError, MonitoringError, ValidationError
from txn_monitoring.ingest import ingest_transaction
from txn_monitoring.logging_config import setup_logging
from txn_monitoring.notifications import NotificationDispatcher
from txn_monitoring.organizations import create_organization
from txn_monitoring.rules.base import RuleStatus
from txn_monitoring.rules.importer import import_rules
from txn_monitoring.rules.store import update_rule
from txn_monitoring.schemas import RuleUpdate, WatchlistCreate
from txn_monitoring.watchlist import add_entry

app = typer.Typer(help="Transaction Monitoring CLI")


def _ensure_db(config_path: str | None = None) -> dict:
    config = get_config(config_path)
    db_url = config.get("database", {}).get("url", "sqlite:///./data/txn_monitoring.db")
    if db_url.startswith("sqlite:///"):
        Path(db_url.replace("sqlite:///", "")).parent.mkdir(parents=True, exist_ok=True)
    echo = config.get("database", {}).get("echo", False)
    setup_logging(config.get("app", {}).get("log_level", "INFO"))
    init_db(db_url, echo=echo)
    return config


def _set_context(organization_id: int | None = None) -> None:
    set_audit_context(str(uuid.uuid4()), os.environ.get("TXN_ACTOR", "cli"), organization_id)


@app.command("init-db")
def init_db_cmd(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Create tables (SQLite) or connect to an Alembic-managed database."""
    cfg = _ensure_db(config)
    typer.echo(f"Database ready: {cfg['database']['url'].split('@')[-1]}")


@app.command("create-org")
def create_org(
    name: str = typer.Argument(..., help="Organization name"),
    no_defaults: bool = typer.Option(False, "--no-defaults", help="Do not seed the default rules"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Create an organization (seeded with the default rules). Audited."""
    _ensure_db(config)
    _set_context()
    with session_scope() as session:
        org = create_organization(session, name, seed_defaults=not no_defaults)
        org_id = org.id
    typer.echo(f"Created organization {org_id}: {name}")


@app.command()
def ingest(
    path: str = typer.Argument(..., help="Path to a JSONL file, one transaction per line"),
    org: int = typer.Option(..., "--org", help="Organization ID"),
    notify: bool = typer.Option(
        False, "--notify", help="Deliver rule alerts to subscribed channels"
    ),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Ingest transactions from JSONL; duplicates and invalid lines are reported and skipped."""
    cfg = _ensure_db(config)
    _set_context(org)
    p = Path(path)
    if not p.exists():
        typer.echo(f"File not found: {path}", err=True)
        raise typer.Exit(1)
    dispatch = None
    if notify:
        dispatcher = NotificationDispatcher.from_config(cfg)

        def dispatch(notifications):
            asyncio.run(dispatcher.notify_all(notifications))

    created = flagged = duplicates = invalid = 0
    with open(p, encoding="utf-8") as f:
        for lineno, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                result = ingest_transaction(json.loads(line), org, dispatch=dispatch)
            except json.JSONDecodeError:
                typer.echo(f"Line {lineno}: not valid JSON", err=True)
                invalid += 1
                continue
            except DuplicateError as e:
                typer.echo(f"Line {lineno}: {e.message}", err=True)
                duplicates += 1
                continue
            except ValidationError as e:
                typer.echo(f"Line {lineno}: {e.message} {e.details.get('fields', '')}", err=True)
                invalid += 1
                continue
            created += 1
            flagged += int(result.flagged)
    typer.echo(
        f"Created {created} transactions ({flagged} flagged), "
        f"{duplicates} duplicates, {invalid} invalid."
    )


@app.command("import-rules")
def import_rules_cmd(
    path: str = typer.Argument(..., help="Path to a crawler envelope JSON file"),
    org: int = typer.Option(..., "--org", help="Organization ID"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Import candidate rules as DRAFT (idempotent by content hash)."""
    _ensure_db(config)
    _set_context(org)
    try:
        envelope = json.loads(Path(path).read_text(encoding="utf-8"))
        result = import_rules(org, envelope)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        typer.echo(f"Cannot import {path}: {e}", err=True)
        raise typer.Exit(1) from e
    typer.echo(
        f"Imported {result.imported}, skipped {result.skipped}, archived {result.archived}, "
        f"failed {len(result.details['failed'])}."
    )


@app.command("activate-rule")
def activate_rule(
    rule_id: int = typer.Argument(..., help="Rule ID"),
    org: int = typer.Option(..., "--org", help="Organization ID"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Move a DRAFT rule to ACTIVE. Audited."""
    _ensure_db(config)
    _set_context(org)
    try:
        with session_scope() as session:
            update_rule(session, org, rule_id, RuleUpdate(status=RuleStatus.ACTIVE))
    except MonitoringError as e:
        typer.echo(e.message, err=True)
        raise typer.Exit(1) from e
    typer.echo(f"Rule {rule_id} is ACTIVE")


@app.command("add-watchlist")
def add_watchlist(
    entry_type: str = typer.Argument(..., help="USER or COUNTRY"),
    value: str = typer.Argument(..., help="User ID or country to watch"),
    org: int = typer.Option(..., "--org", help="Organization ID"),
    risk_level: str = typer.Option("HIGH", "--risk-level", help="Risk level label"),
    description: str | None = typer.Option(None, "--description"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Add a watchlist entry. Audited."""
    _ensure_db(config)
    _set_context(org)
    data = WatchlistCreate(
        type=entry_type, value=value, risk_level=risk_level, description=description
    )
    with session_scope() as session:
        entry_id = add_entry(session, org, data).id
    typer.echo(f"Added watchlist entry {entry_id}")


@app.command("test-channel")
def test_channel(
    channel_id: int = typer.Argument(..., help="Channel ID"),
    org: int = typer.Option(..., "--org", help="Organization ID"),
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
) -> None:
    """Send a sample alert to one channel."""
    cfg = _ensure_db(config)
    _set_context(org)
    dispatcher = NotificationDispatcher.from_config(cfg)
    try:
        result = asyncio.run(dispatcher.send_test_notification(channel_id, org))
    except MonitoringError as e:
        typer.echo(f"{e.message} {e.details}", err=True)
        raise typer.Exit(1) from e
    typer.echo(result["message"])


@app.command("serve-api")
def serve_api(
    config: str | None = typer.Option(None, "--config", "-c", help="Config YAML path"),
    host: str | None = typer.Option(None, "--host", "-h", help="Bind host"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
) -> None:
    """Start the FastAPI server."""
    cfg = get_config(config)
    h = host or os.environ.get("TXN_API_HOST") or cfg.get("api", {}).get("host", "0.0.0.0")
    _pe = os.environ.get("TXN_API_PORT", "")
    p = (
        port
        if port is not None
        else (int(_pe) if _pe and _pe.isdigit() else None) or cfg.get("api", {}).get("port", 8000)
    )
    _ensure_db(config)
    if config:
        # the app's lifespan reloads config from the environment
        os.environ["TXN_CONFIG_PATH"] = config
    import uvicorn

    uvicorn.run(
        "txn_monitoring.api:app",
        host=h,
        port=p,
        reload=False,
    )


if __name__ == "__main__":
    app()
