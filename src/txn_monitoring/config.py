"""Configuration loading from YAML + environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_yaml(path: str | Path) -> dict[str, Any]:
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    out = dict(base)
    for k, v in override.items():
        if k in out and isinstance(out[k], dict) and isinstance(v, dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


class AppSettings(BaseSettings):
    """App-level settings with env override. Secrets only ever come from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="TXN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    config_path: str = Field(default="config/default.yaml", alias="TXN_CONFIG_PATH")
    log_level: str | None = Field(default=None, alias="TXN_LOG_LEVEL")
    database_url: str | None = Field(default=None, alias="TXN_DATABASE_URL")
    crawler_webhook_secret: str | None = Field(default=None, alias="TXN_CRAWLER_WEBHOOK_SECRET")
    billing_webhook_secret: str | None = Field(default=None, alias="TXN_BILLING_WEBHOOK_SECRET")
    outbound_webhook_secret: str | None = Field(default=None, alias="TXN_OUTBOUND_WEBHOOK_SECRET")


def validate_notifications(config: dict[str, Any]) -> None:
    """Raise ValueError if the channel delivery timeout is missing or not positive."""
    notifications = config.get("notifications") or {}
    timeout = notifications.get("timeout_seconds", 10)
    try:
        value = float(timeout)
    except (TypeError, ValueError) as err:
        raise ValueError(f"notifications.timeout_seconds must be a number, got {timeout!r}") from err
    if value <= 0:
        raise ValueError(
            "notifications.timeout_seconds must be > 0; deliveries to external channels "
            "must never block indefinitely."
        )


def get_config(config_path: str | None = None) -> dict[str, Any]:
    """Load merged config from YAML and apply env overrides via AppSettings."""
    settings = AppSettings()
    path = config_path or settings.config_path
    if Path(path).exists():
        base = _deep_merge(_default_config(), _load_yaml(path))
        local_path = Path(path).parent / "local.yaml"
        if local_path.exists() and os.environ.get("TXN_ENV") == "dev":
            base = _deep_merge(base, _load_yaml(local_path))
    else:
        base = _default_config()
    # DATABASE_URL is the Docker/Postgres convention; TXN_DATABASE_URL wins for the app.
    db_url = settings.database_url or os.environ.get("DATABASE_URL")
    if db_url:
        base.setdefault("database", {})["url"] = db_url
    if settings.log_level:
        base.setdefault("app", {})["log_level"] = settings.log_level
    webhooks = base.setdefault("webhooks", {})
    if settings.crawler_webhook_secret:
        webhooks["crawler_secret"] = settings.crawler_webhook_secret
    if settings.billing_webhook_secret:
        webhooks["billing_secret"] = settings.billing_webhook_secret
    if settings.outbound_webhook_secret:
        base.setdefault("notifications", {})["webhook_signing_secret"] = (
            settings.outbound_webhook_secret
        )
    validate_notifications(base)
    return base


def _default_config() -> dict[str, Any]:
    return {
        "app": {"name": "txn-monitoring", "env": "default", "log_level": "INFO"},
        "database": {"url": "sqlite:///./data/txn_monitoring.db", "echo": False},
        "notifications": {
            "timeout_seconds": 10,
            "slack_api_url": "https://slack.com/api",
            "webhook_signing_secret": None,
        },
        "webhooks": {
            "crawler_secret": None,
            "crawler_allow_unsigned": False,
            "billing_secret": None,
            "billing_tolerance_seconds": 300,
        },
        "api": {"host": "0.0.0.0", "port": 8000},
    }
