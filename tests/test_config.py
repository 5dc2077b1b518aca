"""Tests for config loading and environment overrides."""

from __future__ import annotations

from pathlib import Path

import pytest

from txn_monitoring.config import _deep_merge, _default_config, get_config


def test_default_config() -> None:
    cfg = _default_config()
    assert cfg["app"]["log_level"] == "INFO"
    assert cfg["notifications"]["timeout_seconds"] == 10
    assert cfg["webhooks"]["billing_tolerance_seconds"] == 300


def test_deep_merge() -> None:
    base = {"a": 1, "b": {"x": 1, "y": 2}}
    out = _deep_merge(base, {"b": {"y": 3}, "c": 4})
    assert out == {"a": 1, "b": {"x": 1, "y": 3}, "c": 4}
    assert base["b"]["y"] == 2


def test_get_config_with_file(config_path: str) -> None:
    cfg = get_config(config_path)
    assert cfg["database"]["url"].endswith("txn.db")
    assert cfg["notifications"]["timeout_seconds"] == 2
    # defaults fill sections the file leaves out
    assert cfg["notifications"]["slack_api_url"] == "https://slack.com/api"


def test_missing_file_uses_defaults(tmp_path: Path) -> None:
    cfg = get_config(str(tmp_path / "nope.yaml"))
    assert cfg["database"]["url"] == "sqlite:///./data/txn_monitoring.db"


def test_env_overrides(config_path: str, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://docker/db")
    assert get_config(config_path)["database"]["url"] == "postgresql://docker/db"
    monkeypatch.setenv("TXN_DATABASE_URL", "sqlite:///override.db")
    monkeypatch.setenv("TXN_LOG_LEVEL", "DEBUG")
    monkeypatch.setenv("TXN_CRAWLER_WEBHOOK_SECRET", "crawl-secret")
    monkeypatch.setenv("TXN_BILLING_WEBHOOK_SECRET", "bill-secret")
    cfg = get_config(config_path)
    assert cfg["database"]["url"] == "sqlite:///override.db"
    assert cfg["app"]["log_level"] == "DEBUG"
    assert cfg["webhooks"]["crawler_secret"] == "crawl-secret"
    assert cfg["webhooks"]["billing_secret"] == "bill-secret"


def test_local_yaml_only_in_dev(config_path: str, monkeypatch: pytest.MonkeyPatch) -> None:
    (Path(config_path).parent / "local.yaml").write_text("app:\n  log_level: WARNING\n")
    assert get_config(config_path)["app"]["log_level"] == "INFO"
    monkeypatch.setenv("TXN_ENV", "dev")
    assert get_config(config_path)["app"]["log_level"] == "WARNING"


def test_config_rejects_non_positive_timeout(tmp_path: Path) -> None:
    path = tmp_path / "bad.yaml"
    path.write_text("notifications:\n  timeout_seconds: 0\n")
    with pytest.raises(ValueError, match="timeout_seconds"):
        get_config(str(path))
