"""Pydantic v2 schemas for API input, crawler envelopes and post-commit snapshots."""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from txn_monitoring.rules.base import Operator, RuleField, RuleStatus
from txn_monitoring.rules.operators import OperatorError, to_decimal


# --- Ingest / API input ---
class TransactionCreate(BaseModel):
    """Single transaction submitted for monitoring."""

    model_config = ConfigDict(str_strip_whitespace=True)

    transaction_id: str = Field(..., min_length=1, max_length=128)
    user_id: str = Field(..., min_length=1, max_length=128)
    amount: Decimal = Field(..., gt=0)
    currency: str = Field(..., pattern=r"^[A-Za-z]{3}$")
    country: str = Field(..., min_length=1, max_length=64)
    timestamp: datetime

    @field_validator("currency")
    @classmethod
    def currency_upper(cls, v: str) -> str:
        return v.upper()

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        # stored naive; an offset is folded into UTC wall time
        if v.tzinfo is not None:
            return v.astimezone(UTC).replace(tzinfo=None)
        return v


def check_rule_value(field: RuleField, operator: Operator, value: str) -> None:
    """Amount rules need numeric values (every item for IN)."""
    if field is not RuleField.AMOUNT:
        return
    items = value.split(",") if operator is Operator.IN else [value]
    for item in items:
        try:
            to_decimal(item)
        except OperatorError as err:
            raise ValueError(f"value must be numeric for field 'amount': {item.strip()!r}") from err


class RuleCreate(BaseModel):
    """Body for POST /rules (manual rules)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    rule_name: str = Field(..., min_length=1, max_length=255)
    field: RuleField
    operator: Operator
    value: str = Field(..., min_length=1)
    status: RuleStatus = RuleStatus.ACTIVE
    jurisdiction: str | None = None

    @model_validator(mode="after")
    def check_value(self) -> RuleCreate:
        check_rule_value(self.field, self.operator, self.value)
        if self.status is RuleStatus.ARCHIVED:
            raise ValueError("a rule cannot be created ARCHIVED")
        return self


class RuleUpdate(BaseModel):
    """Body for PATCH /rules/{id}. Only provided fields are updated."""

    model_config = ConfigDict(str_strip_whitespace=True)

    rule_name: str | None = Field(None, min_length=1, max_length=255)
    field: RuleField | None = None
    operator: Operator | None = None
    value: str | None = Field(None, min_length=1)
    status: RuleStatus | None = None


class CandidateRule(BaseModel):
    """One rule proposed by a crawler batch."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    rule_name: str = Field(..., min_length=1, max_length=255)
    field: RuleField
    operator: Operator
    value: str = Field(..., min_length=1)
    source_url: str | None = Field(None, alias="sourceUrl")
    jurisdiction: str | None = None

    @field_validator("value", mode="before")
    @classmethod
    def value_to_str(cls, v: Any) -> Any:
        if isinstance(v, int | float | Decimal) and not isinstance(v, bool):
            return str(v)
        return v

    @model_validator(mode="after")
    def check_value(self) -> CandidateRule:
        check_rule_value(self.field, self.operator, self.value)
        return self


class CrawlEnvelope(BaseModel):
    """Crawler batch; rules stay raw so one bad candidate does not reject the batch."""

    model_config = ConfigDict(populate_by_name=True)

    jurisdiction: str | None = None
    rules: list[dict[str, Any]] = Field(default_factory=list)
    plugin_version: str | None = Field(None, alias="pluginVersion")
    crawl_id: str | None = Field(None, alias="crawlId")
    crawl_started_at: datetime | None = Field(None, alias="crawlStartedAt")


class WatchlistCreate(BaseModel):
    """Body for POST /watchlist."""

    model_config = ConfigDict(str_strip_whitespace=True)

    type: str = Field(..., min_length=1, max_length=32)
    value: str = Field(..., min_length=1, max_length=255)
    name: str | None = None
    risk_level: str = "HIGH"
    description: str | None = None

    @field_validator("type", "risk_level")
    @classmethod
    def upper(cls, v: str) -> str:
        return v.upper()


class ChannelUpsert(BaseModel):
    """Body for PUT /channels/{channel_type}."""

    name: str = Field(..., min_length=1, max_length=255)
    config: dict[str, Any] = Field(default_factory=dict)
    status: str = Field("active", pattern="^(active|inactive)$")


class SubscriptionsReplace(BaseModel):
    """Body for PUT /channels/{channel_type}/subscriptions."""

    rule_ids: list[int] = Field(default_factory=list)
    enabled: bool = True


# --- Snapshots (detached copies safe to use after the session closes) ---
class TransactionSnapshot(BaseModel):
    id: int
    organization_id: int
    transaction_id: str
    user_id: str
    amount: Decimal
    currency: str
    country: str
    timestamp: datetime
    flagged: bool
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class RuleSnapshot(BaseModel):
    id: int
    organization_id: int
    rule_name: str
    field: str
    operator: str
    value: str
    status: str
    source: str
    source_url: str | None = None
    jurisdiction: str | None = None
    crawled_at: datetime | None = None
    rule_hash: str
    metadata_json: dict[str, Any] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class AlertSnapshot(BaseModel):
    id: int
    organization_id: int
    transaction_id: int
    rule_id: int | None
    source: str
    reason: str
    correlation_id: str | None = None
    flagged_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WatchlistEntryResponse(BaseModel):
    id: int
    organization_id: int
    name: str | None
    type: str
    value: str
    risk_level: str
    description: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChannelResponse(BaseModel):
    """Channel without its config (tokens and URLs stay server-side)."""

    id: int
    organization_id: int
    channel_type: str
    name: str
    status: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AlertNotification(BaseModel):
    """One rule-caused alert to hand to the dispatcher after commit."""

    alert: AlertSnapshot
    transaction: TransactionSnapshot
    rule: RuleSnapshot


# --- Results ---
class IngestResult(BaseModel):
    flagged: bool
    message: str
    transaction_id: str
    alerts: list[AlertSnapshot] = Field(default_factory=list)
    notifications: list[AlertNotification] = Field(default_factory=list)


class ImportResult(BaseModel):
    imported: int = 0
    skipped: int = 0
    archived: int = 0
    already_processed: bool = False
    details: dict[str, list[dict[str, Any]]] = Field(
        default_factory=lambda: {"imported": [], "skipped": [], "archived": [], "failed": []}
    )
