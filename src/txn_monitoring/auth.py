"""API key authentication bound to an organization. Optional scopes: read_only vs read_write."""

from __future__ import annotations

import hmac
import os
from contextvars import ContextVar
from dataclasses import dataclass

from fastapi import HTTPException
from starlette.requests import Request

from txn_monitoring.audit_context import set_actor

# When TXN_API_KEYS is empty or unset, we default to a single dev key for organization 1 (dev-only).
_DEFAULT_DEV_KEYS = "dev:dev_key:1"
_DEFAULT_SCOPE = "read_write"
_SCOPES = ("read_only", "read_write")

_current_scope: ContextVar[str] = ContextVar("api_key_scope", default=_DEFAULT_SCOPE)


@dataclass(frozen=True)
class Principal:
    """Authenticated caller: key name, the organization it acts for, and its scope."""

    name: str
    organization_id: int
    scope: str = _DEFAULT_SCOPE


def _parse(raw: str) -> dict[str, Principal]:
    key_to_principal: dict[str, Principal] = {}
    for part in raw.split(","):
        parts = [p.strip() for p in part.strip().split(":")]
        if len(parts) < 3:
            continue
        name, key, org = parts[0], parts[1], parts[2]
        scope = parts[3] if len(parts) > 3 and parts[3] in _SCOPES else _DEFAULT_SCOPE
        if not name or not key:
            continue
        try:
            organization_id = int(org)
        except ValueError:
            continue
        key_to_principal[key] = Principal(name=name, organization_id=organization_id, scope=scope)
    return key_to_principal


def parse_api_keys_env() -> dict[str, Principal]:
    """Parse TXN_API_KEYS into key -> Principal.
    Format: 'name1:key1:org1,name2:key2:org2:read_only' (optional :scope, default read_write)."""
    raw = os.environ.get("TXN_API_KEYS", "").strip()
    keys = _parse(raw) if raw else {}
    return keys or _parse(_DEFAULT_DEV_KEYS)


def _lookup(api_key: str) -> Principal | None:
    for key, principal in parse_api_keys_env().items():
        if hmac.compare_digest(key.encode(), api_key.encode()):
            return principal
    return None


async def require_api_key(request: Request) -> Principal:
    """Validate X-API-Key header; set audit actor, organization and scope.
    Raises 401 if header missing or key invalid."""
    api_key = request.headers.get("X-API-Key")
    if not api_key:
        raise HTTPException(status_code=401, detail="Missing X-API-Key")
    principal = _lookup(api_key)
    if principal is None:
        raise HTTPException(status_code=401, detail="Invalid API key")
    _current_scope.set(principal.scope)
    set_actor(principal.name, principal.organization_id)
    return principal


def require_write_scope() -> None:
    """Raise 403 if current key scope is read_only. Call after require_api_key."""
    if _current_scope.get() == "read_only":
        raise HTTPException(status_code=403, detail="Insufficient scope: write required")


async def require_api_key_write(request: Request) -> Principal:
    """Require valid API key and write scope; return the principal."""
    principal = await require_api_key(request)
    require_write_scope()
    return principal
