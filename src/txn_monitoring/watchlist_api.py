"""Watchlist API router: /watchlist entries for the caller's organization."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from txn_monitoring.auth import Principal, require_api_key, require_api_key_write
from txn_monitoring.db import session_scope
from txn_monitoring.schemas import WatchlistCreate, WatchlistEntryResponse
from txn_monitoring.watchlist import add_entry, delete_entry, list_entries

watchlist_router = APIRouter(tags=["watchlist"])


@watchlist_router.get("/watchlist")
def get_watchlist(principal: Principal = Depends(require_api_key)) -> dict[str, Any]:
    with session_scope() as session:
        entries = list_entries(session, principal.organization_id)
        return {
            "success": True,
            "data": [WatchlistEntryResponse.model_validate(e).model_dump(mode="json") for e in entries],
        }


@watchlist_router.post("/watchlist", status_code=201)
def post_watchlist(
    body: WatchlistCreate, principal: Principal = Depends(require_api_key_write)
) -> dict[str, Any]:
    with session_scope() as session:
        entry = add_entry(session, principal.organization_id, body)
        return {
            "success": True,
            "data": WatchlistEntryResponse.model_validate(entry).model_dump(mode="json"),
        }


@watchlist_router.delete("/watchlist/{entry_id}")
def remove_watchlist(
    entry_id: int, principal: Principal = Depends(require_api_key_write)
) -> dict[str, Any]:
    with session_scope() as session:
        delete_entry(session, principal.organization_id, entry_id)
    return {"success": True, "message": "Watchlist entry deleted"}
