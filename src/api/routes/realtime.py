"""
Realtime API Routes.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from src.adapters.clock import SystemClock
from src.adapters.site_directory import KVSiteDirectory
from src.api.deps import (
    get_clock,
    get_current_user_id,
    get_rules,
    get_site_directory,
    get_store,
    require_site_owner,
)
from src.components.realtime import ActiveVisitorsInput, run_active_visitors
from src.core.ports.kv import KeyValueStorePort
from src.rules.models import Rules

router = APIRouter()


@router.get("")
def get_realtime(
    site_id: str = Query(..., alias="siteId"),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    rules: Rules = Depends(get_rules),
) -> dict[str, Any]:
    """Sessions active within the realtime TTL."""
    require_site_owner(site_id, user_id, sites)
    out = run_active_visitors(
        ActiveVisitorsInput(site_id=site_id),
        store=store,
        time_port=clock,
        ttl_seconds=rules.realtime.ttl_seconds,
    )
    return {
        "count": out.count,
        "sessions": [
            {"path": s.path, "lastSeen": s.last_seen.isoformat(), "secondsAgo": s.seconds_ago}
            for s in out.sessions
        ],
        "pages": out.pages,
    }
