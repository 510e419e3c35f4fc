"""
Heatmap API Routes.

Without a `path`, lists the pages that have heatmap data in the range;
with one, returns the merged click or scroll density for that page.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import date
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query

from src.adapters.clock import SystemClock
from src.adapters.site_directory import KVSiteDirectory
from src.api.deps import (
    get_clock,
    get_current_user_id,
    get_heatmap_config,
    get_site_directory,
    get_stats_config,
    get_store,
    require_site_owner,
    resolve_date_range,
)
from src.api.errors import raise_for_errors
from src.components.heatmaps import (
    HeatmapConfig,
    HeatmapPagesInput,
    HeatmapQueryInput,
    run_list_pages,
    run_query_clicks,
    run_query_scroll,
)
from src.components.stats import StatsConfig
from src.core.ports.kv import KeyValueStorePort

router = APIRouter()


@router.get("")
def get_heatmap(
    site_id: str = Query(..., alias="siteId"),
    path: str | None = Query(None),
    type: Literal["clicks", "scroll"] = Query("clicks"),
    period: str | None = Query(None),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    stats_config: StatsConfig = Depends(get_stats_config),
    config: HeatmapConfig = Depends(get_heatmap_config),
) -> dict[str, Any]:
    require_site_owner(site_id, user_id, sites)
    start, end = resolve_date_range(period, start_date, end_date, clock.today_utc(), stats_config)
    date_range = {"startDate": start.isoformat(), "endDate": end.isoformat()}

    if not path:
        pages = run_list_pages(HeatmapPagesInput(site_id=site_id, start=start, end=end), store=store)
        raise_for_errors(pages.errors)
        return {"pages": [asdict(p) for p in pages.pages], "dateRange": date_range}

    query = HeatmapQueryInput(site_id=site_id, path=path, start=start, end=end)
    if type == "scroll":
        scroll = run_query_scroll(query, store=store, config=config)
        raise_for_errors(scroll.errors)
        return {
            "type": "scroll",
            "path": path,
            "totalSessions": scroll.total_sessions,
            "bands": scroll.bands,
            "reach": scroll.reach,
            "maxDepths": list(scroll.max_depths),
            "avgMaxDepth": scroll.avg_max_depth,
            "avgFold": scroll.avg_fold,
            "dateRange": date_range,
        }

    clicks = run_query_clicks(query, store=store, config=config)
    raise_for_errors(clicks.errors)
    return {
        "type": "clicks",
        "path": path,
        "totalClicks": clicks.total_clicks,
        "points": [asdict(p) for p in clicks.points],
        "viewports": clicks.viewports,
        "elements": clicks.elements,
        "density": [asdict(c) for c in clicks.cells],
        "dateRange": date_range,
    }
