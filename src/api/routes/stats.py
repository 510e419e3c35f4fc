"""
Stats API Routes.

Dashboard summary and the range query API. Both verify the caller owns
the site before reading any aggregate.
"""

from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Depends, Query

from src.adapters.clock import SystemClock
from src.adapters.site_directory import KVSiteDirectory
from src.api.deps import (
    get_clock,
    get_current_user_id,
    get_site_directory,
    get_stats_config,
    get_store,
    require_site_owner,
    resolve_date_range,
)
from src.api.errors import raise_for_errors
from src.components.stats import (
    StatsConfig,
    StatsQueryInput,
    StatsSummaryInput,
    parse_filters,
    run_query,
    run_summary,
)
from src.core.errors import ValidationError
from src.core.ports.kv import KeyValueStorePort

router = APIRouter()


@router.get("")
def get_stats(
    site_id: str = Query(..., alias="siteId"),
    period: str | None = Query(None),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    config: StatsConfig = Depends(get_stats_config),
) -> dict[str, Any]:
    """Dashboard summary for a site over a period (default 7d)."""
    require_site_owner(site_id, user_id, sites)
    start, end = resolve_date_range(period, start_date, end_date, clock.today_utc(), config)

    out = run_summary(StatsSummaryInput(site_id=site_id, start=start, end=end), store=store, config=config)
    raise_for_errors(out.errors)
    return {
        **out.summary,
        "dateRange": {"startDate": start.isoformat(), "endDate": end.isoformat()},
    }


@router.get("/query")
def query_stats(
    site_id: str = Query(..., alias="siteId"),
    period: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    metrics: str | None = Query(None),
    property: str | None = Query(None),
    filters: str | None = Query(None),
    user_id: str = Depends(get_current_user_id),
    sites: KVSiteDirectory = Depends(get_site_directory),
    store: KeyValueStorePort = Depends(get_store),
    clock: SystemClock = Depends(get_clock),
    config: StatsConfig = Depends(get_stats_config),
) -> dict[str, Any]:
    """
    Range query: `{results: [...], totals: {...}, query: {...}}`.

    `metrics` is comma separated; `filters` is `page==/blog/*;country==US`.
    """
    require_site_owner(site_id, user_id, sites)
    start, end = resolve_date_range(period, date_from, date_to, clock.today_utc(), config)

    try:
        parsed_filters = parse_filters(filters)
    except ValueError as e:
        raise ValidationError(str(e), code="invalid_filter", field_name="filters") from e

    requested = tuple(m.strip() for m in (metrics or "").split(",") if m.strip())
    out = run_query(
        StatsQueryInput(
            site_id=site_id,
            start=start,
            end=end,
            metrics=requested,
            breakdown=property or None,
            filters=parsed_filters,
        ),
        store=store,
        config=config,
    )
    raise_for_errors(out.errors)
    return {
        "results": out.results,
        "totals": out.totals,
        "query": {**out.query, "period": period or ("custom" if date_from else "7d")},
    }
