"""
Heatmaps component - Click and scroll density aggregation.

Accumulates per (site, page, day) click and scroll buckets and merges
them over a date range for rendering.

Invariants:
- Density is derivable from stored buckets alone, never from raw events
- Click points are a capped sorted multiset; the density grid and
  viewport counters keep counting past the cap
- Scroll depth bands are fixed width (default 10%); 100% lands in the top band
- Bucket merges are associative and commutative
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any

from src.core.keys import decode_path, heatmap_key, heatmap_prefix
from src.core.services.analytics_classify import Event, EventKind
from src.core.services.analytics_identity import Identity
from src.rules.models import HeatmapRules

from .models import (
    ClickDensityOutput,
    ClickPoint,
    DensityCell,
    HeatmapPage,
    HeatmapPagesInput,
    HeatmapPagesOutput,
    HeatmapQueryInput,
    HeatmapValidationError,
    RecordClickInput,
    RecordOutput,
    RecordScrollInput,
    ScrollDensityOutput,
)
from .ports import KeyValueStorePort

logger = logging.getLogger(__name__)

CLICKS = "clicks"
SCROLL = "scroll"


# --- Configuration ---


@dataclass(frozen=True)
class HeatmapConfig:
    """Heatmap bucket configuration."""

    click_point_cap: int = 1000
    scroll_sample_cap: int = 1000
    band_width_percent: int = 10
    grid_cell_percent: int = 5

    @classmethod
    def from_rules(cls, rules: HeatmapRules) -> HeatmapConfig:
        return cls(
            click_point_cap=rules.click_point_cap,
            scroll_sample_cap=rules.scroll_sample_cap,
            band_width_percent=rules.band_width_percent,
            grid_cell_percent=rules.grid_cell_percent,
        )


DEFAULT_CONFIG = HeatmapConfig()


# --- Bucket Helpers ---


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def band_for(depth: float, width: int = 10) -> str:
    """Band label for a depth, e.g. 85 -> "80-90", 100 -> "90-100"."""
    depth = clamp_percent(depth)
    lo = int(depth // width) * width
    if lo >= 100:
        lo = ((100 - 1) // width) * width
    return f"{lo}-{min(lo + width, 100)}"


def all_bands(width: int = 10) -> list[str]:
    return [f"{lo}-{min(lo + width, 100)}" for lo in range(0, 100, width)]


def grid_cell(x: float, y: float, cell: int = 5) -> str:
    cells = (100 + cell - 1) // cell
    cx = min(int(clamp_percent(x) // cell), cells - 1)
    cy = min(int(clamp_percent(y) // cell), cells - 1)
    return f"{cx}:{cy}"


def _add_counts(a: dict[str, int], b: dict[str, int]) -> dict[str, int]:
    out = dict(a)
    for key, value in b.items():
        out[key] = out.get(key, 0) + int(value)
    return out


def _capped_union(a: list[Any], b: list[Any], cap: int) -> list[Any]:
    # Smallest `cap` items of the multiset union; order-independent
    return sorted(list(a) + list(b))[:cap]


def empty_click_bucket() -> dict[str, Any]:
    return {"points": [], "total_clicks": 0, "viewports": {}, "elements": {}, "grid": {}}


def empty_scroll_bucket() -> dict[str, Any]:
    return {"bands": {}, "max_depths": [], "total_sessions": 0, "fold": [0.0, 0]}


def merge_click_buckets(
    a: dict[str, Any] | None, b: dict[str, Any] | None, cap: int
) -> dict[str, Any]:
    a = a or empty_click_bucket()
    b = b or empty_click_bucket()
    return {
        "points": _capped_union(a.get("points", []), b.get("points", []), cap),
        "total_clicks": int(a.get("total_clicks", 0)) + int(b.get("total_clicks", 0)),
        "viewports": _add_counts(a.get("viewports", {}), b.get("viewports", {})),
        "elements": _add_counts(a.get("elements", {}), b.get("elements", {})),
        "grid": _add_counts(a.get("grid", {}), b.get("grid", {})),
    }


def merge_scroll_buckets(
    a: dict[str, Any] | None, b: dict[str, Any] | None, cap: int
) -> dict[str, Any]:
    a = a or empty_scroll_bucket()
    b = b or empty_scroll_bucket()
    fold_a = a.get("fold", [0.0, 0])
    fold_b = b.get("fold", [0.0, 0])
    return {
        "bands": _add_counts(a.get("bands", {}), b.get("bands", {})),
        "max_depths": _capped_union(a.get("max_depths", []), b.get("max_depths", []), cap),
        "total_sessions": int(a.get("total_sessions", 0)) + int(b.get("total_sessions", 0)),
        "fold": [float(fold_a[0]) + float(fold_b[0]), int(fold_a[1]) + int(fold_b[1])],
    }


def click_contribution(inp: RecordClickInput, config: HeatmapConfig) -> dict[str, Any]:
    x = round(clamp_percent(inp.x), 2)
    y = round(clamp_percent(inp.y), 2)
    bucket = empty_click_bucket()
    bucket["points"] = [[x, y, inp.element or "", inp.viewport]]
    bucket["total_clicks"] = 1
    bucket["viewports"] = {inp.viewport: 1}
    bucket["grid"] = {grid_cell(x, y, config.grid_cell_percent): 1}
    if inp.element:
        bucket["elements"] = {inp.element: 1}
    return bucket


def scroll_contribution(inp: RecordScrollInput, config: HeatmapConfig) -> dict[str, Any]:
    depth = round(clamp_percent(inp.max_depth), 2)
    bucket = empty_scroll_bucket()
    bucket["bands"] = {band_for(depth, config.band_width_percent): 1}
    bucket["max_depths"] = [depth]
    bucket["total_sessions"] = 1
    if inp.fold is not None:
        bucket["fold"] = [clamp_percent(inp.fold), 1]
    return bucket


def scroll_reach(bands: dict[str, int], total: int, width: int = 10) -> dict[str, float]:
    """Percent of sessions that scrolled at least into each band."""
    reach: dict[str, float] = {}
    remaining = total
    for label in all_bands(width):
        reach[label] = round(remaining / total * 100, 1) if total > 0 else 0.0
        remaining -= bands.get(label, 0)
    return reach


def density_cells(grid: dict[str, int], cell: int = 5) -> tuple[DensityCell, ...]:
    """Grid counts as cell centres with intensity relative to the hottest cell."""
    if not grid:
        return ()
    hottest = max(grid.values())
    cells = []
    for key, count in grid.items():
        cx, cy = (int(part) for part in key.split(":"))
        cells.append(
            DensityCell(
                x=min(100.0, (cx + 0.5) * cell),
                y=min(100.0, (cy + 0.5) * cell),
                count=count,
                intensity=round(count / hottest, 4) if hottest else 0.0,
            )
        )
    return tuple(sorted(cells, key=lambda c: (-c.count, c.y, c.x)))


def days_between(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def _range_error(start: date, end: date) -> HeatmapValidationError | None:
    if start > end:
        return HeatmapValidationError("invalid_range", "Start date must be before end date", "start")
    return None


# --- Component Entry Points ---


def run_record_click(
    inp: RecordClickInput,
    *,
    store: KeyValueStorePort,
    config: HeatmapConfig = DEFAULT_CONFIG,
) -> RecordOutput:
    """Add one click to the page's bucket for the day."""
    if not inp.viewport:
        return RecordOutput(
            errors=[HeatmapValidationError("missing_field", "viewport is required", "viewport")],
            success=False,
        )
    key = heatmap_key(inp.site_id, CLICKS, inp.day, inp.path)
    current = store.get(key, as_json=True)
    store.set_json(
        key, merge_click_buckets(current, click_contribution(inp, config), config.click_point_cap)
    )
    return RecordOutput()


def run_record_scroll(
    inp: RecordScrollInput,
    *,
    store: KeyValueStorePort,
    config: HeatmapConfig = DEFAULT_CONFIG,
) -> RecordOutput:
    """Add one session's max depth to the page's bucket for the day."""
    key = heatmap_key(inp.site_id, SCROLL, inp.day, inp.path)
    current = store.get(key, as_json=True)
    store.set_json(
        key,
        merge_scroll_buckets(current, scroll_contribution(inp, config), config.scroll_sample_cap),
    )
    return RecordOutput()


def run_query_clicks(
    inp: HeatmapQueryInput,
    *,
    store: KeyValueStorePort,
    config: HeatmapConfig = DEFAULT_CONFIG,
) -> ClickDensityOutput:
    """Merge click buckets for a page across the range."""
    error = _range_error(inp.start, inp.end)
    if error:
        return ClickDensityOutput(total_clicks=0, errors=[error], success=False)

    merged = empty_click_bucket()
    for day in days_between(inp.start, inp.end):
        bucket = store.get(heatmap_key(inp.site_id, CLICKS, day, inp.path), as_json=True)
        if bucket:
            merged = merge_click_buckets(merged, bucket, config.click_point_cap)

    return ClickDensityOutput(
        total_clicks=merged["total_clicks"],
        points=tuple(
            ClickPoint(x=p[0], y=p[1], element=p[2] or None, viewport=p[3])
            for p in merged["points"]
        ),
        viewports=merged["viewports"],
        elements=dict(sorted(merged["elements"].items(), key=lambda kv: (-kv[1], kv[0]))),
        cells=density_cells(merged["grid"], config.grid_cell_percent),
    )


def run_query_scroll(
    inp: HeatmapQueryInput,
    *,
    store: KeyValueStorePort,
    config: HeatmapConfig = DEFAULT_CONFIG,
) -> ScrollDensityOutput:
    """Merge scroll buckets for a page across the range."""
    error = _range_error(inp.start, inp.end)
    if error:
        return ScrollDensityOutput(total_sessions=0, errors=[error], success=False)

    merged = empty_scroll_bucket()
    for day in days_between(inp.start, inp.end):
        bucket = store.get(heatmap_key(inp.site_id, SCROLL, day, inp.path), as_json=True)
        if bucket:
            merged = merge_scroll_buckets(merged, bucket, config.scroll_sample_cap)

    total = merged["total_sessions"]
    depths = tuple(float(d) for d in merged["max_depths"])
    fold_sum, fold_count = merged["fold"]
    width = config.band_width_percent
    return ScrollDensityOutput(
        total_sessions=total,
        bands={label: merged["bands"].get(label, 0) for label in all_bands(width)},
        reach=scroll_reach(merged["bands"], total, width),
        max_depths=depths,
        avg_max_depth=round(sum(depths) / len(depths), 1) if depths else 0.0,
        avg_fold=round(fold_sum / fold_count, 1) if fold_count else 0.0,
    )


def run_list_pages(
    inp: HeatmapPagesInput,
    *,
    store: KeyValueStorePort,
) -> HeatmapPagesOutput:
    """Pages with any heatmap data in the range, most clicked first."""
    error = _range_error(inp.start, inp.end)
    if error:
        return HeatmapPagesOutput(errors=[error], success=False)

    clicks: dict[str, int] = {}
    sessions: dict[str, int] = {}
    for day in days_between(inp.start, inp.end):
        for kind, totals, field_name in (
            (CLICKS, clicks, "total_clicks"),
            (SCROLL, sessions, "total_sessions"),
        ):
            prefix = heatmap_prefix(inp.site_id, kind, day)
            for key in store.list(prefix):
                path = decode_path(key[len(prefix):])
                bucket = store.get(key, as_json=True) or {}
                totals[path] = totals.get(path, 0) + int(bucket.get(field_name, 0))

    pages = [
        HeatmapPage(path=p, clicks=clicks.get(p, 0), scroll_sessions=sessions.get(p, 0))
        for p in set(clicks) | set(sessions)
    ]
    pages.sort(key=lambda p: (-p.clicks, -p.scroll_sessions, p.path))
    return HeatmapPagesOutput(pages=tuple(pages))


class HeatmapSink:
    """EventSinkPort that records click and scroll events."""

    def __init__(self, store: KeyValueStorePort, config: HeatmapConfig = DEFAULT_CONFIG) -> None:
        self._store = store
        self._config = config

    def accept(self, event: Event, identity: Identity, now: datetime) -> None:
        day = event.timestamp.date()
        if event.kind == EventKind.CLICK and event.x is not None and event.y is not None:
            run_record_click(
                RecordClickInput(
                    site_id=event.site_id,
                    path=event.path,
                    day=day,
                    x=event.x,
                    y=event.y,
                    viewport=event.viewport or "unknown",
                    element=event.element,
                ),
                store=self._store,
                config=self._config,
            )
        elif event.kind == EventKind.SCROLL and event.depth is not None:
            run_record_scroll(
                RecordScrollInput(
                    site_id=event.site_id,
                    path=event.path,
                    day=day,
                    max_depth=event.depth,
                    fold=event.fold,
                ),
                store=self._store,
                config=self._config,
            )


def run(inp: Any, **kwargs: Any) -> Any:
    """Dispatch to the entry point matching the input type."""
    if isinstance(inp, RecordClickInput):
        return run_record_click(inp, **kwargs)
    if isinstance(inp, RecordScrollInput):
        return run_record_scroll(inp, **kwargs)
    if isinstance(inp, HeatmapPagesInput):
        return run_list_pages(inp, **kwargs)
    raise ValueError(f"Unknown input type: {type(inp)}")
