"""
Stats component - Range queries over daily rollups.

Reads every DailyRollup in [start, end] (one read per day, fanned out on a
thread pool), merges them with the rollup combine, then derives metrics.

Invariants:
- A single-day range equals that day's rollup with no merge distortion
- Bounce rate is within [0, 100]; zero denominators yield 0
- Breakdown rows sort by count descending, ties by key ascending
- Filters narrow one dimension each and combine with AND
"""

from __future__ import annotations

import calendar
import logging
import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any

from src.components.analytics import DailyRollup, combine_all, from_json
from src.core.keys import rollup_key
from src.rules.models import Rules

from .models import (
    PeriodOutput,
    ResolvePeriodInput,
    StatsFilter,
    StatsQueryInput,
    StatsQueryOutput,
    StatsSummaryInput,
    StatsSummaryOutput,
    StatsValidationError,
)
from .ports import KeyValueStorePort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class StatsConfig:
    """Range query configuration."""

    max_range_days: int = 730
    fanout_workers: int = 8
    max_session_duration_seconds: float = 7200

    @classmethod
    def from_rules(cls, rules: Rules) -> StatsConfig:
        return cls(
            max_range_days=rules.query.max_range_days,
            fanout_workers=rules.query.fanout_workers,
            max_session_duration_seconds=rules.ingest.max_session_duration_seconds,
        )


DEFAULT_CONFIG = StatsConfig()

METRICS = (
    "visitors",
    "pageviews",
    "sessions",
    "bounce_rate",
    "visit_duration",
    "views_per_visit",
    "events",
    "scroll_depth",
)
DEFAULT_METRICS = ("visitors", "pageviews")

PERIODS = ("realtime", "day", "24h", "7d", "30d", "90d", "365d", "6mo", "12mo", "custom")

_DAYS_PERIOD = re.compile(r"^(\d+)d$")
_MONTHS_PERIOD = re.compile(r"^(\d+)mo$")


# --- Dimensions ---


@dataclass(frozen=True)
class Dimension:
    """A breakdown/filter property: where its map lives and what it counts."""

    getter: Callable[[DailyRollup], dict[str, int]]
    measure: str


DIMENSIONS: dict[str, Dimension] = {
    "page": Dimension(lambda r: r.pages, "pageviews"),
    "source": Dimension(lambda r: r.traffic_sources, "pageviews"),
    "referrer": Dimension(lambda r: r.referrers, "pageviews"),
    "device": Dimension(lambda r: r.devices, "pageviews"),
    "browser": Dimension(lambda r: r.browsers, "pageviews"),
    "os": Dimension(lambda r: r.operating_systems, "pageviews"),
    "screen": Dimension(lambda r: r.screen_resolutions, "pageviews"),
    "country": Dimension(lambda r: r.countries, "pageviews"),
    "city": Dimension(lambda r: r.cities, "pageviews"),
    "language": Dimension(lambda r: r.languages, "pageviews"),
    "campaign": Dimension(lambda r: r.campaigns, "pageviews"),
    "landing_page": Dimension(lambda r: r.landing_pages, "sessions"),
    "exit_page": Dimension(lambda r: r.exit_pages, "sessions"),
    "event": Dimension(lambda r: r.events, "events"),
}


# --- Period Resolution ---


def months_back(day: date, months: int) -> date:
    """Same day-of-month `months` calendar months earlier, clamped to month end."""
    years, month_index = divmod(day.month - 1 - months, 12)
    year = day.year + years
    month = month_index + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def _period_error(message: str, field_name: str = "period") -> PeriodOutput:
    return PeriodOutput(
        errors=[StatsValidationError("invalid_period", message, field_name)],
        success=False,
    )


def run_resolve_period(
    inp: ResolvePeriodInput,
    *,
    config: StatsConfig = DEFAULT_CONFIG,
) -> PeriodOutput:
    """Map a period token to an inclusive UTC date window."""
    period = (inp.period or "").strip().lower()
    today = inp.today

    if period in ("day", "realtime"):
        start, end = today, today
    elif period == "24h":
        start, end = today - timedelta(days=1), today
    elif period == "custom":
        if inp.start is None or inp.end is None:
            return _period_error("start_date and end_date are required for custom period", "start_date")
        start, end = inp.start, inp.end
    elif match := _DAYS_PERIOD.match(period):
        days = int(match.group(1))
        if days < 1:
            return _period_error(f"Invalid period: {inp.period}")
        start, end = today - timedelta(days=days - 1), today
    elif match := _MONTHS_PERIOD.match(period):
        months = int(match.group(1))
        if months < 1:
            return _period_error(f"Invalid period: {inp.period}")
        start, end = months_back(today, months), today
    else:
        return _period_error(f"Invalid period: {inp.period}")

    error = validate_range(start, end, config)
    if error:
        return PeriodOutput(errors=[error], success=False)
    return PeriodOutput(start=start, end=end)


def validate_range(
    start: date, end: date, config: StatsConfig = DEFAULT_CONFIG
) -> StatsValidationError | None:
    if start > end:
        return StatsValidationError("invalid_range", "Start date must be before end date", "start_date")
    if (end - start).days + 1 > config.max_range_days:
        return StatsValidationError(
            "range_too_large",
            f"Date range exceeds {config.max_range_days} days",
            "start_date",
        )
    return None


# --- Loading ---


def days_between(start: date, end: date) -> list[date]:
    return [start + timedelta(days=i) for i in range((end - start).days + 1)]


def load_rollups(
    store: KeyValueStorePort,
    site_id: str,
    start: date,
    end: date,
    workers: int = 8,
) -> list[tuple[date, DailyRollup]]:
    """One read per day, in parallel; results in date order."""
    days = days_between(start, end)

    def read(day: date) -> tuple[date, DailyRollup]:
        return day, from_json(store.get(rollup_key(site_id, day), as_json=True))

    if len(days) <= 1 or workers <= 1:
        return [read(day) for day in days]
    with ThreadPoolExecutor(max_workers=min(workers, len(days))) as pool:
        return list(pool.map(read, days))


# --- Metrics ---


def ratio(total: float, count: float, digits: int = 1) -> float:
    """Average that yields 0 for an empty denominator."""
    if not count:
        return 0.0
    return round(total / count, digits)


def bounce_rate(rollup: DailyRollup) -> float:
    rate = ratio(rollup.bounces * 100, rollup.unique_sessions)
    return max(0.0, min(100.0, rate))


def metric_values(
    rollup: DailyRollup,
    metrics: tuple[str, ...] | list[str] = METRICS,
    config: StatsConfig = DEFAULT_CONFIG,
) -> dict[str, float]:
    """Derive the requested metrics from one (possibly merged) rollup."""
    values: dict[str, float] = {}
    for metric in metrics:
        if metric == "visitors":
            values[metric] = rollup.unique_visitors
        elif metric == "pageviews":
            values[metric] = rollup.pageviews
        elif metric == "sessions":
            values[metric] = rollup.unique_sessions
        elif metric == "bounce_rate":
            values[metric] = bounce_rate(rollup)
        elif metric == "visit_duration":
            values[metric] = ratio(*rollup.session_duration(config.max_session_duration_seconds))
        elif metric == "views_per_visit":
            values[metric] = ratio(*rollup.pages_per_session, digits=2)
        elif metric == "events":
            values[metric] = rollup.total_events
        elif metric == "scroll_depth":
            values[metric] = ratio(*rollup.scroll_depth)
    return values


# --- Filters ---


def parse_filters(raw: str | None) -> tuple[StatsFilter, ...]:
    """Parse `page==/blog/*;country==US`. Raises ValueError when malformed."""
    if not raw:
        return ()
    filters = []
    for part in raw.split(";"):
        if not part.strip():
            continue
        if "==" not in part:
            raise ValueError(f"Malformed filter: {part.strip()}")
        prop, value = part.split("==", 1)
        if not prop.strip() or not value.strip():
            raise ValueError(f"Malformed filter: {part.strip()}")
        filters.append(StatsFilter(property=prop.strip(), value=value.strip()))
    return tuple(filters)


def filter_matches(pattern: str, key: str) -> bool:
    """Exact match, or prefix match when the pattern ends in `*`."""
    if pattern.endswith("*"):
        return key.startswith(pattern[:-1])
    return key == pattern


def apply_filters(
    values: dict[str, int], prop: str, filters: tuple[StatsFilter, ...]
) -> dict[str, int]:
    """Keep keys matching every filter on this property."""
    for f in filters:
        if f.property == prop:
            values = {k: v for k, v in values.items() if filter_matches(f.value, k)}
    return values


def filtered_metric_values(
    rollup: DailyRollup,
    metrics: tuple[str, ...],
    filters: tuple[StatsFilter, ...],
    config: StatsConfig = DEFAULT_CONFIG,
) -> dict[str, float]:
    """
    Metrics with each filter narrowing the measure its dimension counts.

    Several filters on one measure combine with AND, bounded by the
    smallest matching total since dimensions are not cross-tabulated.
    """
    values = metric_values(rollup, metrics, config)
    narrowed: dict[str, int] = {}
    for f in filters:
        dim = DIMENSIONS[f.property]
        total = sum(apply_filters(dim.getter(rollup), f.property, (f,)).values())
        narrowed[dim.measure] = min(narrowed.get(dim.measure, total), total)
    for measure, total in narrowed.items():
        if measure in values:
            values[measure] = total
    return values


def unfiltered_metrics(metrics: tuple[str, ...], filters: tuple[StatsFilter, ...]) -> list[str]:
    """Requested metrics that no filter narrows."""
    if not filters:
        return []
    measures = {DIMENSIONS[f.property].measure for f in filters}
    return [m for m in metrics if m not in measures]


def breakdown_rows(
    rollup: DailyRollup,
    prop: str,
    filters: tuple[StatsFilter, ...] = (),
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """One row per key of the property's dimension map."""
    dim = DIMENSIONS[prop]
    values = apply_filters(dim.getter(rollup), prop, filters)
    rows = sorted(values.items(), key=lambda kv: (-kv[1], kv[0]))
    if limit is not None:
        rows = rows[:limit]
    return [{prop: key, dim.measure: count} for key, count in rows]


def sorted_counts(values: dict[str, int]) -> dict[str, int]:
    return dict(sorted(values.items(), key=lambda kv: (-kv[1], kv[0])))


# --- Component Entry Points ---


def _validate_query(inp: StatsQueryInput, config: StatsConfig) -> list[StatsValidationError]:
    errors: list[StatsValidationError] = []
    if not inp.site_id:
        errors.append(StatsValidationError("missing_field", "Site ID required", "site_id"))
    range_error = validate_range(inp.start, inp.end, config)
    if range_error:
        errors.append(range_error)
    for metric in inp.metrics:
        if metric not in METRICS:
            errors.append(StatsValidationError("invalid_metric", f"Invalid metric: {metric}", "metrics"))
    if inp.breakdown is not None and inp.breakdown not in DIMENSIONS:
        errors.append(
            StatsValidationError("invalid_property", f"Invalid property: {inp.breakdown}", "property")
        )
    for f in inp.filters:
        if f.property not in DIMENSIONS:
            errors.append(
                StatsValidationError("invalid_filter", f"Invalid filter property: {f.property}", "filters")
            )
        elif inp.breakdown is not None and f.property != inp.breakdown:
            errors.append(
                StatsValidationError(
                    "invalid_filter",
                    f"Filter on {f.property} cannot narrow a {inp.breakdown} breakdown",
                    "filters",
                )
            )
    return errors


def run_query(
    inp: StatsQueryInput,
    *,
    store: KeyValueStorePort,
    config: StatsConfig = DEFAULT_CONFIG,
) -> StatsQueryOutput:
    """
    Aggregate a site's rollups over a date range.

    Without a breakdown, results are one row per day carrying the
    requested metrics. With a breakdown, results are one row per key.
    """
    errors = _validate_query(inp, config)
    if errors:
        return StatsQueryOutput(errors=errors, success=False)

    metrics = tuple(inp.metrics) or DEFAULT_METRICS
    daily = load_rollups(store, inp.site_id, inp.start, inp.end, config.fanout_workers)
    merged = combine_all([rollup for _, rollup in daily])

    totals = filtered_metric_values(merged, metrics, inp.filters, config)
    # Identity hashes are day-scoped; range uniques are per-day sums
    if "visitors" in totals:
        totals["visitors"] = sum(r.unique_visitors for _, r in daily)

    query: dict[str, Any] = {
        "site_id": inp.site_id,
        "date_from": inp.start.isoformat(),
        "date_to": inp.end.isoformat(),
        "metrics": list(metrics),
        "filters": [f"{f.property}=={f.value}" for f in inp.filters],
    }

    if inp.breakdown:
        measure = DIMENSIONS[inp.breakdown].measure
        query["property"] = inp.breakdown
        unsupported = [m for m in metrics if m != measure]
        if unsupported:
            query["unsupported_metrics"] = unsupported
        results = breakdown_rows(merged, inp.breakdown, inp.filters)
    else:
        results = [
            {"date": day.isoformat(), **filtered_metric_values(rollup, metrics, inp.filters, config)}
            for day, rollup in daily
        ]

    unfiltered = unfiltered_metrics(metrics, inp.filters)
    if unfiltered:
        query["unfiltered_metrics"] = unfiltered

    logger.debug(
        "Stats query for site %s over %d days returned %d rows",
        inp.site_id,
        len(daily),
        len(results),
    )
    return StatsQueryOutput(results=results, totals=totals, query=query)


def summarize(
    daily: list[tuple[date, DailyRollup]],
    config: StatsConfig = DEFAULT_CONFIG,
) -> dict[str, Any]:
    """Dashboard shape for a list of per-day rollups."""
    merged = combine_all([rollup for _, rollup in daily])
    duration_sum, duration_count = merged.session_duration(config.max_session_duration_seconds)

    return {
        "pageviews": merged.pageviews,
        "uniqueVisitors": sum(r.unique_visitors for _, r in daily),
        "uniqueSessions": sum(r.unique_sessions for _, r in daily),
        "newVisitors": sum(r.new_visitor_count for _, r in daily),
        "returningVisitors": sum(r.returning_visitor_count for _, r in daily),
        "unattributedPageviews": merged.unattributed_pageviews,
        "bounces": merged.bounces,
        "bounceRate": bounce_rate(merged),
        "avgScrollDepth": ratio(*merged.scroll_depth),
        "avgSessionDuration": ratio(duration_sum, duration_count),
        "avgPagesPerSession": ratio(*merged.pages_per_session, digits=2),
        "avgTimeOnPage": {
            path: ratio(total, count) for path, (total, count) in sorted(merged.time_on_page.items())
        },
        "pages": sorted_counts(merged.pages),
        "landingPages": sorted_counts(merged.landing_pages),
        "exitPages": sorted_counts(merged.exit_pages),
        "referrers": sorted_counts(merged.referrers),
        "trafficSources": sorted_counts(merged.traffic_sources),
        "campaigns": sorted_counts(merged.campaigns),
        "devices": sorted_counts(merged.devices),
        "browsers": sorted_counts(merged.browsers),
        "operatingSystems": sorted_counts(merged.operating_systems),
        "screenResolutions": sorted_counts(merged.screen_resolutions),
        "languages": sorted_counts(merged.languages),
        "countries": sorted_counts(merged.countries),
        "cities": sorted_counts(merged.cities),
        "events": sorted_counts(merged.events),
        "eventLabels": sorted_counts(merged.event_labels),
        "eventValues": {
            name: ratio(total, count, digits=2)
            for name, (total, count) in sorted(merged.event_values.items())
        },
        "totalEvents": merged.total_events,
        "clicks": merged.clicks,
        "errors": sorted_counts(merged.errors),
        "errorsTotal": merged.errors_total,
        "daily": [
            {
                "date": day.isoformat(),
                "pageviews": rollup.pageviews,
                "visitors": rollup.unique_visitors,
                "sessions": rollup.unique_sessions,
            }
            for day, rollup in daily
        ],
    }


def run_summary(
    inp: StatsSummaryInput,
    *,
    store: KeyValueStorePort,
    config: StatsConfig = DEFAULT_CONFIG,
) -> StatsSummaryOutput:
    """Dashboard summary for a site over a date range."""
    range_error = validate_range(inp.start, inp.end, config)
    if range_error:
        return StatsSummaryOutput(errors=[range_error], success=False)

    daily = load_rollups(store, inp.site_id, inp.start, inp.end, config.fanout_workers)
    return StatsSummaryOutput(summary=summarize(daily, config))


def run(inp: Any, **kwargs: Any) -> Any:
    """Dispatch to the entry point matching the input type."""
    if isinstance(inp, ResolvePeriodInput):
        return run_resolve_period(inp, **kwargs)
    if isinstance(inp, StatsQueryInput):
        return run_query(inp, **kwargs)
    if isinstance(inp, StatsSummaryInput):
        return run_summary(inp, **kwargs)
    raise ValueError(f"Unknown input type: {type(inp)}")
