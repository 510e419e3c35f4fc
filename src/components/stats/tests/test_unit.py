"""
Unit tests for the Stats component.

Rollups are seeded directly through the analytics contribution so the
expected numbers can be worked out by hand.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

import pytest

from src.adapters.kv_memory import InMemoryKeyValueStore
from src.components.analytics import RollupRepository, combine_all, contribution
from src.core.services.analytics_classify import Event, EventKind
from src.core.services.analytics_identity import Identity

from ..component import (
    StatsConfig,
    bounce_rate,
    filter_matches,
    load_rollups,
    metric_values,
    months_back,
    parse_filters,
    ratio,
    run,
    run_query,
    run_resolve_period,
    run_summary,
)
from ..models import ResolvePeriodInput, StatsFilter, StatsQueryInput, StatsSummaryInput

DAY1 = date(2026, 1, 14)
DAY2 = date(2026, 1, 15)


def at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=UTC)


def pv(path: str, session: str, visitor: str, ts: datetime):
    return contribution(
        Event(kind=EventKind.PAGEVIEW, site_id="site-1", timestamp=ts, path=path),
        Identity(visitor, session, None),
        is_returning=False,
    )


def custom(name: str, session: str, visitor: str, ts: datetime):
    return contribution(
        Event(kind=EventKind.CUSTOM, site_id="site-1", timestamp=ts, name=name),
        Identity(visitor, session, None),
    )


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    """
    Day 1: s1 views / then /blog/a, s2 bounces on /blog/b, s3 views / and signs up.
    Day 2: s4 bounces on /.
    """
    s = InMemoryKeyValueStore()
    repo = RollupRepository(s)
    repo.merge(
        "site-1",
        DAY1,
        combine_all(
            [
                pv("/", "s1", "v1", at(DAY1, 10)),
                pv("/blog/a", "s1", "v1", at(DAY1, 10, 5)),
                pv("/blog/b", "s2", "v2", at(DAY1, 11)),
                pv("/", "s3", "v3", at(DAY1, 12)),
                custom("signup", "s3", "v3", at(DAY1, 12, 1)),
            ]
        ),
    )
    repo.merge("site-1", DAY2, pv("/", "s4", "v4", at(DAY2, 9)))
    return s


def query(**kwargs) -> StatsQueryInput:
    kwargs.setdefault("site_id", "site-1")
    kwargs.setdefault("start", DAY1)
    kwargs.setdefault("end", DAY1)
    return StatsQueryInput(**kwargs)


# --- Period Tests ---


class TestResolvePeriod:
    """Tests for run_resolve_period."""

    def _resolve(self, period, start=None, end=None, config=None):
        return run_resolve_period(
            ResolvePeriodInput(period=period, today=DAY1, start=start, end=end),
            config=config or StatsConfig(),
        )

    def test_day(self) -> None:
        out = self._resolve("day")
        assert (out.start, out.end) == (DAY1, DAY1)

    def test_24h_spans_two_days(self) -> None:
        out = self._resolve("24h")
        assert (out.start, out.end) == (date(2026, 1, 13), DAY1)

    def test_7d_is_inclusive(self) -> None:
        out = self._resolve("7d")
        assert (out.start, out.end) == (date(2026, 1, 8), DAY1)

    def test_months(self) -> None:
        assert self._resolve("6mo").start == date(2025, 7, 14)
        assert self._resolve("12mo").start == date(2025, 1, 14)

    def test_months_back_clamps_to_month_end(self) -> None:
        assert months_back(date(2026, 3, 31), 1) == date(2026, 2, 28)

    def test_custom_requires_dates(self) -> None:
        out = self._resolve("custom")
        assert out.success is False
        assert out.errors[0].field_name == "start_date"

    def test_custom_range(self) -> None:
        out = self._resolve("custom", date(2026, 1, 1), date(2026, 1, 5))
        assert (out.start, out.end) == (date(2026, 1, 1), date(2026, 1, 5))

    def test_unknown_period(self) -> None:
        out = self._resolve("fortnight")
        assert out.success is False
        assert out.errors[0].message == "Invalid period: fortnight"
        assert out.errors[0].field_name == "period"

    def test_zero_days_invalid(self) -> None:
        assert self._resolve("0d").success is False

    def test_inverted_custom_range(self) -> None:
        out = self._resolve("custom", DAY2, DAY1)
        assert out.errors[0].code == "invalid_range"

    def test_range_too_large(self) -> None:
        out = self._resolve("30d", config=StatsConfig(max_range_days=7))
        assert out.errors[0].code == "range_too_large"


# --- Metric Tests ---


class TestMetrics:
    """Tests for derived metrics."""

    def test_ratio_of_empty_denominator(self) -> None:
        assert ratio(10, 0) == 0.0

    def test_bounce_rate_bounds(self, store) -> None:
        rollups = load_rollups(store, "site-1", DAY1, DAY2)
        for _, rollup in rollups:
            assert 0.0 <= bounce_rate(rollup) <= 100.0
        assert bounce_rate(rollups[1][1]) == 100.0

    def test_day_one_metrics(self, store) -> None:
        rollup = RollupRepository(store).get("site-1", DAY1)
        values = metric_values(rollup)
        assert values["pageviews"] == 4
        assert values["visitors"] == 3
        assert values["sessions"] == 3
        assert values["bounce_rate"] == 33.3
        assert values["views_per_visit"] == 1.33
        assert values["visit_duration"] == 300.0
        assert values["events"] == 1

    def test_load_rollups_in_date_order(self, store) -> None:
        days = [day for day, _ in load_rollups(store, "site-1", DAY1, DAY1 + timedelta(days=5), 4)]
        assert days == [DAY1 + timedelta(days=i) for i in range(6)]


# --- Query Tests ---


class TestQuery:
    """Tests for run_query."""

    def test_single_day_equals_rollup(self, store) -> None:
        metrics = ("visitors", "pageviews", "sessions", "bounce_rate")
        out = run_query(query(metrics=metrics), store=store)
        expected = metric_values(RollupRepository(store).get("site-1", DAY1), metrics)

        assert out.success
        assert out.results == [{"date": "2026-01-14", **expected}]
        assert out.totals == expected

    def test_default_metrics(self, store) -> None:
        out = run_query(query(), store=store)
        assert out.query["metrics"] == ["visitors", "pageviews"]

    def test_range_visitors_sum_daily_uniques(self, store) -> None:
        out = run_query(query(end=DAY2), store=store)
        assert out.totals == {"visitors": 4, "pageviews": 5}
        assert [row["date"] for row in out.results] == ["2026-01-14", "2026-01-15"]

    def test_empty_range_is_zero(self, store) -> None:
        out = run_query(query(start=date(2025, 1, 1), end=date(2025, 1, 2)), store=store)
        assert out.totals == {"visitors": 0, "pageviews": 0}

    def test_breakdown_sorted_by_count_then_key(self, store) -> None:
        out = run_query(query(end=DAY2, breakdown="page", metrics=("pageviews",)), store=store)
        assert out.results == [
            {"page": "/", "pageviews": 3},
            {"page": "/blog/a", "pageviews": 1},
            {"page": "/blog/b", "pageviews": 1},
        ]
        assert out.query["property"] == "page"
        assert "unsupported_metrics" not in out.query

    def test_breakdown_lists_unsupported_metrics(self, store) -> None:
        out = run_query(query(breakdown="page"), store=store)
        assert out.query["unsupported_metrics"] == ["visitors"]

    def test_landing_page_breakdown_counts_sessions(self, store) -> None:
        out = run_query(query(breakdown="landing_page", metrics=("sessions",)), store=store)
        assert out.results == [
            {"landing_page": "/", "sessions": 2},
            {"landing_page": "/blog/b", "sessions": 1},
        ]

    def test_prefix_filter_narrows_pageviews(self, store) -> None:
        out = run_query(query(filters=(StatsFilter("page", "/blog/*"),)), store=store)
        assert out.totals["pageviews"] == 2
        assert out.query["filters"] == ["page==/blog/*"]
        assert out.query["unfiltered_metrics"] == ["visitors"]

    def test_filters_combine_with_and(self, store) -> None:
        filters = (StatsFilter("page", "/blog/*"), StatsFilter("page", "/blog/a"))
        out = run_query(query(metrics=("pageviews",), filters=filters), store=store)
        assert out.totals["pageviews"] == 1

    def test_filtered_breakdown(self, store) -> None:
        out = run_query(
            query(breakdown="page", metrics=("pageviews",), filters=(StatsFilter("page", "/blog/*"),)),
            store=store,
        )
        assert [row["page"] for row in out.results] == ["/blog/a", "/blog/b"]

    def test_invalid_metric(self, store) -> None:
        out = run_query(query(metrics=("revenue",)), store=store)
        assert out.success is False
        assert out.errors[0].code == "invalid_metric"

    def test_invalid_property(self, store) -> None:
        out = run_query(query(breakdown="shoe_size"), store=store)
        assert out.errors[0].code == "invalid_property"
        assert out.errors[0].field_name == "property"

    def test_invalid_filter_property(self, store) -> None:
        out = run_query(query(filters=(StatsFilter("shoe_size", "9"),)), store=store)
        assert out.errors[0].code == "invalid_filter"

    def test_breakdown_rejects_filter_on_other_property(self, store) -> None:
        out = run_query(
            query(breakdown="page", metrics=("pageviews",), filters=(StatsFilter("country", "US"),)),
            store=store,
        )
        assert out.success is False
        assert out.errors[0].code == "invalid_filter"
        assert out.errors[0].field_name == "filters"
        assert out.results == []

    def test_missing_site(self, store) -> None:
        out = run_query(query(site_id=""), store=store)
        assert out.errors[0].code == "missing_field"


class TestFilters:
    """Tests for filter parsing."""

    def test_parse_multiple(self) -> None:
        assert parse_filters("page==/blog/*;country==US") == (
            StatsFilter("page", "/blog/*"),
            StatsFilter("country", "US"),
        )

    def test_parse_empty(self) -> None:
        assert parse_filters(None) == ()
        assert parse_filters("") == ()

    def test_malformed_raises(self) -> None:
        with pytest.raises(ValueError):
            parse_filters("page=/blog")
        with pytest.raises(ValueError):
            parse_filters("page==")

    def test_wildcard_match(self) -> None:
        assert filter_matches("/blog/*", "/blog/post")
        assert not filter_matches("/blog/*", "/about")
        assert filter_matches("/about", "/about")


# --- Summary Tests ---


class TestSummary:
    """Tests for run_summary."""

    def test_summary_shape(self, store) -> None:
        out = run_summary(StatsSummaryInput(site_id="site-1", start=DAY1, end=DAY2), store=store)
        summary = out.summary
        assert summary["pageviews"] == 5
        assert summary["uniqueVisitors"] == 4
        assert summary["uniqueSessions"] == 4
        assert summary["bounces"] == 2
        assert summary["bounceRate"] == 50.0
        assert summary["pages"] == {"/": 3, "/blog/a": 1, "/blog/b": 1}
        assert summary["landingPages"] == {"/": 3, "/blog/b": 1}
        assert summary["events"] == {"signup": 1}
        assert summary["avgSessionDuration"] == 300.0
        assert summary["newVisitors"] == 4
        assert [d["pageviews"] for d in summary["daily"]] == [4, 1]

    def test_summary_inverted_range(self, store) -> None:
        out = run_summary(StatsSummaryInput(site_id="site-1", start=DAY2, end=DAY1), store=store)
        assert out.success is False

    def test_dispatcher(self, store) -> None:
        out = run(StatsSummaryInput(site_id="site-1", start=DAY1, end=DAY1), store=store)
        assert out.summary["pageviews"] == 4
        with pytest.raises(ValueError, match="Unknown input type"):
            run(42)
