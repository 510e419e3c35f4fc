"""
DailyRollup - Merge-aggregation schema for per-site, per-day statistics.

Every field is declared with one FieldKind, and one generic combine per
kind merges two partial rollups. Folding an event is
combine(current, contribution(event)), so replayed or reordered folds
produce the same rollup.

Key behaviors:
- COUNTER adds, DIMENSION_MAP adds by key, SET unions
- SUM_COUNT / KEYED_SUM_COUNT add (sum, count) pairs; means are derived
- KEYED_EARLIEST / KEYED_LATEST keep the (timestamp, value) extreme per key
- KEYED_MAX keeps the largest number per key
- Bounces, landing/exit pages and session duration are derived at read time
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from src.core.services.analytics_classify import Event, EventKind
from src.core.services.analytics_identity import Identity

# --- Field Kinds ---


class FieldKind(str, Enum):
    """How a rollup field merges."""

    COUNTER = "counter"
    DIMENSION_MAP = "dimension_map"
    SET = "set"
    SUM_COUNT = "sum_count"
    KEYED_SUM_COUNT = "keyed_sum_count"
    KEYED_EARLIEST = "keyed_earliest"
    KEYED_LATEST = "keyed_latest"
    KEYED_MAX = "keyed_max"


def _rollup_field(kind: FieldKind) -> Any:
    factories: dict[FieldKind, Any] = {
        FieldKind.COUNTER: int,
        FieldKind.SET: frozenset,
        FieldKind.SUM_COUNT: lambda: (0.0, 0),
    }
    return field(default_factory=factories.get(kind, dict), metadata={"kind": kind})


# --- Combine Operators ---


def _add_maps(a: dict[str, int], b: dict[str, int]) -> dict[str, int]:
    out = dict(a)
    for key, value in b.items():
        out[key] = out.get(key, 0) + value
    return out


def _add_pairs(a: tuple[float, int], b: tuple[float, int]) -> tuple[float, int]:
    return (a[0] + b[0], a[1] + b[1])


def _add_keyed_pairs(
    a: dict[str, tuple[float, int]], b: dict[str, tuple[float, int]]
) -> dict[str, tuple[float, int]]:
    out = dict(a)
    for key, pair in b.items():
        out[key] = _add_pairs(out.get(key, (0.0, 0)), pair)
    return out


def _keep_extreme(
    a: dict[str, tuple[str, str]], b: dict[str, tuple[str, str]], latest: bool
) -> dict[str, tuple[str, str]]:
    out = dict(a)
    for key, entry in b.items():
        current = out.get(key)
        if current is None:
            out[key] = entry
        elif latest:
            out[key] = max(current, entry)
        else:
            out[key] = min(current, entry)
    return out


def _keep_max(a: dict[str, float], b: dict[str, float]) -> dict[str, float]:
    out = dict(a)
    for key, value in b.items():
        out[key] = max(out.get(key, value), value)
    return out


def combine_field(kind: FieldKind, a: Any, b: Any) -> Any:
    """Merge two values of one field kind. Associative and commutative."""
    if kind == FieldKind.COUNTER:
        return a + b
    if kind == FieldKind.DIMENSION_MAP:
        return _add_maps(a, b)
    if kind == FieldKind.SET:
        return a | b
    if kind == FieldKind.SUM_COUNT:
        return _add_pairs(a, b)
    if kind == FieldKind.KEYED_SUM_COUNT:
        return _add_keyed_pairs(a, b)
    if kind == FieldKind.KEYED_EARLIEST:
        return _keep_extreme(a, b, latest=False)
    if kind == FieldKind.KEYED_LATEST:
        return _keep_extreme(a, b, latest=True)
    if kind == FieldKind.KEYED_MAX:
        return _keep_max(a, b)
    raise ValueError(f"Unknown field kind: {kind}")


# --- Schema ---


@dataclass(frozen=True)
class DailyRollup:
    """Per-(site, UTC date) summary. All fields merge via combine_field."""

    # Counters
    pageviews: int = _rollup_field(FieldKind.COUNTER)
    unattributed_pageviews: int = _rollup_field(FieldKind.COUNTER)
    total_events: int = _rollup_field(FieldKind.COUNTER)
    errors_total: int = _rollup_field(FieldKind.COUNTER)
    clicks: int = _rollup_field(FieldKind.COUNTER)

    # Identity sets (day-scoped hashes only)
    visitors: frozenset[str] = _rollup_field(FieldKind.SET)
    new_visitors: frozenset[str] = _rollup_field(FieldKind.SET)
    returning_visitors: frozenset[str] = _rollup_field(FieldKind.SET)
    engaged_sessions: frozenset[str] = _rollup_field(FieldKind.SET)

    # Per-session state
    session_pageviews: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    session_entries: dict[str, tuple[str, str]] = _rollup_field(FieldKind.KEYED_EARLIEST)
    session_exits: dict[str, tuple[str, str]] = _rollup_field(FieldKind.KEYED_LATEST)
    session_reported_duration: dict[str, float] = _rollup_field(FieldKind.KEYED_MAX)

    # Dimensions
    pages: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    referrers: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    traffic_sources: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    devices: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    browsers: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    operating_systems: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    screen_resolutions: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    languages: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    countries: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    cities: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    campaigns: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    events: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    event_labels: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)
    errors: dict[str, int] = _rollup_field(FieldKind.DIMENSION_MAP)

    # Averaged metrics
    scroll_depth: tuple[float, int] = _rollup_field(FieldKind.SUM_COUNT)
    time_on_page: dict[str, tuple[float, int]] = _rollup_field(FieldKind.KEYED_SUM_COUNT)
    event_values: dict[str, tuple[float, int]] = _rollup_field(FieldKind.KEYED_SUM_COUNT)

    # --- Derived ---

    @property
    def unique_visitors(self) -> int:
        return len(self.visitors)

    @property
    def unique_sessions(self) -> int:
        return len(self.session_pageviews)

    @property
    def new_visitor_count(self) -> int:
        return len(self.new_visitors)

    @property
    def returning_visitor_count(self) -> int:
        # A visitor marked new earlier the same day stays new
        return len(self.returning_visitors - self.new_visitors)

    @property
    def bounces(self) -> int:
        """Sessions with exactly one pageview and no qualifying engagement."""
        return sum(
            1
            for session, count in self.session_pageviews.items()
            if count == 1 and session not in self.engaged_sessions
        )

    @property
    def landing_pages(self) -> dict[str, int]:
        return dict(Counter(path for _, path in self.session_entries.values()))

    @property
    def exit_pages(self) -> dict[str, int]:
        return dict(Counter(path for _, path in self.session_exits.values()))

    @property
    def pages_per_session(self) -> tuple[float, int]:
        return (float(sum(self.session_pageviews.values())), len(self.session_pageviews))

    def session_duration(self, max_seconds: float = 7200) -> tuple[float, int]:
        """
        (sum, count) of session durations in seconds.

        Duration is the larger of the observed timestamp span and the
        client-reported duration; zero and outlier durations are skipped.
        """
        total = 0.0
        count = 0
        for session, (first_ts, _) in self.session_entries.items():
            span = 0.0
            last = self.session_exits.get(session)
            if last is not None:
                span = (
                    datetime.fromisoformat(last[0]) - datetime.fromisoformat(first_ts)
                ).total_seconds()
            duration = max(span, self.session_reported_duration.get(session, 0.0))
            if 0 < duration < max_seconds:
                total += duration
                count += 1
        return (total, count)


ROLLUP_SCHEMA: dict[str, FieldKind] = {f.name: f.metadata["kind"] for f in fields(DailyRollup)}


def combine(a: DailyRollup, b: DailyRollup) -> DailyRollup:
    """Merge two partial rollups field by field."""
    return DailyRollup(
        **{
            name: combine_field(kind, getattr(a, name), getattr(b, name))
            for name, kind in ROLLUP_SCHEMA.items()
        }
    )


def combine_all(rollups: list[DailyRollup]) -> DailyRollup:
    result = DailyRollup()
    for rollup in rollups:
        result = combine(result, rollup)
    return result


# --- Serialisation ---


def to_json(rollup: DailyRollup) -> dict[str, Any]:
    """JSON-ready form; sets become sorted lists, pairs become lists."""
    out: dict[str, Any] = {}
    for name, kind in ROLLUP_SCHEMA.items():
        value = getattr(rollup, name)
        if kind == FieldKind.SET:
            out[name] = sorted(value)
        elif kind == FieldKind.SUM_COUNT:
            out[name] = [value[0], value[1]]
        elif kind in (
            FieldKind.KEYED_SUM_COUNT,
            FieldKind.KEYED_EARLIEST,
            FieldKind.KEYED_LATEST,
        ):
            out[name] = {k: [v[0], v[1]] for k, v in value.items()}
        else:
            out[name] = value
    return out


def from_json(data: dict[str, Any] | None) -> DailyRollup:
    """Inverse of to_json. Unknown keys are ignored, missing keys are empty."""
    if not data:
        return DailyRollup()
    values: dict[str, Any] = {}
    for name, kind in ROLLUP_SCHEMA.items():
        if name not in data:
            continue
        raw = data[name]
        if kind == FieldKind.SET:
            values[name] = frozenset(raw)
        elif kind == FieldKind.SUM_COUNT:
            values[name] = (float(raw[0]), int(raw[1]))
        elif kind == FieldKind.KEYED_SUM_COUNT:
            values[name] = {k: (float(v[0]), int(v[1])) for k, v in raw.items()}
        elif kind in (FieldKind.KEYED_EARLIEST, FieldKind.KEYED_LATEST):
            values[name] = {k: (str(v[0]), str(v[1])) for k, v in raw.items()}
        elif kind == FieldKind.KEYED_MAX:
            values[name] = {k: float(v) for k, v in raw.items()}
        elif kind == FieldKind.COUNTER:
            values[name] = int(raw)
        else:
            values[name] = {k: int(v) for k, v in raw.items()}
    return DailyRollup(**values)


# --- Contribution ---


@dataclass(frozen=True)
class FoldRules:
    """Thresholds applied when computing an event's contribution."""

    max_time_on_page_seconds: float = 3600
    max_session_duration_seconds: float = 7200
    engaged_time_seconds: float = 30
    engaged_scroll_percent: float = 25


DEFAULT_FOLD_RULES = FoldRules()


def contribution(
    event: Event,
    identity: Identity,
    is_returning: bool | None = None,
    rules: FoldRules = DEFAULT_FOLD_RULES,
) -> DailyRollup:
    """
    The additive delta one event makes to its day's rollup.

    Pure: depends only on the event, its identity, and the
    returning-visitor verdict, never on the current rollup.
    """
    session = identity.session_id
    visitor = identity.identity_hash
    ts = event.timestamp.isoformat()
    delta: dict[str, Any] = {}

    if event.kind == EventKind.PAGEVIEW:
        delta["pageviews"] = 1
        delta["pages"] = {event.path: 1}
        delta["devices"] = {event.device: 1}
        delta["browsers"] = {event.browser: 1}
        delta["operating_systems"] = {event.os: 1}
        if event.traffic_source.value != "internal":
            delta["traffic_sources"] = {event.traffic_source.value: 1}
            if event.referrer_domain:
                delta["referrers"] = {event.referrer_domain: 1}
        if event.campaign:
            delta["campaigns"] = {event.campaign: 1}
        if event.screen_resolution:
            delta["screen_resolutions"] = {event.screen_resolution: 1}
        if event.language:
            delta["languages"] = {event.language: 1}
        if event.country:
            delta["countries"] = {event.country: 1}
        if event.city:
            delta["cities"] = {event.city: 1}

        if visitor is None or session is None:
            delta["unattributed_pageviews"] = 1
        else:
            delta["visitors"] = frozenset({visitor})
            delta["session_pageviews"] = {session: 1}
            delta["session_entries"] = {session: (ts, event.path)}
            delta["session_exits"] = {session: (ts, event.path)}
            if is_returning is True:
                delta["returning_visitors"] = frozenset({visitor})
            elif is_returning is False:
                delta["new_visitors"] = frozenset({visitor})

    elif event.kind == EventKind.CUSTOM:
        name = event.name or "unknown"
        delta["total_events"] = 1
        delta["events"] = {name: 1}
        if event.label:
            delta["event_labels"] = {f"{name}::{event.label}": 1}
        if event.value is not None:
            delta["event_values"] = {name: (float(event.value), 1)}
        if session:
            delta["engaged_sessions"] = frozenset({session})

    elif event.kind == EventKind.ERROR:
        delta["errors_total"] = 1
        delta["errors"] = {event.name or "Unknown error": 1}

    elif event.kind == EventKind.CLICK:
        delta["clicks"] = 1
        if session:
            delta["engaged_sessions"] = frozenset({session})

    elif event.kind == EventKind.SCROLL:
        if event.depth is not None:
            delta["scroll_depth"] = (float(event.depth), 1)
            if session and event.depth >= rules.engaged_scroll_percent:
                delta["engaged_sessions"] = frozenset({session})

    elif event.kind == EventKind.ENGAGEMENT:
        t = event.time_on_page
        if t is not None and 0 < t < rules.max_time_on_page_seconds:
            delta["time_on_page"] = {event.path: (float(t), 1)}
        if session:
            engaged = (t is not None and t >= rules.engaged_time_seconds) or (
                event.depth is not None and event.depth >= rules.engaged_scroll_percent
            )
            if engaged:
                delta["engaged_sessions"] = frozenset({session})
            d = event.session_duration
            if d is not None and 0 < d < rules.max_session_duration_seconds:
                delta["session_reported_duration"] = {session: float(d)}
            if event.is_exit:
                delta["session_exits"] = {session: (ts, event.path)}

    return DailyRollup(**delta)


def fold(
    rollup: DailyRollup,
    event: Event,
    identity: Identity,
    is_returning: bool | None = None,
    rules: FoldRules = DEFAULT_FOLD_RULES,
) -> DailyRollup:
    """Fold one event into a rollup."""
    return combine(rollup, contribution(event, identity, is_returning, rules))
