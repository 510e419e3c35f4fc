"""
Unit tests for the Funnels component.
"""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import Any

import pytest

from src.adapters.kv_memory import InMemoryKeyValueStore
from src.core.keys import trail_key

from ..component import (
    FunnelConfig,
    furthest_step,
    parse_steps,
    path_matches,
    run,
    run_create,
    run_delete,
    run_evaluate,
    run_get,
    run_list,
    run_update,
    step_counts,
)
from ..models import (
    CreateFunnelInput,
    DeleteFunnelInput,
    EvaluateFunnelInput,
    FunnelStep,
    GetFunnelInput,
    ListFunnelsInput,
    StepType,
    UpdateFunnelInput,
)

DAY = date(2026, 1, 14)
NOW = datetime(2026, 1, 14, 12, 0, 0, tzinfo=UTC)

SIGNUP_STEPS = [
    {"type": "page", "value": "/"},
    {"type": "page", "value": "/pricing", "name": "Pricing"},
    {"type": "event", "value": "signup"},
]


# --- Test Fixtures ---


class FakeTimePort:
    """Fake time port for testing."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or NOW

    def now_utc(self) -> datetime:
        return self._now

    def advance(self, **kwargs: Any) -> None:
        self._now = self._now + timedelta(**kwargs)


@pytest.fixture
def store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()


@pytest.fixture
def clock() -> FakeTimePort:
    return FakeTimePort()


def create(store, clock, steps=None, name="Signup"):
    out = run_create(
        CreateFunnelInput(site_id="site-1", name=name, steps=steps or SIGNUP_STEPS),
        store=store,
        time_port=clock,
    )
    assert out.success, out.errors
    return out.funnel


def write_trail(store, session_id: str, entries: list[tuple[int, str, str, str]], day=DAY):
    """entries are (minute, kind, path, name)."""
    base = datetime(day.year, day.month, day.day, 10, 0, tzinfo=UTC)
    store.set_json(
        trail_key("site-1", day, session_id),
        [
            [(base + timedelta(minutes=m)).isoformat(), kind, path, name]
            for m, kind, path, name in entries
        ],
    )


def page(minute: int, path: str) -> tuple[int, str, str, str]:
    return (minute, "pageview", path, "")


def event(minute: int, name: str) -> tuple[int, str, str, str]:
    return (minute, "custom", "/", name)


# --- Validation Tests ---


class TestParseSteps:
    """Tests for step validation."""

    def test_valid_steps(self) -> None:
        steps, errors = parse_steps(SIGNUP_STEPS)
        assert errors == []
        assert [s.type for s in steps] == [StepType.PAGE, StepType.PAGE, StepType.EVENT]
        assert steps[1].label == "Pricing"
        assert steps[0].label == "/"

    def test_one_step_is_too_few(self) -> None:
        _, errors = parse_steps([{"type": "page", "value": "/"}])
        assert errors[0].code == "too_few_steps"
        assert errors[0].message == "At least 2 steps required"

    def test_eleven_steps_is_too_many(self) -> None:
        _, errors = parse_steps([{"type": "page", "value": f"/{i}"} for i in range(11)])
        assert errors[0].code == "too_many_steps"

    def test_ten_steps_allowed(self) -> None:
        _, errors = parse_steps([{"type": "page", "value": f"/{i}"} for i in range(10)])
        assert errors == []

    def test_configured_limits(self) -> None:
        _, errors = parse_steps(SIGNUP_STEPS, FunnelConfig(min_steps=2, max_steps=2))
        assert errors[0].code == "too_many_steps"

    def test_invalid_step_type(self) -> None:
        _, errors = parse_steps([{"type": "page", "value": "/"}, {"type": "url", "value": "/x"}])
        assert errors[0].code == "invalid_step_type"

    def test_blank_value(self) -> None:
        _, errors = parse_steps([{"type": "page", "value": "/"}, {"type": "event", "value": " "}])
        assert errors[0].code == "missing_field"

    def test_not_a_list(self) -> None:
        _, errors = parse_steps("step1,step2")
        assert errors[0].code == "too_few_steps"


# --- CRUD Tests ---


class TestFunnelDefinitions:
    """Tests for create/get/list/update/delete."""

    def test_create_and_get(self, store, clock) -> None:
        funnel = create(store, clock)
        out = run_get(GetFunnelInput(site_id="site-1", funnel_id=funnel.id), store=store)
        assert out.funnel == funnel
        assert out.funnel.created_at == NOW

    def test_create_default_name(self, store, clock) -> None:
        assert create(store, clock, name="  ").name == "Untitled funnel"

    def test_create_requires_site(self, store, clock) -> None:
        out = run_create(CreateFunnelInput(site_id="", name="x", steps=SIGNUP_STEPS), store=store)
        assert out.success is False
        assert out.errors[0].field_name == "site_id"

    def test_create_rejects_bad_steps(self, store) -> None:
        out = run_create(CreateFunnelInput(site_id="site-1", name="x", steps=[]), store=store)
        assert out.success is False
        assert store.list() == []

    def test_list_in_creation_order(self, store, clock) -> None:
        first = create(store, clock, name="First")
        clock.advance(minutes=1)
        second = create(store, clock, name="Second")
        create_other = run_create(
            CreateFunnelInput(site_id="site-2", name="Other", steps=SIGNUP_STEPS), store=store
        )
        assert create_other.success

        out = run_list(ListFunnelsInput(site_id="site-1"), store=store)
        assert [f.id for f in out.funnels] == [first.id, second.id]

    def test_update_name_keeps_steps(self, store, clock) -> None:
        funnel = create(store, clock)
        clock.advance(minutes=5)
        out = run_update(
            UpdateFunnelInput(site_id="site-1", funnel_id=funnel.id, name="Renamed"),
            store=store,
            time_port=clock,
        )
        assert out.funnel.name == "Renamed"
        assert out.funnel.steps == funnel.steps
        assert out.funnel.updated_at == NOW + timedelta(minutes=5)

    def test_update_validates_steps(self, store, clock) -> None:
        funnel = create(store, clock)
        out = run_update(
            UpdateFunnelInput(site_id="site-1", funnel_id=funnel.id, steps=[{"type": "page"}]),
            store=store,
        )
        assert out.success is False
        stored = run_get(GetFunnelInput("site-1", funnel.id), store=store).funnel
        assert stored.steps == funnel.steps

    def test_update_missing(self, store) -> None:
        out = run_update(UpdateFunnelInput(site_id="site-1", funnel_id="nope"), store=store)
        assert out.errors[0].code == "not_found"

    def test_delete(self, store, clock) -> None:
        funnel = create(store, clock)
        assert run_delete(DeleteFunnelInput("site-1", funnel.id), store=store).deleted is True
        assert run_get(GetFunnelInput("site-1", funnel.id), store=store).errors[0].code == "not_found"
        assert run_delete(DeleteFunnelInput("site-1", funnel.id), store=store).success is False

    def test_other_site_cannot_read(self, store, clock) -> None:
        funnel = create(store, clock)
        out = run_get(GetFunnelInput(site_id="site-2", funnel_id=funnel.id), store=store)
        assert out.success is False


# --- Matching Tests ---


class TestMatching:
    """Tests for step matching and the per-session state machine."""

    STEPS = (
        FunnelStep(StepType.PAGE, "/"),
        FunnelStep(StepType.PAGE, "/pricing"),
        FunnelStep(StepType.EVENT, "signup"),
    )

    def _entries(self, *items):
        return [[f"2026-01-14T10:{m:02d}:00+00:00", k, p, n] for m, k, p, n in items]

    def test_path_wildcard(self) -> None:
        assert path_matches("/blog/*", "/blog/post-1")
        assert path_matches("/blog/*", "/blog/")
        assert not path_matches("/blog/*", "/blogroll")
        assert not path_matches("/blog", "/blog/post-1")

    def test_full_path(self) -> None:
        entries = self._entries(page(0, "/"), page(1, "/pricing"), event(2, "signup"))
        assert furthest_step(entries, self.STEPS) == 2

    def test_unrelated_activity_skipped(self) -> None:
        entries = self._entries(page(0, "/"), page(1, "/about"), page(2, "/pricing"))
        assert furthest_step(entries, self.STEPS) == 1

    def test_out_of_order_does_not_advance(self) -> None:
        entries = self._entries(page(0, "/pricing"), page(1, "/"), event(2, "signup"))
        assert furthest_step(entries, self.STEPS) == 0

    def test_entries_sorted_before_matching(self) -> None:
        entries = self._entries(event(2, "signup"), page(1, "/pricing"), page(0, "/"))
        assert furthest_step(entries, self.STEPS) == 2

    def test_event_step_ignores_pageviews(self) -> None:
        steps = (FunnelStep(StepType.PAGE, "/"), FunnelStep(StepType.EVENT, "/pricing"))
        entries = self._entries(page(0, "/"), page(1, "/pricing"))
        assert furthest_step(entries, steps) == 0

    def test_no_match(self) -> None:
        assert furthest_step(self._entries(page(0, "/about")), self.STEPS) == -1

    def test_step_counts_non_increasing(self) -> None:
        counts = step_counts([2, 1, 0, 0, -1, 2], 3)
        assert counts == [5, 3, 2]
        assert all(a >= b for a, b in zip(counts, counts[1:]))


# --- Evaluation Tests ---


class TestEvaluate:
    """Tests for run_evaluate."""

    def test_conversion_and_dropoff(self, store, clock) -> None:
        funnel = create(store, clock)
        write_trail(store, "a", [page(0, "/"), page(1, "/pricing"), event(2, "signup")])
        write_trail(store, "b", [page(0, "/"), page(3, "/pricing")])
        write_trail(store, "c", [page(0, "/")])
        write_trail(store, "d", [page(0, "/pricing"), page(1, "/"), event(2, "signup")])
        write_trail(store, "e", [page(0, "/about")])

        out = run_evaluate(EvaluateFunnelInput(funnel=funnel, start=DAY, end=DAY), store=store)

        assert out.success
        assert out.sessions == 5
        assert [s.count for s in out.steps] == [4, 2, 1]
        assert [s.conversion_rate for s in out.steps] == [100.0, 50.0, 25.0]
        assert [s.dropoff for s in out.steps] == [0, 2, 1]
        assert [s.dropoff_rate for s in out.steps] == [0.0, 50.0, 50.0]
        assert [s.name for s in out.steps] == ["/", "Pricing", "signup"]
        assert out.overall_conversion == 25.0

    def test_session_spanning_midnight(self, store, clock) -> None:
        funnel = create(store, clock)
        write_trail(store, "late", [page(0, "/")], day=DAY)
        write_trail(store, "late", [page(0, "/pricing")], day=DAY + timedelta(days=1))

        out = run_evaluate(
            EvaluateFunnelInput(funnel=funnel, start=DAY, end=DAY + timedelta(days=1)),
            store=store,
        )
        assert out.sessions == 1
        assert [s.count for s in out.steps] == [1, 1, 0]

    def test_outside_range_not_counted(self, store, clock) -> None:
        funnel = create(store, clock)
        write_trail(store, "old", [page(0, "/")], day=DAY - timedelta(days=3))
        out = run_evaluate(EvaluateFunnelInput(funnel=funnel, start=DAY, end=DAY), store=store)
        assert out.sessions == 0
        assert [s.count for s in out.steps] == [0, 0, 0]
        assert out.overall_conversion == 0.0

    def test_inverted_range(self, store, clock) -> None:
        funnel = create(store, clock)
        out = run_evaluate(
            EvaluateFunnelInput(funnel=funnel, start=DAY, end=DAY - timedelta(days=1)),
            store=store,
        )
        assert out.success is False
        assert out.errors[0].code == "invalid_range"

    def test_dispatcher(self, store, clock) -> None:
        create(store, clock)
        assert len(run(ListFunnelsInput(site_id="site-1"), store=store).funnels) == 1
        with pytest.raises(ValueError, match="Unknown input type"):
            run(None)
