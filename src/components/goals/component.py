"""
Goals component - Metric targets over calendar periods.

Key behaviors:
- Target is clamped to at least 1 when a goal is defined or updated
- gte goals are complete at value >= target, lte goals at value <= target;
  a value equal to the target is complete either way
- A goal with notify_on_complete notifies once per period, the first
  time it is found complete in that period
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import uuid4

from src.components.analytics import DailyRollup, combine_all
from src.components.stats import bounce_rate, load_rollups, ratio
from src.core.keys import goal_key, goal_prefix
from src.rules.models import Rules

from .models import (
    CheckGoalsInput,
    CheckGoalsOutput,
    Comparison,
    CreateGoalInput,
    DeleteGoalInput,
    DeleteGoalOutput,
    GetGoalInput,
    Goal,
    GoalEvaluation,
    GoalListOutput,
    GoalOutput,
    GoalPeriod,
    GoalProgress,
    GoalValidationError,
    ListGoalsInput,
    UpdateGoalInput,
)
from .ports import GoalNotifierPort, KeyValueStorePort, TimePort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class GoalConfig:
    """Goal definition rules."""

    metrics: tuple[str, ...] = (
        "pageviews",
        "visitors",
        "sessions",
        "bounce_rate",
        "avg_session_duration",
        "pages_per_session",
        "events",
    )
    periods: tuple[str, ...] = field(default_factory=lambda: tuple(p.value for p in GoalPeriod))
    default_target: int = 1000
    default_metric: str = "pageviews"
    default_period: str = "monthly"
    max_session_duration_seconds: float = 7200
    fanout_workers: int = 8

    @classmethod
    def from_rules(cls, rules: Rules) -> GoalConfig:
        return cls(
            metrics=tuple(rules.goals.metrics),
            periods=tuple(rules.goals.periods),
            default_target=rules.goals.default_target,
            max_session_duration_seconds=rules.ingest.max_session_duration_seconds,
            fanout_workers=rules.query.fanout_workers,
        )


DEFAULT_CONFIG = GoalConfig()


class _SystemTime:
    def now_utc(self) -> datetime:
        return datetime.now(UTC)


# --- Pure Functions ---


def clamp_target(raw: Any, default: int = 1000) -> int:
    """Parse a target; unparseable or zero becomes the default, then >= 1."""
    try:
        value = int(float(raw))
    except (TypeError, ValueError):
        value = 0
    return max(1, value or default)


def goal_date_range(period: GoalPeriod | str, today: date) -> tuple[date, date]:
    """Calendar-aligned window for the period containing today."""
    period = GoalPeriod(period)
    if period == GoalPeriod.DAILY:
        start = today
    elif period == GoalPeriod.WEEKLY:
        start = today - timedelta(days=today.weekday())
    elif period == GoalPeriod.MONTHLY:
        start = today.replace(day=1)
    else:
        start = today.replace(month=1, day=1)
    return start, today


def goal_value(
    metric: str,
    daily: list[tuple[date, DailyRollup]],
    config: GoalConfig = DEFAULT_CONFIG,
) -> float:
    """Current value of a goal metric over per-day rollups."""
    merged = combine_all([rollup for _, rollup in daily])
    if metric == "pageviews":
        return merged.pageviews
    if metric == "visitors":
        return sum(r.unique_visitors for _, r in daily)
    if metric == "sessions":
        return sum(r.unique_sessions for _, r in daily)
    if metric == "bounce_rate":
        return bounce_rate(merged)
    if metric == "avg_session_duration":
        return ratio(*merged.session_duration(config.max_session_duration_seconds))
    if metric == "pages_per_session":
        return ratio(*merged.pages_per_session, digits=2)
    if metric == "events":
        return merged.total_events
    raise ValueError(f"Unknown goal metric: {metric}")


def evaluate(goal: Goal, current_value: float) -> GoalEvaluation:
    """Progress percentage and completion of a goal at a value."""
    target = goal.target
    if goal.comparison == Comparison.LTE:
        is_complete = current_value <= target
        if is_complete:
            progress = 100.0
        else:
            progress = round(target / current_value * 100, 1) if current_value > 0 else 0.0
    else:
        is_complete = current_value >= target
        progress = min(100.0, round(current_value / target * 100, 1)) if target > 0 else 0.0
    return GoalEvaluation(current_value=current_value, progress=progress, is_complete=is_complete)


# --- Validation ---


def _choice(
    value: str | None,
    allowed: tuple[str, ...],
    default: str,
    label: str,
    errors: list[GoalValidationError],
) -> str:
    if value is None or value == "":
        return default
    if value not in allowed:
        errors.append(GoalValidationError(f"invalid_{label}", f"Invalid {label}", label))
    return value


def _comparison(value: str | None, errors: list[GoalValidationError]) -> Comparison:
    try:
        return Comparison(value or Comparison.GTE.value)
    except ValueError:
        errors.append(GoalValidationError("invalid_comparison", "Invalid comparison", "comparison"))
        return Comparison.GTE


# --- Serialisation ---


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value else None


def goal_to_json(goal: Goal) -> dict[str, Any]:
    return {
        "id": goal.id,
        "site_id": goal.site_id,
        "name": goal.name,
        "metric": goal.metric,
        "target": goal.target,
        "comparison": goal.comparison.value,
        "period": goal.period.value,
        "notify_on_complete": goal.notify_on_complete,
        "last_value": goal.last_value,
        "completed_at": _iso(goal.completed_at),
        "completed_for": _iso(goal.completed_for),
        "created_at": goal.created_at.isoformat(),
        "updated_at": _iso(goal.updated_at),
    }


def goal_from_json(data: dict[str, Any]) -> Goal:
    completed_at = data.get("completed_at")
    completed_for = data.get("completed_for")
    updated_at = data.get("updated_at")
    return Goal(
        id=data["id"],
        site_id=data["site_id"],
        name=data.get("name") or "",
        metric=data["metric"],
        target=int(data["target"]),
        comparison=Comparison(data.get("comparison", "gte")),
        period=GoalPeriod(data["period"]),
        notify_on_complete=bool(data.get("notify_on_complete", False)),
        last_value=data.get("last_value"),
        completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
        completed_for=date.fromisoformat(completed_for) if completed_for else None,
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
    )


def load_goal(store: KeyValueStorePort, site_id: str, goal_id: str) -> Goal | None:
    data = store.get(goal_key(site_id, goal_id), as_json=True)
    return goal_from_json(data) if data else None


def save_goal(store: KeyValueStorePort, goal: Goal) -> None:
    store.set_json(goal_key(goal.site_id, goal.id), goal_to_json(goal))


def _not_found() -> GoalValidationError:
    return GoalValidationError("not_found", "Goal not found", "goal_id")


# --- Component Entry Points ---


def run_create(
    inp: CreateGoalInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
    config: GoalConfig = DEFAULT_CONFIG,
) -> GoalOutput:
    """Validate and store a new goal."""
    errors: list[GoalValidationError] = []
    if not inp.site_id:
        errors.append(GoalValidationError("missing_field", "Site ID required", "site_id"))
    metric = _choice(inp.metric, config.metrics, config.default_metric, "metric", errors)
    period = _choice(inp.period, config.periods, config.default_period, "period", errors)
    comparison = _comparison(inp.comparison, errors)
    if errors:
        return GoalOutput(errors=errors, success=False)

    goal = Goal(
        id=uuid4().hex,
        site_id=inp.site_id,
        name=(inp.name or "").strip() or f"{metric} goal",
        metric=metric,
        target=clamp_target(inp.target, config.default_target),
        comparison=comparison,
        period=GoalPeriod(period),
        notify_on_complete=bool(inp.notify_on_complete),
        created_at=(time_port or _SystemTime()).now_utc(),
    )
    save_goal(store, goal)
    logger.info("Created goal %s for site %s", goal.id, goal.site_id)
    return GoalOutput(goal=goal)


def run_get(inp: GetGoalInput, *, store: KeyValueStorePort) -> GoalOutput:
    goal = load_goal(store, inp.site_id, inp.goal_id)
    if goal is None:
        return GoalOutput(errors=[_not_found()], success=False)
    return GoalOutput(goal=goal)


def run_list(inp: ListGoalsInput, *, store: KeyValueStorePort) -> GoalListOutput:
    goals = []
    for key in store.list(goal_prefix(inp.site_id)):
        data = store.get(key, as_json=True)
        if data:
            goals.append(goal_from_json(data))
    goals.sort(key=lambda g: (g.created_at, g.id))
    return GoalListOutput(goals=tuple(goals))


def run_update(
    inp: UpdateGoalInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
    config: GoalConfig = DEFAULT_CONFIG,
) -> GoalOutput:
    """
    Apply a partial update.

    Changing what is measured (metric, target, comparison or period)
    clears the completion record so the goal can notify again.
    """
    goal = load_goal(store, inp.site_id, inp.goal_id)
    if goal is None:
        return GoalOutput(errors=[_not_found()], success=False)

    errors: list[GoalValidationError] = []
    metric = _choice(inp.metric, config.metrics, goal.metric, "metric", errors)
    period = _choice(inp.period, config.periods, goal.period.value, "period", errors)
    comparison = (
        _comparison(inp.comparison, errors) if inp.comparison is not None else goal.comparison
    )
    if errors:
        return GoalOutput(errors=errors, success=False)

    target = clamp_target(inp.target, config.default_target) if inp.target is not None else goal.target
    updated = replace(
        goal,
        name=(inp.name.strip() or goal.name) if inp.name is not None else goal.name,
        metric=metric,
        target=target,
        comparison=comparison,
        period=GoalPeriod(period),
        notify_on_complete=(
            goal.notify_on_complete if inp.notify_on_complete is None else bool(inp.notify_on_complete)
        ),
        updated_at=(time_port or _SystemTime()).now_utc(),
    )
    if (updated.metric, updated.target, updated.comparison, updated.period) != (
        goal.metric,
        goal.target,
        goal.comparison,
        goal.period,
    ):
        updated = replace(updated, completed_at=None, completed_for=None)

    save_goal(store, updated)
    return GoalOutput(goal=updated)


def run_delete(inp: DeleteGoalInput, *, store: KeyValueStorePort) -> DeleteGoalOutput:
    key = goal_key(inp.site_id, inp.goal_id)
    if store.get(key) is None:
        return DeleteGoalOutput(errors=[_not_found()], success=False)
    store.delete(key)
    logger.info("Deleted goal %s for site %s", inp.goal_id, inp.site_id)
    return DeleteGoalOutput(deleted=True)


def run_check(
    inp: CheckGoalsInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
    notifier: GoalNotifierPort | None = None,
    config: GoalConfig = DEFAULT_CONFIG,
) -> CheckGoalsOutput:
    """
    Evaluate every goal of a site over its current period.

    Stores each goal's last value; records and notifies the first
    completion in each period.
    """
    now = (time_port or _SystemTime()).now_utc()
    today = inp.today or now.date()
    results: list[GoalProgress] = []
    notified: list[str] = []

    for goal in run_list(ListGoalsInput(site_id=inp.site_id), store=store).goals:
        start, end = goal_date_range(goal.period, today)
        daily = load_rollups(store, goal.site_id, start, end, config.fanout_workers)
        evaluation = evaluate(goal, goal_value(goal.metric, daily, config))

        updated = replace(goal, last_value=evaluation.current_value)
        if evaluation.is_complete and goal.completed_for != start:
            updated = replace(updated, completed_at=now, completed_for=start)
            if goal.notify_on_complete and notifier is not None:
                notifier.goal_completed(goal.site_id, goal.id, goal.name, evaluation.current_value)
                notified.append(goal.id)
        save_goal(store, updated)

        results.append(GoalProgress(goal=updated, evaluation=evaluation, start=start, end=end))

    return CheckGoalsOutput(goals=tuple(results), notified=tuple(notified))


def run(inp: Any, **kwargs: Any) -> Any:
    """Dispatch to the entry point matching the input type."""
    if isinstance(inp, CreateGoalInput):
        return run_create(inp, **kwargs)
    if isinstance(inp, GetGoalInput):
        return run_get(inp, **kwargs)
    if isinstance(inp, ListGoalsInput):
        return run_list(inp, **kwargs)
    if isinstance(inp, UpdateGoalInput):
        return run_update(inp, **kwargs)
    if isinstance(inp, DeleteGoalInput):
        return run_delete(inp, **kwargs)
    if isinstance(inp, CheckGoalsInput):
        return run_check(inp, **kwargs)
    raise ValueError(f"Unknown input type: {type(inp)}")
