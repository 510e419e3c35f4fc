"""
Goals component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

# --- Enums ---


class Comparison(str, Enum):
    """Direction in which a goal is met."""

    GTE = "gte"
    LTE = "lte"


class GoalPeriod(str, Enum):
    """Calendar window a goal is measured over."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


# --- Validation Error ---


@dataclass(frozen=True)
class GoalValidationError:
    """Goal validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Domain ---


@dataclass(frozen=True)
class Goal:
    """A stored goal. `target` is at least 1."""

    id: str
    site_id: str
    name: str
    metric: str
    target: int
    comparison: Comparison
    period: GoalPeriod
    notify_on_complete: bool
    created_at: datetime
    last_value: float | None = None
    completed_at: datetime | None = None
    completed_for: date | None = None
    updated_at: datetime | None = None


# --- Input Models ---


@dataclass(frozen=True)
class CreateGoalInput:
    """Define a goal; unset fields take defaults, `target` is clamped to >= 1."""

    site_id: str
    name: str | None = None
    metric: str | None = None
    target: object = None
    period: str | None = None
    comparison: str | None = None
    notify_on_complete: bool = False


@dataclass(frozen=True)
class UpdateGoalInput:
    """Partial update; None leaves a field unchanged."""

    site_id: str
    goal_id: str
    name: str | None = None
    metric: str | None = None
    target: object = None
    period: str | None = None
    comparison: str | None = None
    notify_on_complete: bool | None = None


@dataclass(frozen=True)
class GetGoalInput:
    site_id: str
    goal_id: str


@dataclass(frozen=True)
class ListGoalsInput:
    site_id: str


@dataclass(frozen=True)
class DeleteGoalInput:
    site_id: str
    goal_id: str


@dataclass(frozen=True)
class CheckGoalsInput:
    """Evaluate every goal of a site against its current period."""

    site_id: str
    today: date | None = None


# --- Output Models ---


@dataclass(frozen=True)
class GoalEvaluation:
    """Result of comparing a value against a goal."""

    current_value: float
    progress: float
    is_complete: bool


@dataclass(frozen=True)
class GoalProgress:
    """A goal with its evaluation over the current period."""

    goal: Goal
    evaluation: GoalEvaluation
    start: date
    end: date


@dataclass(frozen=True)
class GoalOutput:
    goal: Goal | None = None
    errors: list[GoalValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class GoalListOutput:
    goals: tuple[Goal, ...] = ()
    errors: list[GoalValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class DeleteGoalOutput:
    deleted: bool = False
    errors: list[GoalValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class CheckGoalsOutput:
    """Goals with progress; `notified` lists goal ids notified this run."""

    goals: tuple[GoalProgress, ...] = ()
    notified: tuple[str, ...] = ()
    errors: list[GoalValidationError] = field(default_factory=list)
    success: bool = True
