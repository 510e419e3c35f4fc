"""
Funnels component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

# --- Enums ---


class StepType(str, Enum):
    """What a funnel step matches against."""

    PAGE = "page"
    EVENT = "event"


# --- Validation Error ---


@dataclass(frozen=True)
class FunnelValidationError:
    """Funnel validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Domain ---


@dataclass(frozen=True)
class FunnelStep:
    """One ordered step: a page path (exact or `prefix/*`) or an event name."""

    type: StepType
    value: str
    name: str | None = None

    @property
    def label(self) -> str:
        return self.name or self.value


@dataclass(frozen=True)
class FunnelDefinition:
    """A stored funnel."""

    id: str
    site_id: str
    name: str
    steps: tuple[FunnelStep, ...]
    created_at: datetime
    updated_at: datetime | None = None


# --- Input Models ---


@dataclass(frozen=True)
class CreateFunnelInput:
    """Define a new funnel; steps are raw `{type, value, name?}` mappings."""

    site_id: str
    name: str | None
    steps: list[dict[str, Any]]


@dataclass(frozen=True)
class UpdateFunnelInput:
    """Rename a funnel and/or replace its steps."""

    site_id: str
    funnel_id: str
    name: str | None = None
    steps: list[dict[str, Any]] | None = None


@dataclass(frozen=True)
class GetFunnelInput:
    site_id: str
    funnel_id: str


@dataclass(frozen=True)
class ListFunnelsInput:
    site_id: str


@dataclass(frozen=True)
class DeleteFunnelInput:
    site_id: str
    funnel_id: str


@dataclass(frozen=True)
class EvaluateFunnelInput:
    """Evaluate a funnel over an inclusive date range."""

    funnel: FunnelDefinition
    start: date
    end: date


# --- Output Models ---


@dataclass(frozen=True)
class FunnelOutput:
    """Output carrying one funnel."""

    funnel: FunnelDefinition | None = None
    errors: list[FunnelValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class FunnelListOutput:
    """Funnels for a site, oldest first."""

    funnels: tuple[FunnelDefinition, ...] = ()
    errors: list[FunnelValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class DeleteFunnelOutput:
    deleted: bool = False
    errors: list[FunnelValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class FunnelStepResult:
    """Sessions reaching a step, relative to the first step."""

    index: int
    name: str
    count: int
    conversion_rate: float
    dropoff: int
    dropoff_rate: float


@dataclass(frozen=True)
class FunnelEvaluationOutput:
    """Per-step counts for a funnel over a range."""

    funnel_id: str = ""
    sessions: int = 0
    steps: tuple[FunnelStepResult, ...] = ()
    overall_conversion: float = 0.0
    errors: list[FunnelValidationError] = field(default_factory=list)
    success: bool = True
