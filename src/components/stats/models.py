"""
Stats component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

# --- Validation Error ---


@dataclass(frozen=True)
class StatsValidationError:
    """Stats validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Input Models ---


@dataclass(frozen=True)
class StatsFilter:
    """`property==value`; a value ending in `/*` matches by prefix."""

    property: str
    value: str


@dataclass(frozen=True)
class ResolvePeriodInput:
    """Resolve a period token against today's UTC date."""

    period: str
    today: date
    start: date | None = None
    end: date | None = None


@dataclass(frozen=True)
class StatsQueryInput:
    """Range query with optional breakdown and filters."""

    site_id: str
    start: date
    end: date
    metrics: tuple[str, ...] = ()
    breakdown: str | None = None
    filters: tuple[StatsFilter, ...] = ()


@dataclass(frozen=True)
class StatsSummaryInput:
    """Dashboard summary for a range."""

    site_id: str
    start: date
    end: date


# --- Output Models ---


@dataclass(frozen=True)
class PeriodOutput:
    """Resolved inclusive date window."""

    start: date | None = None
    end: date | None = None
    errors: list[StatsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class StatsQueryOutput:
    """`results` rows plus an echo of the resolved query."""

    results: list[dict[str, Any]] = field(default_factory=list)
    totals: dict[str, float] = field(default_factory=dict)
    query: dict[str, Any] = field(default_factory=dict)
    errors: list[StatsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class StatsSummaryOutput:
    """Dashboard-shaped summary."""

    summary: dict[str, Any] = field(default_factory=dict)
    errors: list[StatsValidationError] = field(default_factory=list)
    success: bool = True
