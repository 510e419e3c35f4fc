"""
Heatmaps component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date

# --- Validation Error ---


@dataclass(frozen=True)
class HeatmapValidationError:
    """Heatmap validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Input Models ---


@dataclass(frozen=True)
class RecordClickInput:
    """One click at percentage coordinates."""

    site_id: str
    path: str
    day: date
    x: float
    y: float
    viewport: str
    element: str | None = None


@dataclass(frozen=True)
class RecordScrollInput:
    """One session's maximum scroll depth on a page."""

    site_id: str
    path: str
    day: date
    max_depth: float
    fold: float | None = None


@dataclass(frozen=True)
class HeatmapQueryInput:
    """Range query for one page."""

    site_id: str
    path: str
    start: date
    end: date


@dataclass(frozen=True)
class HeatmapPagesInput:
    """List pages with heatmap data in a range."""

    site_id: str
    start: date
    end: date


# --- Output Models ---


@dataclass(frozen=True)
class RecordOutput:
    """Output for a record operation."""

    errors: list[HeatmapValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ClickPoint:
    """Stored click point."""

    x: float
    y: float
    element: str | None
    viewport: str


@dataclass(frozen=True)
class DensityCell:
    """One grid cell of the click density map."""

    x: float
    y: float
    count: int
    intensity: float


@dataclass(frozen=True)
class ClickDensityOutput:
    """Merged click heatmap for a page and range."""

    total_clicks: int
    points: tuple[ClickPoint, ...] = ()
    viewports: dict[str, int] = field(default_factory=dict)
    elements: dict[str, int] = field(default_factory=dict)
    cells: tuple[DensityCell, ...] = ()
    errors: list[HeatmapValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ScrollDensityOutput:
    """Merged scroll heatmap for a page and range."""

    total_sessions: int
    bands: dict[str, int] = field(default_factory=dict)
    reach: dict[str, float] = field(default_factory=dict)
    max_depths: tuple[float, ...] = ()
    avg_max_depth: float = 0.0
    avg_fold: float = 0.0
    errors: list[HeatmapValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class HeatmapPage:
    """Page with heatmap data."""

    path: str
    clicks: int
    scroll_sessions: int


@dataclass(frozen=True)
class HeatmapPagesOutput:
    """Pages with heatmap data, busiest first."""

    pages: tuple[HeatmapPage, ...] = ()
    errors: list[HeatmapValidationError] = field(default_factory=list)
    success: bool = True
