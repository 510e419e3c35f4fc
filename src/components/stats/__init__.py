"""
Stats component - Range queries over daily rollups.
"""

from .component import (
    DEFAULT_CONFIG,
    DEFAULT_METRICS,
    DIMENSIONS,
    METRICS,
    PERIODS,
    Dimension,
    StatsConfig,
    apply_filters,
    bounce_rate,
    breakdown_rows,
    filter_matches,
    filtered_metric_values,
    load_rollups,
    metric_values,
    months_back,
    parse_filters,
    ratio,
    run,
    run_query,
    run_resolve_period,
    run_summary,
    summarize,
    validate_range,
)
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

__all__ = [
    # Entry points
    "run",
    "run_query",
    "run_resolve_period",
    "run_summary",
    # Functions
    "apply_filters",
    "bounce_rate",
    "breakdown_rows",
    "filter_matches",
    "filtered_metric_values",
    "load_rollups",
    "metric_values",
    "months_back",
    "parse_filters",
    "ratio",
    "summarize",
    "validate_range",
    # Config
    "DEFAULT_CONFIG",
    "DEFAULT_METRICS",
    "DIMENSIONS",
    "METRICS",
    "PERIODS",
    "Dimension",
    "StatsConfig",
    # Models
    "PeriodOutput",
    "ResolvePeriodInput",
    "StatsFilter",
    "StatsQueryInput",
    "StatsQueryOutput",
    "StatsSummaryInput",
    "StatsSummaryOutput",
    "StatsValidationError",
]
