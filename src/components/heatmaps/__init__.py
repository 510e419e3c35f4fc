"""
Heatmaps component - Click and scroll density aggregation.
"""

from .component import (
    DEFAULT_CONFIG,
    HeatmapConfig,
    HeatmapSink,
    all_bands,
    band_for,
    click_contribution,
    density_cells,
    grid_cell,
    merge_click_buckets,
    merge_scroll_buckets,
    run,
    run_list_pages,
    run_query_clicks,
    run_query_scroll,
    run_record_click,
    run_record_scroll,
    scroll_contribution,
    scroll_reach,
)
from .models import (
    ClickDensityOutput,
    ClickPoint,
    DensityCell,
    HeatmapPage,
    HeatmapPagesInput,
    HeatmapPagesOutput,
    HeatmapQueryInput,
    HeatmapValidationError,
    RecordClickInput,
    RecordOutput,
    RecordScrollInput,
    ScrollDensityOutput,
)

__all__ = [
    # Entry points
    "run",
    "run_list_pages",
    "run_query_clicks",
    "run_query_scroll",
    "run_record_click",
    "run_record_scroll",
    # Bucket functions
    "all_bands",
    "band_for",
    "click_contribution",
    "density_cells",
    "grid_cell",
    "merge_click_buckets",
    "merge_scroll_buckets",
    "scroll_contribution",
    "scroll_reach",
    # Config / sink
    "DEFAULT_CONFIG",
    "HeatmapConfig",
    "HeatmapSink",
    # Models
    "ClickDensityOutput",
    "ClickPoint",
    "DensityCell",
    "HeatmapPage",
    "HeatmapPagesInput",
    "HeatmapPagesOutput",
    "HeatmapQueryInput",
    "HeatmapValidationError",
    "RecordClickInput",
    "RecordOutput",
    "RecordScrollInput",
    "ScrollDensityOutput",
]
