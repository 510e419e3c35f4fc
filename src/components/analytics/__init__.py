"""
Analytics component - Event ingestion and daily rollups.
"""

from ._impl import (
    AnalyticsIngestionService,
    DefaultTimePort,
    IngestionConfig,
    ReplayGuard,
    RetentionService,
    RollupRepository,
    SessionTrailStore,
    VisitorMarkerStore,
    create_analytics_ingestion_service,
    replay_fingerprint,
)
from ._rollup import (
    ROLLUP_SCHEMA,
    DailyRollup,
    FieldKind,
    FoldRules,
    combine,
    combine_all,
    combine_field,
    contribution,
    fold,
    from_json,
    to_json,
)
from .component import (
    run,
    run_get_rollup,
    run_ingest,
    run_ingest_batch,
    run_purge,
)
from .models import (
    AnalyticsValidationError,
    GetRollupInput,
    IngestBatchInput,
    IngestBatchOutput,
    IngestEventInput,
    IngestOutput,
    PurgeInput,
    PurgeOutput,
    RollupOutput,
)
from .ports import EventSinkPort, RateLimiterPort

__all__ = [
    # Entry points
    "run",
    "run_get_rollup",
    "run_ingest",
    "run_ingest_batch",
    "run_purge",
    # Input models
    "GetRollupInput",
    "IngestBatchInput",
    "IngestEventInput",
    "PurgeInput",
    # Output models
    "AnalyticsValidationError",
    "IngestBatchOutput",
    "IngestOutput",
    "PurgeOutput",
    "RollupOutput",
    # Rollup schema
    "ROLLUP_SCHEMA",
    "DailyRollup",
    "FieldKind",
    "FoldRules",
    "combine",
    "combine_all",
    "combine_field",
    "contribution",
    "fold",
    "from_json",
    "to_json",
    # Ports
    "EventSinkPort",
    "RateLimiterPort",
    # Services
    "AnalyticsIngestionService",
    "DefaultTimePort",
    "IngestionConfig",
    "ReplayGuard",
    "RetentionService",
    "RollupRepository",
    "SessionTrailStore",
    "VisitorMarkerStore",
    "create_analytics_ingestion_service",
    "replay_fingerprint",
]
