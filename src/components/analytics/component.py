"""
Analytics component - Event ingestion and daily rollups.

Ingests tracking payloads, folds them into per-site, per-day rollups,
and serves rollup reads and retention operations.

Guarantees:
- No raw IP, user agent or other PII is stored
- Bot traffic is ignored with a success-shaped outcome
- Rollup fields merge associatively and commutatively
- Counters never decrease within a day
"""

from __future__ import annotations

from typing import Any

from src.core.keys import is_valid_site_id
from src.core.ports.kv import KeyValueStorePort
from src.core.ports.time import TimePort

from ._impl import (
    AnalyticsIngestionService,
    RetentionService,
    RollupRepository,
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

# --- Component Entry Points ---


def run_ingest(
    inp: IngestEventInput,
    *,
    service: AnalyticsIngestionService,
) -> IngestOutput:
    """
    Ingest one tracking payload.

    Raises ValidationError / NotFoundError / RateLimitError for
    request-level failures; per-event outcomes are in the output.
    """
    return service.ingest(
        data=inp.data,
        headers=inp.headers,
        client_ip=inp.client_ip,
        client_key=inp.client_key,
    )


def run_ingest_batch(
    inp: IngestBatchInput,
    *,
    service: AnalyticsIngestionService,
) -> IngestBatchOutput:
    """Ingest a batch of payloads for one site."""
    return service.ingest_batch(
        site_id=inp.site_id,
        events=inp.events,
        headers=inp.headers,
        client_ip=inp.client_ip,
        client_key=inp.client_key,
    )


def run_get_rollup(
    inp: GetRollupInput,
    *,
    store: KeyValueStorePort,
) -> RollupOutput:
    """Read the rollup for one (site, day)."""
    return RollupOutput(rollup=RollupRepository(store).get(inp.site_id, inp.day))


def run_purge(
    inp: PurgeInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
) -> PurgeOutput:
    """Delete a site's data, or only its dated aggregates before a date."""
    if not is_valid_site_id(inp.site_id):
        return PurgeOutput(
            deleted_keys=0,
            errors=[AnalyticsValidationError("invalid_site_id", "Invalid site ID", "site_id")],
            success=False,
        )
    retention = RetentionService(store, time_port)
    if inp.before is None:
        deleted = retention.delete_site_data(inp.site_id)
    else:
        deleted = retention.purge_before(inp.site_id, inp.before)
    return PurgeOutput(deleted_keys=deleted)


def run(inp: Any, **kwargs: Any) -> Any:
    """Dispatch to the entry point matching the input type."""
    if isinstance(inp, IngestEventInput):
        return run_ingest(inp, **kwargs)
    if isinstance(inp, IngestBatchInput):
        return run_ingest_batch(inp, **kwargs)
    if isinstance(inp, GetRollupInput):
        return run_get_rollup(inp, **kwargs)
    if isinstance(inp, PurgeInput):
        return run_purge(inp, **kwargs)
    raise ValueError(f"Unknown input type: {type(inp)}")
