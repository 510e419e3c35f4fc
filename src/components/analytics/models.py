"""
Analytics component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from ._rollup import DailyRollup

# --- Validation Error ---


@dataclass(frozen=True)
class AnalyticsValidationError:
    """Analytics validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Input Models ---


@dataclass(frozen=True)
class IngestEventInput:
    """Input for ingesting one raw tracking payload."""

    data: dict[str, Any]
    headers: dict[str, str]
    client_ip: str
    client_key: str | None = None


@dataclass(frozen=True)
class IngestBatchInput:
    """Input for a batch of payloads sharing one request."""

    site_id: str
    events: list[dict[str, Any]]
    headers: dict[str, str]
    client_ip: str
    client_key: str | None = None


@dataclass(frozen=True)
class GetRollupInput:
    """Input for reading one day's rollup."""

    site_id: str
    day: date


@dataclass(frozen=True)
class PurgeInput:
    """Input for retention purge. `before=None` deletes everything for the site."""

    site_id: str
    before: date | None = None


# --- Output Models ---


@dataclass(frozen=True)
class IngestOutput:
    """Output for one ingested payload."""

    accepted: bool
    ignored: bool = False
    duplicate: bool = False
    errors: list[AnalyticsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class IngestBatchOutput:
    """Output for a batch; rejected events do not fail the batch."""

    processed: int
    ignored: int
    rejected: int
    errors: list[AnalyticsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class RollupOutput:
    """Output for a rollup read."""

    rollup: DailyRollup
    errors: list[AnalyticsValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class PurgeOutput:
    """Output for retention purge."""

    deleted_keys: int
    errors: list[AnalyticsValidationError] = field(default_factory=list)
    success: bool = True
