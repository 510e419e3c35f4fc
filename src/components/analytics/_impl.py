"""
AnalyticsIngestionService - Write-through ingestion pipeline.

rate limit -> site lookup -> classify -> anonymize -> replay guard ->
fold into the daily rollup, session trail, and downstream sinks.

Key behaviors:
- No raw event is stored; each event is folded and discarded
- Every store write is a read-modify-write of an associative combine
- Concurrent folds on one key may lose an update (accepted undercount);
  there is no internal retry, callers may resend safely
- Replays carrying the same event id (or client timestamp) are dropped
  within the dedupe TTL
- Raw IP and user agent never reach a log line or a stored value
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

from src.core.errors import NotFoundError, RateLimitError, ValidationError
from src.core.keys import (
    dedupe_key,
    rollup_key,
    seen_key,
    site_prefix,
    trail_key,
)
from src.core.ports.kv import KeyValueStorePort
from src.core.ports.sites import SiteDirectoryPort
from src.core.ports.time import TimePort
from src.core.services.analytics_classify import (
    Event,
    EventClassifier,
    EventKind,
    Outcome,
)
from src.core.services.analytics_identity import (
    ConnectionAttributes,
    Identity,
    IdentityService,
)
from src.rules.models import Rules

from ._rollup import (
    DEFAULT_FOLD_RULES,
    DailyRollup,
    FoldRules,
    combine,
    contribution,
    from_json,
    to_json,
)
from .models import (
    AnalyticsValidationError,
    IngestBatchOutput,
    IngestOutput,
)
from .ports import EventSinkPort, RateLimiterPort

logger = logging.getLogger(__name__)


# --- Configuration ---


@dataclass(frozen=True)
class IngestionConfig:
    """Analytics ingestion configuration."""

    dedupe_ttl_seconds: int = 10
    trail_cap: int = 500
    max_batch_size: int = 50
    rate_limit_window_seconds: int = 60
    fold_rules: FoldRules = DEFAULT_FOLD_RULES

    @classmethod
    def from_rules(cls, rules: Rules) -> IngestionConfig:
        ingest = rules.ingest
        return cls(
            dedupe_ttl_seconds=ingest.dedupe_ttl_seconds,
            trail_cap=ingest.trail_cap,
            max_batch_size=ingest.max_batch_size,
            rate_limit_window_seconds=ingest.rate_limit.window_seconds,
            fold_rules=FoldRules(
                max_time_on_page_seconds=ingest.max_time_on_page_seconds,
                max_session_duration_seconds=ingest.max_session_duration_seconds,
                engaged_time_seconds=ingest.engaged_time_seconds,
                engaged_scroll_percent=ingest.engaged_scroll_percent,
            ),
        )


DEFAULT_CONFIG = IngestionConfig()


class DefaultTimePort:
    """Default time port using system time."""

    def now_utc(self) -> datetime:
        return datetime.now(UTC)


# --- Rollup Repository ---


class RollupRepository:
    """Reads and merges DailyRollups in the key-value store."""

    def __init__(self, store: KeyValueStorePort) -> None:
        self._store = store

    def get(self, site_id: str, day: date) -> DailyRollup:
        """Rollup for (site, day); empty when nothing was recorded."""
        return from_json(self._store.get(rollup_key(site_id, day), as_json=True))

    def merge(self, site_id: str, day: date, delta: DailyRollup) -> DailyRollup:
        """Read, combine, write back. Last writer wins on a race."""
        key = rollup_key(site_id, day)
        current = from_json(self._store.get(key, as_json=True))
        updated = combine(current, delta)
        self._store.set_json(key, to_json(updated))
        return updated


# --- Returning Visitor Markers ---


class VisitorMarkerStore:
    """
    Cross-day "seen before" markers.

    Keyed by the rotating returning key, so a marker can only match
    within one retention bucket; stale markers are removed by purge.
    """

    def __init__(self, store: KeyValueStorePort) -> None:
        self._store = store

    def is_returning(self, site_id: str, returning_key: str, day: date) -> bool:
        key = seen_key(site_id, returning_key)
        today = day.isoformat()
        marker = self._store.get(key, as_json=True)
        if not isinstance(marker, dict):
            self._store.set_json(key, {"first_seen": today, "last_seen": today})
            return False

        first_seen = min(str(marker.get("first_seen", today)), today)
        last_seen = max(str(marker.get("last_seen", today)), today)
        if (first_seen, last_seen) != (marker.get("first_seen"), marker.get("last_seen")):
            self._store.set_json(key, {"first_seen": first_seen, "last_seen": last_seen})
        return first_seen < today


# --- Replay Guard ---


def replay_fingerprint(event: Event, identity: Identity, client_ref: str) -> str:
    """
    Fingerprint of an event for replay detection.

    Contains only hashes and event attributes, never raw client data.
    """
    parts = [
        event.kind.value,
        identity.session_id or "anon",
        event.path,
        client_ref,
        event.name or "",
        "" if event.x is None else f"{event.x:.2f}",
        "" if event.y is None else f"{event.y:.2f}",
    ]
    return hashlib.sha256("|".join(parts).encode()).hexdigest()[:32]


class ReplayGuard:
    """
    Drops events already recorded within the TTL window.

    The marker is written only once the event has been folded, so a
    retry after a failed write is not mistaken for a replay.
    """

    def __init__(self, store: KeyValueStorePort, ttl_seconds: int = 10) -> None:
        self._store = store
        self._ttl = ttl_seconds

    def is_replay(self, site_id: str, fingerprint: str, now: datetime) -> bool:
        if self._ttl <= 0:
            return False
        expires = self._store.get(dedupe_key(site_id, fingerprint))
        return expires is not None and datetime.fromisoformat(expires) > now

    def record(self, site_id: str, fingerprint: str, now: datetime) -> None:
        if self._ttl <= 0:
            return
        expires = (now + timedelta(seconds=self._ttl)).isoformat()
        self._store.set(dedupe_key(site_id, fingerprint), expires)


# --- Session Trails ---


class SessionTrailStore:
    """
    Per-session ordered activity used by funnel evaluation.

    A trail is a set of [timestamp, kind, path, name] entries kept sorted;
    merging is a capped union, so order of arrival does not matter.
    """

    def __init__(self, store: KeyValueStorePort, cap: int = 500) -> None:
        self._store = store
        self._cap = cap

    def append(self, event: Event, session_id: str) -> None:
        key = trail_key(event.site_id, event.timestamp.date(), session_id)
        entry = [event.timestamp.isoformat(), event.kind.value, event.path, event.name or ""]
        current = self._store.get(key, as_json=True) or []
        merged = sorted({tuple(e) for e in current} | {tuple(entry)})
        self._store.set_json(key, [list(e) for e in merged[: self._cap]])


# --- Retention ---


def _is_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


class RetentionService:
    """Explicit data-retention and site-deletion operations."""

    def __init__(self, store: KeyValueStorePort, time_port: TimePort | None = None) -> None:
        self._store = store
        self._time = time_port or DefaultTimePort()

    def delete_site_data(self, site_id: str) -> int:
        """Delete every key owned by the site."""
        keys = self._store.list(site_prefix(site_id))
        for key in keys:
            self._store.delete(key)
        logger.info("Deleted %d keys for site %s", len(keys), site_id)
        return len(keys)

    def purge_before(self, site_id: str, before: date) -> int:
        """
        Delete dated aggregates older than `before`.

        Rollups, heatmap buckets and trails are dated by key; seen markers
        by their last_seen; replay markers once expired. Funnel and goal
        definitions are kept.
        """
        prefix = site_prefix(site_id)
        cutoff = before.isoformat()
        now = self._time.now_utc()
        deleted = 0

        for key in self._store.list(prefix):
            rest = key[len(prefix):]
            parts = rest.split(":")
            stale = False
            if len(parts) == 1 and _is_date(parts[0]):
                stale = parts[0] < cutoff
            elif parts[0] in ("clicks", "scroll", "trail") and len(parts) >= 2:
                stale = _is_date(parts[1]) and parts[1] < cutoff
            elif parts[0] == "seen":
                marker = self._store.get(key, as_json=True) or {}
                stale = str(marker.get("last_seen", "")) < cutoff
            elif parts[0] == "dedupe":
                expires = self._store.get(key)
                stale = expires is None or datetime.fromisoformat(expires) <= now

            if stale:
                self._store.delete(key)
                deleted += 1

        logger.info("Purged %d keys before %s for site %s", deleted, cutoff, site_id)
        return deleted


# --- Ingestion Service ---


def _errors_from(result_error: Any) -> list[AnalyticsValidationError]:
    if result_error is None:
        return []
    return [
        AnalyticsValidationError(
            code=result_error.code,
            message=result_error.message,
            field_name=result_error.field_name,
        )
    ]


class AnalyticsIngestionService:
    """
    Analytics ingestion service.

    Request-level failures (missing or unknown site, rate limit, store
    errors) raise; per-event outcomes are returned as IngestOutput.
    """

    def __init__(
        self,
        store: KeyValueStorePort,
        sites: SiteDirectoryPort,
        classifier: EventClassifier,
        identity: IdentityService,
        rate_limiter: RateLimiterPort | None = None,
        time_port: TimePort | None = None,
        config: IngestionConfig | None = None,
        sinks: Iterable[EventSinkPort] = (),
    ) -> None:
        self._sites = sites
        self._classifier = classifier
        self._identity = identity
        self._rate_limiter = rate_limiter
        self._time = time_port or DefaultTimePort()
        self._config = config or DEFAULT_CONFIG
        self._sinks = list(sinks)
        self._rollups = RollupRepository(store)
        self._markers = VisitorMarkerStore(store)
        self._replays = ReplayGuard(store, self._config.dedupe_ttl_seconds)
        self._trails = SessionTrailStore(store, self._config.trail_cap)

    @property
    def rollups(self) -> RollupRepository:
        return self._rollups

    def _check_rate_limit(self, client_key: str | None) -> None:
        if self._rate_limiter is None or not client_key:
            return
        if not self._rate_limiter.check_ingest(client_key):
            window = self._config.rate_limit_window_seconds
            raise RateLimitError(
                retry_after=self._rate_limiter.retry_after(f"ingest:{client_key}", window)
            )

    def _resolve_site(self, site_id: Any) -> tuple[str, str]:
        if not site_id or not isinstance(site_id, str):
            raise ValidationError("Site ID required", code="missing_field", field_name="siteId")
        site = self._sites.get_site(site_id)
        if site is None:
            raise NotFoundError("Invalid site ID", code="unknown_site")
        return site.site_id, site.domain

    def ingest(
        self,
        data: dict[str, Any],
        headers: dict[str, str],
        client_ip: str,
        client_key: str | None = None,
    ) -> IngestOutput:
        """Ingest one payload."""
        self._check_rate_limit(client_key)
        site_id, domain = self._resolve_site(data.get("siteId") or data.get("site_id"))
        return self._ingest_one(data, headers, client_ip, site_id, domain)

    def ingest_batch(
        self,
        site_id: Any,
        events: list[dict[str, Any]],
        headers: dict[str, str],
        client_ip: str,
        client_key: str | None = None,
    ) -> IngestBatchOutput:
        """Ingest a batch; one rate-limit slot per request."""
        self._check_rate_limit(client_key)
        resolved_id, domain = self._resolve_site(site_id)
        if not isinstance(events, list) or not events:
            raise ValidationError("Events required", code="missing_field", field_name="events")
        if len(events) > self._config.max_batch_size:
            raise ValidationError(
                f"Batch exceeds {self._config.max_batch_size} events",
                code="batch_too_large",
                field_name="events",
            )

        processed = ignored = rejected = 0
        errors: list[AnalyticsValidationError] = []
        for item in events:
            if not isinstance(item, dict):
                rejected += 1
                errors.append(
                    AnalyticsValidationError("invalid_event", "Event must be an object", "events")
                )
                continue
            out = self._ingest_one(item, headers, client_ip, resolved_id, domain)
            if out.accepted:
                processed += 1
            elif out.ignored or out.duplicate:
                ignored += 1
            else:
                rejected += 1
                errors.extend(out.errors)

        return IngestBatchOutput(
            processed=processed,
            ignored=ignored,
            rejected=rejected,
            errors=errors,
            success=rejected == 0,
        )

    def _ingest_one(
        self,
        data: dict[str, Any],
        headers: dict[str, str],
        client_ip: str,
        site_id: str,
        domain: str,
    ) -> IngestOutput:
        now = self._time.now_utc()
        result = self._classifier.classify(data, headers, site_id, domain, now)

        if result.outcome == Outcome.IGNORED:
            logger.debug("Ignored %s event for site %s", result.reason, site_id)
            return IngestOutput(accepted=False, ignored=True)
        if result.outcome == Outcome.REJECTED or result.event is None:
            errors = _errors_from(result.error)
            logger.info(
                "Rejected event for site %s: %s",
                site_id,
                errors[0].code if errors else "unknown",
            )
            return IngestOutput(accepted=False, errors=errors, success=False)

        event = result.event
        user_agent = {k.lower(): v for k, v in headers.items()}.get("user-agent", "")
        identity = self._identity.anonymize(
            ConnectionAttributes(ip=client_ip, user_agent=user_agent, site_id=site_id),
            event.timestamp,
        )

        client_ref = event.event_id or self._client_timestamp(data)
        fingerprint = replay_fingerprint(event, identity, client_ref) if client_ref else None
        if fingerprint and self._replays.is_replay(site_id, fingerprint, now):
            return IngestOutput(accepted=False, duplicate=True)

        if event.kind != EventKind.HEARTBEAT:
            self._fold(event, identity)

        for sink in self._sinks:
            sink.accept(event, identity, now)

        if fingerprint:
            self._replays.record(site_id, fingerprint, now)

        return IngestOutput(accepted=True)

    @staticmethod
    def _client_timestamp(data: dict[str, Any]) -> str | None:
        value = data.get("timestamp", data.get("ts"))
        return None if value is None else str(value)

    def _fold(self, event: Event, identity: Identity) -> None:
        day = event.timestamp.date()
        is_returning = None
        if event.kind == EventKind.PAGEVIEW and identity.returning_key:
            is_returning = self._markers.is_returning(event.site_id, identity.returning_key, day)

        delta = contribution(event, identity, is_returning, self._config.fold_rules)
        self._rollups.merge(event.site_id, day, delta)

        if identity.session_id and event.kind in (EventKind.PAGEVIEW, EventKind.CUSTOM):
            self._trails.append(event, identity.session_id)


def create_analytics_ingestion_service(
    store: KeyValueStorePort,
    sites: SiteDirectoryPort,
    classifier: EventClassifier,
    identity: IdentityService,
    rate_limiter: RateLimiterPort | None = None,
    time_port: TimePort | None = None,
    config: IngestionConfig | None = None,
    sinks: Iterable[EventSinkPort] = (),
) -> AnalyticsIngestionService:
    """Create an analytics ingestion service."""
    return AnalyticsIngestionService(
        store=store,
        sites=sites,
        classifier=classifier,
        identity=identity,
        rate_limiter=rate_limiter,
        time_port=time_port,
        config=config,
        sinks=sinks,
    )
