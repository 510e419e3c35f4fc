"""
Realtime component - Active visitor window.

Keeps a per-site map of session -> (path, last heartbeat) and answers
"who is on the site right now".

Invariants:
- A session is active iff now - last_seen <= TTL
- Readers filter by TTL; stored occupancy is never trusted
- Stale entries are pruned opportunistically on write, never by a sweep
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from src.core.keys import realtime_key
from src.core.services.analytics_classify import Event, EventKind
from src.core.services.analytics_identity import Identity

from .models import (
    ActiveSession,
    ActiveVisitorsInput,
    ActiveVisitorsOutput,
    HeartbeatInput,
    HeartbeatOutput,
    RealtimeValidationError,
    WindowEntry,
)
from .ports import KeyValueStorePort, TimePort

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30

# Kinds that show a visitor is still on the page
ACTIVITY_KINDS = frozenset(
    {
        EventKind.PAGEVIEW,
        EventKind.HEARTBEAT,
        EventKind.ENGAGEMENT,
        EventKind.CUSTOM,
        EventKind.CLICK,
        EventKind.SCROLL,
    }
)


class _SystemTime:
    def now_utc(self) -> datetime:
        return datetime.now(UTC)


# --- Window Functions ---


def load_window(raw: Any) -> dict[str, WindowEntry]:
    """Decode the stored window; malformed entries are dropped."""
    visitors = raw.get("visitors", {}) if isinstance(raw, dict) else {}
    window: dict[str, WindowEntry] = {}
    for session_id, entry in visitors.items():
        try:
            last_seen = datetime.fromisoformat(entry["last_seen"])
        except (KeyError, TypeError, ValueError):
            continue
        window[session_id] = WindowEntry(
            session_id=session_id,
            path=str(entry.get("path", "/")),
            last_seen=last_seen,
        )
    return window


def dump_window(window: dict[str, WindowEntry]) -> dict[str, Any]:
    return {
        "visitors": {
            sid: {"path": e.path, "last_seen": e.last_seen.isoformat()}
            for sid, e in window.items()
        }
    }


def is_active(entry: WindowEntry, now: datetime, ttl_seconds: int) -> bool:
    return now - entry.last_seen <= timedelta(seconds=ttl_seconds)


def active_entries(
    window: dict[str, WindowEntry], now: datetime, ttl_seconds: int
) -> list[WindowEntry]:
    """Entries within the TTL, most recent first."""
    entries = [e for e in window.values() if is_active(e, now, ttl_seconds)]
    return sorted(entries, key=lambda e: (e.last_seen, e.session_id), reverse=True)


def apply_heartbeat(
    window: dict[str, WindowEntry],
    session_id: str,
    path: str,
    now: datetime,
    ttl_seconds: int,
) -> tuple[dict[str, WindowEntry], int]:
    """
    Overwrite the session's entry and drop stale ones.

    Returns the new window and the number of pruned entries.
    """
    kept = {sid: e for sid, e in window.items() if is_active(e, now, ttl_seconds)}
    pruned = len(window) - len(kept)
    kept[session_id] = WindowEntry(session_id=session_id, path=path, last_seen=now)
    return kept, pruned


# --- Component Entry Points ---


def run_heartbeat(
    inp: HeartbeatInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> HeartbeatOutput:
    """Record a heartbeat for a session."""
    if not inp.session_id:
        return HeartbeatOutput(
            errors=[RealtimeValidationError("missing_field", "Session required", "session_id")],
            success=False,
        )

    now = (time_port or _SystemTime()).now_utc()
    key = realtime_key(inp.site_id)
    window = load_window(store.get(key, as_json=True))
    updated, pruned = apply_heartbeat(window, inp.session_id, inp.path or "/", now, ttl_seconds)
    store.set_json(key, dump_window(updated))
    return HeartbeatOutput(pruned=pruned)


def run_active_visitors(
    inp: ActiveVisitorsInput,
    *,
    store: KeyValueStorePort,
    time_port: TimePort | None = None,
    ttl_seconds: int = DEFAULT_TTL_SECONDS,
) -> ActiveVisitorsOutput:
    """Count sessions heartbeated within the TTL."""
    now = (time_port or _SystemTime()).now_utc()
    window = load_window(store.get(realtime_key(inp.site_id), as_json=True))
    entries = active_entries(window, now, ttl_seconds)

    pages: dict[str, int] = {}
    for entry in entries:
        pages[entry.path] = pages.get(entry.path, 0) + 1

    return ActiveVisitorsOutput(
        count=len(entries),
        sessions=tuple(
            ActiveSession(
                path=e.path,
                last_seen=e.last_seen,
                seconds_ago=max(0, int((now - e.last_seen).total_seconds())),
            )
            for e in entries
        ),
        pages=dict(sorted(pages.items(), key=lambda kv: (-kv[1], kv[0]))),
    )


class RealtimeSink:
    """EventSinkPort that heartbeats the window for every activity event."""

    def __init__(self, store: KeyValueStorePort, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self._store = store
        self._ttl = ttl_seconds

    def accept(self, event: Event, identity: Identity, now: datetime) -> None:
        if identity.session_id is None or event.kind not in ACTIVITY_KINDS:
            return
        key = realtime_key(event.site_id)
        window = load_window(self._store.get(key, as_json=True))
        updated, _ = apply_heartbeat(window, identity.session_id, event.path, now, self._ttl)
        self._store.set_json(key, dump_window(updated))


def run(inp: Any, **kwargs: Any) -> Any:
    """Dispatch to the entry point matching the input type."""
    if isinstance(inp, HeartbeatInput):
        return run_heartbeat(inp, **kwargs)
    if isinstance(inp, ActiveVisitorsInput):
        return run_active_visitors(inp, **kwargs)
    raise ValueError(f"Unknown input type: {type(inp)}")
