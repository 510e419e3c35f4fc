"""
Realtime component input/output models.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

# --- Validation Error ---


@dataclass(frozen=True)
class RealtimeValidationError:
    """Realtime validation error."""

    code: str
    message: str
    field_name: str | None = None


# --- Window Entry ---


@dataclass(frozen=True)
class WindowEntry:
    """Last heartbeat of one session."""

    session_id: str
    path: str
    last_seen: datetime


# --- Input Models ---


@dataclass(frozen=True)
class HeartbeatInput:
    """Input for recording a heartbeat."""

    site_id: str
    session_id: str
    path: str = "/"


@dataclass(frozen=True)
class ActiveVisitorsInput:
    """Input for reading the active window."""

    site_id: str


# --- Output Models ---


@dataclass(frozen=True)
class HeartbeatOutput:
    """Output for a heartbeat write."""

    pruned: int = 0
    errors: list[RealtimeValidationError] = field(default_factory=list)
    success: bool = True


@dataclass(frozen=True)
class ActiveSession:
    """One active session as reported to dashboards (no session id)."""

    path: str
    last_seen: datetime
    seconds_ago: int


@dataclass(frozen=True)
class ActiveVisitorsOutput:
    """Output for the active visitor count."""

    count: int
    sessions: tuple[ActiveSession, ...] = ()
    pages: dict[str, int] = field(default_factory=dict)
    errors: list[RealtimeValidationError] = field(default_factory=list)
    success: bool = True
