"""
Realtime component - Active visitor window.
"""

from .component import (
    ACTIVITY_KINDS,
    DEFAULT_TTL_SECONDS,
    RealtimeSink,
    active_entries,
    apply_heartbeat,
    dump_window,
    is_active,
    load_window,
    run,
    run_active_visitors,
    run_heartbeat,
)
from .models import (
    ActiveSession,
    ActiveVisitorsInput,
    ActiveVisitorsOutput,
    HeartbeatInput,
    HeartbeatOutput,
    RealtimeValidationError,
    WindowEntry,
)

__all__ = [
    # Entry points
    "run",
    "run_active_visitors",
    "run_heartbeat",
    # Functions
    "active_entries",
    "apply_heartbeat",
    "dump_window",
    "is_active",
    "load_window",
    # Sink
    "RealtimeSink",
    # Models
    "ActiveSession",
    "ActiveVisitorsInput",
    "ActiveVisitorsOutput",
    "HeartbeatInput",
    "HeartbeatOutput",
    "RealtimeValidationError",
    "WindowEntry",
    # Constants
    "ACTIVITY_KINDS",
    "DEFAULT_TTL_SECONDS",
]
