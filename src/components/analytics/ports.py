"""
Analytics component port definitions.
"""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from src.core.ports.kv import KeyValueStorePort
from src.core.ports.sites import SiteDirectoryPort
from src.core.ports.time import TimePort
from src.core.services.analytics_classify import Event
from src.core.services.analytics_identity import Identity


class RateLimiterPort(Protocol):
    """Rate limiter interface."""

    def check_ingest(self, client_key: str) -> bool:
        """Record a request and return True if it is within the limit."""
        ...

    def retry_after(self, key: str, window: int) -> int:
        """Seconds until the client may retry."""
        ...


class EventSinkPort(Protocol):
    """Downstream consumer of accepted events (heatmaps, realtime)."""

    def accept(self, event: Event, identity: Identity, now: datetime) -> None:
        """Record the event."""
        ...


__all__ = [
    "EventSinkPort",
    "KeyValueStorePort",
    "RateLimiterPort",
    "SiteDirectoryPort",
    "TimePort",
]
