"""
Per-client ingestion rate limiting.

Sliding window over recorded request times, held in process memory.
Clients are identified by an opaque key (a hash of the address), never
the raw IP.
"""

from datetime import datetime, timedelta
from threading import Lock

from src.adapters.clock import SystemClock
from src.core.ports.time import TimePort
from src.rules.models import RateLimitRule


class RateLimiter:
    """Sliding-window limiter keyed by an opaque client key."""

    def __init__(
        self,
        rules: RateLimitRule,
        time_port: TimePort | None = None,
    ):
        self.rules = rules
        self._time = time_port if time_port is not None else SystemClock()
        self._history: dict[str, list[datetime]] = {}
        self._lock = Lock()

    def _prune(self, key: str, window: int) -> list[datetime]:
        cutoff = self._time.now_utc() - timedelta(seconds=window)
        recent = [t for t in self._history.get(key, []) if t > cutoff]
        if recent:
            self._history[key] = recent
        else:
            self._history.pop(key, None)
        return recent

    def allow_request(self, key: str, window: int, limit: int) -> bool:
        """Record and allow the request, or deny it once `limit` are in the window."""
        if limit <= 0:
            return False

        with self._lock:
            if len(self._prune(key, window)) >= limit:
                return False
            self._history.setdefault(key, []).append(self._time.now_utc())
            return True

    def retry_after(self, key: str, window: int) -> int:
        """Seconds until the oldest recorded request leaves the window."""
        with self._lock:
            history = self._history.get(key)
            if not history:
                return 0
            oldest = min(history)
        remaining = (oldest + timedelta(seconds=window) - self._time.now_utc()).total_seconds()
        return max(1, int(remaining) + 1)

    def check_ingest(self, client_key: str) -> bool:
        cfg = self.rules
        return self.allow_request(f"ingest:{client_key}", cfg.window_seconds, cfg.max_requests)

    def reset(self) -> None:
        """Forget all history (for testing)."""
        with self._lock:
            self._history.clear()
