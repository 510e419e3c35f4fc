"""
In-memory key-value store for tests and local development.

Values are kept as JSON text so callers never share mutable objects
with the store, matching the behaviour of a remote store.
"""

from __future__ import annotations

import json
from threading import Lock
from typing import Any


class InMemoryKeyValueStore:
    """In-memory KeyValueStorePort implementation."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}
        self._lock = Lock()

    def get(self, key: str, *, as_json: bool = False) -> Any:
        with self._lock:
            raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw) if as_json else raw

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._data[key] = value

    def set_json(self, key: str, value: Any) -> None:
        encoded = json.dumps(value, separators=(",", ":"), sort_keys=True)
        with self._lock:
            self._data[key] = encoded

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def list(self, prefix: str | None = None) -> list[str]:
        with self._lock:
            keys = list(self._data.keys())
        if prefix:
            keys = [k for k in keys if k.startswith(prefix)]
        return sorted(keys)

    def clear(self) -> None:
        """Clear all entries (for testing)."""
        with self._lock:
            self._data.clear()
