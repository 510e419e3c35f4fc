"""
Key-Value Store Port.

Protocol for the durable key-value store every aggregate lives in.

Key behaviors:
- get/set/delete/list only; no atomic increment, no transactions
- Values written with set_json come back as plain JSON data
- Backend failures surface as StoreUnavailableError
"""

from __future__ import annotations

from typing import Any, Protocol


class KeyValueStorePort(Protocol):
    """Durable key-value store interface."""

    def get(self, key: str, *, as_json: bool = False) -> Any:
        """Return the stored value (decoded when as_json), or None if absent."""
        ...

    def set(self, key: str, value: str) -> None:
        """Store a raw string value."""
        ...

    def set_json(self, key: str, value: Any) -> None:
        """Store a JSON-serialisable value."""
        ...

    def delete(self, key: str) -> None:
        """Delete a key. Missing keys are ignored."""
        ...

    def list(self, prefix: str | None = None) -> list[str]:
        """List keys, optionally restricted to a prefix, sorted."""
        ...
