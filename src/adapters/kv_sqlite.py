"""
SQLite Key-Value Store Adapter.

Implements KeyValueStorePort on a single `kv` table.
Every sqlite3 error is wrapped as StoreUnavailableError so the engine
never sees backend-specific exceptions.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any

from src.core.errors import StoreUnavailableError

SCHEMA = """
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
)
"""


def dict_factory(cursor: sqlite3.Cursor, row: tuple[Any, ...]) -> dict[str, Any]:
    """Convert SQLite row to dictionary."""
    return {col[0]: row[idx] for idx, col in enumerate(cursor.description)}


class SQLiteKeyValueStore:
    """SQLite-backed KeyValueStorePort implementation."""

    def __init__(self, db_path: str, connection: sqlite3.Connection | None = None):
        self.db_path = db_path
        self._external_conn = connection
        if connection is not None:
            connection.row_factory = dict_factory
        self._ensure_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get database connection (uses external if provided)."""
        if self._external_conn is not None:
            return self._external_conn

        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=5.0)
        conn.row_factory = dict_factory
        return conn

    def _should_close(self) -> bool:
        """Whether to close connection after use."""
        return self._external_conn is None

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> list[dict[str, Any]]:
        conn: sqlite3.Connection | None = None
        try:
            conn = self._get_conn()
            cursor = conn.execute(sql, params)
            rows = cursor.fetchall()
            conn.commit()
            return rows
        except sqlite3.Error as e:
            raise StoreUnavailableError(f"Key-value store error: {e}") from e
        finally:
            if conn is not None and self._should_close():
                conn.close()

    def _ensure_schema(self) -> None:
        self._execute(SCHEMA)

    def get(self, key: str, *, as_json: bool = False) -> Any:
        rows = self._execute("SELECT value FROM kv WHERE key = ?", (key,))
        if not rows:
            return None
        raw = rows[0]["value"]
        return json.loads(raw) if as_json else raw

    def set(self, key: str, value: str) -> None:
        self._execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def set_json(self, key: str, value: Any) -> None:
        self.set(key, json.dumps(value, separators=(",", ":"), sort_keys=True))

    def delete(self, key: str) -> None:
        self._execute("DELETE FROM kv WHERE key = ?", (key,))

    def list(self, prefix: str | None = None) -> list[str]:
        if prefix:
            # LIKE would treat % and _ in site ids as wildcards
            rows = self._execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix),
            )
        else:
            rows = self._execute("SELECT key FROM kv ORDER BY key")
        return [r["key"] for r in rows]
