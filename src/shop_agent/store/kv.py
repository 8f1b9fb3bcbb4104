"""Key-value persistence for working-model memos, credentials and flow snapshots."""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Opaque JSON-valued key-value store."""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        """Return the stored value or None."""

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        """Store a JSON-serialisable value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key if present."""


class InMemoryKeyValueStore(KeyValueStore):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqliteKeyValueStore(KeyValueStore):
    """Single-table SQLite store."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        _ensure_kv_table(self.path)

    def get(self, key: str) -> Any | None:
        with sqlite3.connect(self.path) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def set(self, key: str, value: Any) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute(
                "INSERT INTO kv(key, value) VALUES(?, ?) ON CONFLICT(key) DO UPDATE SET value=excluded.value",
                (key, json.dumps(value)),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with sqlite3.connect(self.path) as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))
            conn.commit()


class BestEffortStore(KeyValueStore):
    """Wraps a store so that storage failures degrade to "not found".

    Reads that fail return None and writes that fail are logged and dropped;
    callers then re-resolve whatever they would have loaded.
    """

    def __init__(self, inner: KeyValueStore) -> None:
        self.inner = inner

    def get(self, key: str) -> Any | None:
        try:
            return self.inner.get(key)
        except (sqlite3.Error, OSError, ValueError) as exc:
            logger.warning("Store read failed for %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            self.inner.set(key, value)
        except (sqlite3.Error, OSError, TypeError, ValueError) as exc:
            logger.warning("Store write failed for %s: %s", key, exc)

    def delete(self, key: str) -> None:
        try:
            self.inner.delete(key)
        except (sqlite3.Error, OSError) as exc:
            logger.warning("Store delete failed for %s: %s", key, exc)


def _ensure_kv_table(db_path: Path) -> None:
    with sqlite3.connect(db_path) as conn:
        conn.execute(
            "CREATE TABLE IF NOT EXISTS kv (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
        )
        conn.commit()
