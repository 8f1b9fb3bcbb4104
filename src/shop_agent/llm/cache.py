"""Explicit cache objects used by the model client.

Two caches are involved:

- `TTLCache`: process-local key -> (value, expiry) map. The model client keys
  raw responses by `(credential fingerprint, prompt, model)` with a TTL of a
  couple of minutes, and available-model lists by credential fingerprint.
- `WorkingModelCache`: the model that last succeeded for a credential, valid
  until the end of the current calendar day. Persisted through the key-value
  store under `working_model:<fingerprint>:<YYYY-MM-DD>`.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from shop_agent.credentials import credential_fingerprint
from shop_agent.store.kv import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


class TTLCache:
    """Bounded in-memory cache with per-entry expiry.

    When full, the oldest inserted entry is evicted.
    """

    def __init__(
        self,
        default_ttl_seconds: float,
        *,
        max_entries: int = 100,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl_seconds = default_ttl_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[Hashable, _Entry] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return None
        if self._clock() >= entry.expires_at:
            del self._entries[key]
            self.misses += 1
            return None
        self.hits += 1
        return entry.value

    def set(self, key: Hashable, value: Any, ttl_seconds: float | None = None) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def delete(self, key: Hashable) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, int]:
        return {
            "size": len(self._entries),
            "max_entries": self.max_entries,
            "hits": self.hits,
            "misses": self.misses,
        }


class WorkingModelCache:
    """Day-scoped memo of the model that last succeeded for a credential."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.store = store
        self._today = today

    def key_for(self, api_key: str) -> str:
        return f"working_model:{credential_fingerprint(api_key)}:{self._today().isoformat()}"

    def get(self, api_key: str) -> str | None:
        stored = self.store.get(self.key_for(api_key))
        if isinstance(stored, dict) and isinstance(stored.get("model"), str):
            return stored["model"]
        return None

    def remember(self, api_key: str, model_id: str) -> None:
        self.store.set(
            self.key_for(api_key),
            {"model": model_id, "timestamp": datetime.now().isoformat()},
        )
        logger.info("Cached working model %s until end of day", model_id)
