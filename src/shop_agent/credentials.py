"""API key storage backed by the key-value store."""

from __future__ import annotations

import hashlib
import os

from shop_agent.store.kv import KeyValueStore

API_KEY_STORE_KEY = "credentials:gemini_api_key"


def credential_fingerprint(api_key: str) -> str:
    """Stable, non-reversible key prefix used in cache and store keys."""
    return hashlib.blake2b(api_key.encode("utf-8"), digest_size=8).hexdigest()


class CredentialStore:
    """Reads the model API key from the store, falling back to `GEMINI_API_KEY`."""

    def __init__(self, store: KeyValueStore, *, env_var: str = "GEMINI_API_KEY") -> None:
        self.store = store
        self.env_var = env_var

    def get_api_key(self) -> str | None:
        stored = self.store.get(API_KEY_STORE_KEY)
        if isinstance(stored, str) and stored.strip():
            return stored.strip()
        env_value = os.getenv(self.env_var, "").strip()
        return env_value or None

    def set_api_key(self, api_key: str) -> None:
        self.store.set(API_KEY_STORE_KEY, api_key.strip())

    def clear(self) -> None:
        self.store.delete(API_KEY_STORE_KEY)
