from datetime import date

from shop_agent.credentials import credential_fingerprint
from shop_agent.llm.cache import TTLCache, WorkingModelCache
from shop_agent.store.kv import InMemoryKeyValueStore


class FakeClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


def test_ttl_cache_expires_entries() -> None:
    clock = FakeClock()
    cache = TTLCache(120.0, clock=clock)
    cache.set(("fp", "prompt", "model-a"), {"text": "x"})

    clock.now += 119
    assert cache.get(("fp", "prompt", "model-a")) == {"text": "x"}
    clock.now += 2
    assert cache.get(("fp", "prompt", "model-a")) is None
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


def test_ttl_cache_evicts_oldest_when_full() -> None:
    cache = TTLCache(60.0, max_entries=2, clock=FakeClock())
    cache.set("a", 1)
    cache.set("b", 2)
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert len(cache) == 2


def test_ttl_cache_purge_and_delete() -> None:
    clock = FakeClock()
    cache = TTLCache(10.0, clock=clock)
    cache.set("short", 1, ttl_seconds=1)
    cache.set("long", 2)
    cache.delete("missing")

    clock.now += 5
    assert cache.purge_expired() == 1
    assert len(cache) == 1


def test_working_model_is_scoped_to_day_and_credential() -> None:
    store = InMemoryKeyValueStore()
    today = {"value": date(2024, 5, 1)}
    cache = WorkingModelCache(store, today=lambda: today["value"])

    cache.remember("key-1", "gemini-1.5-flash")
    assert cache.get("key-1") == "gemini-1.5-flash"
    assert cache.get("key-2") is None

    key = cache.key_for("key-1")
    assert key == f"working_model:{credential_fingerprint('key-1')}:2024-05-01"
    assert "key-1" not in key

    today["value"] = date(2024, 5, 2)
    assert cache.get("key-1") is None
