from __future__ import annotations

from jobsync.services.cache import ReadCache, StoreEvents


class Ticker:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def test_entries_expire_after_ttl() -> None:
    ticker = Ticker()
    cache = ReadCache(ttl_seconds=10, clock=ticker)
    cache.set("counts", {"total": 3})

    assert cache.get("counts") == {"total": 3}
    ticker.now = 11
    assert cache.get("counts") is None
    assert cache.stats()["hits"] == 1
    assert cache.stats()["misses"] == 1


def test_full_cache_evicts_least_recently_used() -> None:
    ticker = Ticker()
    cache = ReadCache(ttl_seconds=100, max_entries=5, clock=ticker)
    for index in range(5):
        ticker.now = float(index)
        cache.set(f"k{index}", index)
    ticker.now = 10
    cache.get("k0")

    cache.set("k5", 5)

    assert cache.get("k0") == 0
    assert cache.get("k1") is None
    assert cache.stats()["size"] == 5


def test_store_change_clears_everything() -> None:
    events = StoreEvents()
    cache = ReadCache()
    cache.bind(events)
    cache.set("a", 1)
    cache.set("b", 2)

    events.publish("upsert:reliefweb")

    assert cache.get("a") is None
    assert cache.stats()["invalidations"] == 1


def test_failing_listener_does_not_block_others() -> None:
    events = StoreEvents()
    seen: list[str] = []

    def broken(reason: str) -> None:
        raise RuntimeError("boom")

    events.subscribe(broken)
    events.subscribe(seen.append)

    events.publish("cleanup")

    assert seen == ["cleanup"]
