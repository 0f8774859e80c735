from __future__ import annotations

import threading
from pathlib import Path

import pytest

from src.rag.cache import EmbeddingCache, SQLEmbeddingCacheStore, cache_key
from src.tests.fakes import FakeClock


def test_cache_key_ignores_surrounding_whitespace() -> None:
    assert cache_key("  hola ") == cache_key("hola")
    assert cache_key("Hola") != cache_key("hola")
    assert len(cache_key("hola")) == 64


def test_entries_expire_after_ttl() -> None:
    clock = FakeClock()
    cache = EmbeddingCache(ttl=60, clock=clock)
    cache.set("k", [0.1, 0.2])

    clock.advance(59)
    assert cache.get("k") == [0.1, 0.2]

    clock.advance(2)
    assert cache.get("k") is None
    assert len(cache) == 0


def test_per_entry_ttl_overrides_default() -> None:
    clock = FakeClock()
    cache = EmbeddingCache(ttl=60, clock=clock)
    cache.set("short", [1.0])
    cache.set("long", [2.0], ttl=3600)

    clock.advance(120)

    assert cache.get("short") is None
    assert cache.get("long") == [2.0]


def test_purge_runs_when_size_bound_exceeded() -> None:
    clock = FakeClock()
    cache = EmbeddingCache(ttl=10, max_entries=3, clock=clock)
    for index in range(3):
        cache.set(f"old-{index}", [float(index)])
    assert len(cache) == 3
    clock.advance(11)

    cache.set("fresh", [1.0])

    assert len(cache) == 1
    assert cache.get("fresh") == [1.0]


def test_live_entries_are_never_evicted() -> None:
    cache = EmbeddingCache(ttl=3600, max_entries=2, clock=FakeClock())
    for index in range(5):
        cache.set(f"key-{index}", [float(index)])

    assert len(cache) == 5


def test_stats_track_hits_and_misses() -> None:
    clock = FakeClock(now=500.0)
    cache = EmbeddingCache(clock=clock)
    cache.set("a", [1.0])
    clock.advance(5)
    cache.set("b", [2.0])

    cache.get("a")
    cache.get("a")
    cache.get("missing")
    stats = cache.stats()

    assert stats.hits == 2
    assert stats.misses == 1
    assert stats.hit_rate == pytest.approx(2 / 3)
    assert stats.entries == 2
    assert stats.oldest_entry == 500.0
    assert stats.newest_entry == 505.0


def test_invalidate_exact_key_and_glob() -> None:
    cache = EmbeddingCache(clock=FakeClock())
    cache.set("abc1", [1.0])
    cache.set("abc2", [2.0])
    cache.set("xyz", [3.0])

    assert cache.invalidate("xyz") == 1
    assert cache.invalidate("abc*") == 2
    assert cache.invalidate("nothing") == 0
    assert len(cache) == 0


def test_clear_resets_statistics() -> None:
    cache = EmbeddingCache(clock=FakeClock())
    cache.set("a", [1.0])
    cache.get("a")
    cache.clear()

    stats = cache.stats()
    assert stats.entries == 0
    assert stats.hits == 0
    assert stats.misses == 0


def test_rejects_empty_key_and_wrong_dimension() -> None:
    cache = EmbeddingCache(dimension=3, clock=FakeClock())
    with pytest.raises(ValueError):
        cache.set("  ", [1.0, 2.0, 3.0])
    with pytest.raises(ValueError):
        cache.set("k", [1.0, 2.0])


def test_sql_backing_survives_new_cache_instance(tmp_path: Path) -> None:
    uri = f"sqlite:///{tmp_path / 'cache.db'}"
    clock = FakeClock()
    writer = EmbeddingCache(ttl=60, backing=SQLEmbeddingCacheStore(uri), clock=clock)
    writer.set("persisted", [0.5, 0.25], metadata={"kind": "query"})

    reader = EmbeddingCache(ttl=60, backing=SQLEmbeddingCacheStore(uri), clock=clock)
    assert reader.get("persisted") == [0.5, 0.25]

    clock.advance(61)
    fresh = EmbeddingCache(ttl=60, backing=SQLEmbeddingCacheStore(uri), clock=clock)
    assert fresh.get("persisted") is None


def test_concurrent_get_and_set_on_one_key_stay_consistent() -> None:
    cache = EmbeddingCache(clock=FakeClock())
    key = cache_key("¿Cuánto cuesta QRIBAR?")
    workers, rounds = 8, 200
    observed: list[list[float]] = []
    errors: list[Exception] = []
    start = threading.Barrier(workers)

    def worker(worker_id: int) -> None:
        try:
            start.wait()
            for index in range(rounds):
                cache.set(key, [float(worker_id), float(index)])
                value = cache.get(key)
                if value is not None:
                    observed.append(value)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker, args=(worker_id,)) for worker_id in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(observed) == workers * rounds
    assert all(
        len(value) == 2 and 0 <= value[0] < workers and 0 <= value[1] < rounds
        for value in observed
    )
    stats = cache.stats()
    assert stats.entries == 1
    assert stats.hits == workers * rounds
    assert stats.misses == 0
    assert stats.hits + stats.misses == workers * rounds

    cache.set(key, [42.0, 42.0])
    assert cache.get(key) == [42.0, 42.0]
    assert len(cache) == 1
