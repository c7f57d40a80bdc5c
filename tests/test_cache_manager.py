import threading
import time

import pytest

from cachetools import LRUCache

from cache_manager import CacheEntry, CacheManager


def test_set_and_get_returns_value(make_cache):
    cache = make_cache()
    cache.set("a", {"rooms": 3})

    assert cache.get("a") == {"rooms": 3}
    assert cache.get_stats()["hits"] == 1


def test_unknown_key_is_a_miss(make_cache):
    cache = make_cache()

    assert cache.get("missing") is None
    assert cache.get("missing", "fallback") == "fallback"

    stats = cache.get_stats()
    assert stats["misses"] == 2
    assert stats["evictions"] == 0


def test_expired_entry_counts_miss_and_eviction(make_cache, clock):
    cache = make_cache()
    cache.set("key", "v", ttl=0.1)

    clock.advance(0.15)

    assert cache.get("key") is None
    stats = cache.get_stats()
    assert stats["misses"] == 1
    assert stats["evictions"] == 1
    assert stats["size"] == 0


def test_entry_is_live_exactly_at_ttl(make_cache, clock):
    cache = make_cache(default_ttl=10)
    cache.set("key", "v")

    clock.advance(10)
    assert cache.get("key") == "v"

    clock.advance(0.001)
    assert cache.get("key") is None


def test_default_ttl_applies_when_ttl_omitted(make_cache, clock):
    cache = make_cache(default_ttl=5)
    cache.set("short", 1)
    cache.set("long", 2, ttl=50)

    clock.advance(6)

    assert cache.get("short") is None
    assert cache.get("long") == 2


def test_zero_ttl_is_honoured(make_cache, clock):
    cache = make_cache(default_ttl=60)
    cache.set("key", "v", ttl=0)

    assert cache.get("key") == "v"
    clock.advance(0.001)
    assert cache.get("key") is None


def test_capacity_never_exceeded(make_cache, clock):
    cache = make_cache(max_size=5)
    for i in range(50):
        cache.set(f"k{i}", i)
        clock.advance(0.01)
        assert len(cache) <= 5

    stats = cache.get_stats()
    assert stats["size"] == 5
    assert stats["evictions"] == 45


def test_capacity_holds_when_timestamps_tie(make_cache):
    cache = make_cache(max_size=3)
    for i in range(10):
        cache.set(f"k{i}", i)

    assert len(cache) == 3


def test_least_recently_accessed_entry_is_evicted(make_cache, clock):
    cache = make_cache(max_size=2)
    cache.set("A", 1)
    clock.advance(1)
    cache.set("B", 2)
    clock.advance(1)

    cache.get("A")
    clock.advance(1)
    cache.set("C", 3)

    assert cache.has("A")
    assert not cache.has("B")
    assert cache.has("C")


def test_recency_follows_access_order_when_timestamps_tie(make_cache):
    cache = make_cache(max_size=2)
    cache.set("A", 1)
    cache.set("B", 2)
    cache.get("A")

    cache.set("C", 3)

    assert cache.keys() == ["A", "C"]
    assert cache.get_stats()["evictions"] == 1


def test_has_does_not_refresh_recency(make_cache, clock):
    cache = make_cache(max_size=2)
    cache.set("A", 1)
    clock.advance(1)
    cache.set("B", 2)
    clock.advance(1)

    assert cache.has("A")
    cache.set("C", 3)

    assert not cache.has("A")
    assert cache.has("B")


def test_entries_live_in_an_lru_cache(make_cache):
    cache = make_cache(max_size=3)
    cache.set("A", 1)
    cache.clear()

    assert isinstance(cache._entries, LRUCache)
    assert cache._entries.maxsize == 3


def test_overwriting_existing_key_at_capacity_does_not_evict(make_cache, clock):
    cache = make_cache(max_size=2)
    cache.set("A", 1)
    clock.advance(1)
    cache.set("B", 2)
    clock.advance(1)

    cache.set("A", 10)

    assert cache.get("A") == 10
    assert cache.get("B") == 2
    assert cache.get_stats()["evictions"] == 0


def test_overwrite_resets_entry_metadata(make_cache, clock):
    cache = make_cache(default_ttl=10)
    cache.set("key", 1)
    clock.advance(8)
    cache.set("key", 2)
    clock.advance(8)

    assert cache.get("key") == 2


def test_worked_example_stats(make_cache, clock):
    cache = make_cache(max_size=2, default_ttl=1.0)

    cache.set("a", 1)
    clock.advance(0.01)
    cache.set("b", 2)
    clock.advance(0.01)
    assert cache.get_stats()["size"] == 2

    assert cache.get("a") == 1
    clock.advance(0.01)

    cache.set("c", 3)
    clock.advance(0.01)
    assert cache.get_stats()["size"] == 2
    assert cache.get_stats()["evictions"] == 1

    assert cache.get("b") is None
    assert cache.get("c") == 3

    stats = cache.get_stats()
    assert stats["hits"] == 2
    assert stats["misses"] == 1
    assert stats["evictions"] == 1
    assert stats["size"] == 2
    assert stats["hit_rate"] == pytest.approx(2 / 3)


@pytest.mark.parametrize("hits,misses", [(0, 0), (3, 0), (0, 4), (5, 3)])
def test_hit_rate(make_cache, hits, misses):
    cache = make_cache()
    cache.set("present", True)
    for _ in range(hits):
        cache.get("present")
    for _ in range(misses):
        cache.get("absent")

    expected = hits / (hits + misses) if hits + misses else 0
    assert cache.get_stats()["hit_rate"] == pytest.approx(expected)


def test_get_updates_access_metadata(make_cache, clock):
    cache = make_cache()
    cache.set("key", "v")
    clock.advance(3)
    cache.get("key")
    cache.get("key")

    entry = cache._entries.peek("key")
    assert entry.access_count == 2
    assert entry.last_accessed == clock.now


def test_has_does_not_touch_stats_or_metadata(make_cache, clock):
    cache = make_cache()
    cache.set("key", "v")
    clock.advance(1)

    assert cache.has("key")
    assert "key" in cache
    assert not cache.has("other")

    entry = cache._entries.peek("key")
    assert entry.access_count == 0
    assert entry.last_accessed == clock.now - 1
    stats = cache.get_stats()
    assert (stats["hits"], stats["misses"], stats["evictions"]) == (0, 0, 0)


def test_has_lazily_drops_expired_entry(make_cache, clock):
    cache = make_cache(default_ttl=1)
    cache.set("key", "v")
    clock.advance(2)

    assert not cache.has("key")
    assert cache.keys() == []
    assert cache.get_stats()["evictions"] == 0


def test_delete(make_cache):
    cache = make_cache()
    cache.set("key", "v")

    assert cache.delete("key") is True
    assert cache.delete("key") is False
    assert cache.get_stats()["evictions"] == 1
    assert cache.get_stats()["size"] == 0


def test_delete_matching(make_cache):
    cache = make_cache()
    for key in ("x:1", "x:2", "y:1"):
        cache.set(key, key)

    removed = cache.delete_matching(lambda key: key.startswith("x:"))

    assert removed == 2
    assert cache.keys() == ["y:1"]
    assert cache.get_stats()["evictions"] == 2


def test_clear_resets_stats(make_cache):
    cache = make_cache()
    cache.set("a", 1)
    cache.get("a")
    cache.get("missing")
    cache.delete("a")
    cache.set("b", 2)

    cache.clear()

    assert cache.get_stats() == {
        "hits": 0,
        "misses": 0,
        "evictions": 0,
        "size": 0,
        "hit_rate": 0,
    }


def test_stats_snapshot_is_a_copy(make_cache):
    cache = make_cache()
    snapshot = cache.get_stats()
    cache.get("missing")

    assert snapshot["misses"] == 0


def test_sweep_removes_only_expired_entries(make_cache, clock):
    cache = make_cache(default_ttl=10)
    cache.set("old", 1)
    clock.advance(5)
    cache.set("new", 2)
    clock.advance(6)

    assert cache.sweep() == 1
    assert cache.keys() == ["new"]
    assert cache.get_stats()["evictions"] == 1


@pytest.mark.parametrize(
    "kwargs",
    [{"max_size": 0}, {"default_ttl": -1}, {"sweep_interval": 0}],
)
def test_invalid_construction(kwargs):
    params = {"start_sweeper": False, **kwargs}
    with pytest.raises(ValueError):
        CacheManager(**params)


def test_cache_entry_liveness():
    entry = CacheEntry("v", timestamp=100.0, ttl=5.0)

    assert not entry.is_expired(105.0)
    assert entry.is_expired(105.5)


def test_background_sweeper_removes_expired_entries():
    cache = CacheManager(max_size=10, default_ttl=0.01, sweep_interval=0.02)
    try:
        cache.set("key", "v")
        assert cache.sweeper_running

        deadline = time.monotonic() + 2.0
        while cache.keys() and time.monotonic() < deadline:
            time.sleep(0.01)

        assert cache.keys() == []
        assert cache.get_stats()["evictions"] == 1
    finally:
        cache.close()


def test_destroy_stops_sweeper_and_is_idempotent():
    cache = CacheManager(max_size=10, default_ttl=60, sweep_interval=0.01)
    cache.set("key", "v")

    cache.destroy()
    assert not cache.sweeper_running
    assert cache.get_stats()["size"] == 0

    cache.destroy()
    assert not cache.sweeper_running
    cache.close()


def test_destroy_while_sweeping_does_not_mutate_afterwards(clock):
    cache = CacheManager(max_size=10, default_ttl=1, sweep_interval=0.005, clock=clock)
    try:
        for i in range(5):
            cache.set(f"k{i}", i)
        clock.advance(5)
        time.sleep(0.02)

        cache.destroy()
        cache.set("after", 1)
        clock.advance(5)
        time.sleep(0.02)

        # The stopped sweeper must not remove the expired post-destroy entry
        assert cache.keys() == ["after"]
    finally:
        cache.close()


def test_concurrent_access_keeps_invariants(clock):
    cache = CacheManager(max_size=50, default_ttl=60, clock=clock, start_sweeper=False)
    errors = []

    def worker(worker_id):
        try:
            for i in range(500):
                key = f"w{worker_id}:{i % 80}"
                cache.set(key, i)
                cache.get(key)
                cache.get(f"w{worker_id}:missing")
                if i % 7 == 0:
                    cache.delete(key)
        except Exception as e:  # pragma: no cover - reported below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    stats = cache.get_stats()
    assert stats["size"] <= 50
    assert stats["size"] == len(cache)
    assert stats["hits"] + stats["misses"] == 8 * 500 * 2
    cache.close()
