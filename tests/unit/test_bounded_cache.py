"""Unit tests for apidex.bounded_cache."""

from __future__ import annotations

import asyncio

import pytest

from apidex.bounded_cache import BoundedCache


def _cache(clock, *, max_size: int = 3, ttl: float = 60.0, memory_mb: float = 10.0):
    return BoundedCache[str](
        name="test",
        max_size=max_size,
        ttl_seconds=ttl,
        cleanup_interval_seconds=3600,
        memory_threshold_mb=100,
        clock=clock,
        memory_reader=lambda: memory_mb,
    )


class TestCapacity:
    def test_rejects_zero_capacity(self, clock) -> None:
        with pytest.raises(ValueError, match="max_size"):
            _cache(clock, max_size=0)

    def test_evicts_least_recently_accessed(self, clock) -> None:
        cache = _cache(clock)
        cache.set("a", "A")
        clock.advance(1)
        cache.set("b", "B")
        clock.advance(1)
        cache.set("c", "C")
        clock.advance(1)
        assert cache.get("a") == "A"  # "b" is now the oldest access
        clock.advance(1)

        cache.set("d", "D")

        assert sorted(cache.keys()) == ["a", "c", "d"]
        assert cache.stats().evictions == 1

    def test_each_eviction_counts_once(self, clock) -> None:
        cache = _cache(clock, max_size=2)
        for i, key in enumerate(["a", "b", "c", "d", "e"]):
            clock.advance(1)
            cache.set(key, str(i))
        assert len(cache) == 2
        assert cache.stats().evictions == 3
        assert cache.keys() == ["d", "e"]

    def test_equal_access_times_evict_in_insertion_order(self, clock) -> None:
        cache = _cache(clock, max_size=2)
        cache.set("a", "A")
        cache.set("b", "B")
        cache.set("c", "C")
        assert cache.keys() == ["b", "c"]

    def test_overwrite_does_not_evict(self, clock) -> None:
        cache = _cache(clock, max_size=2)
        cache.set("a", "A")
        cache.set("b", "B")
        cache.set("a", "A2")
        assert len(cache) == 2
        assert cache.get("a") == "A2"
        assert cache.stats().evictions == 0


class TestExpiry:
    def test_entry_expires_after_ttl(self, clock) -> None:
        cache = _cache(clock, ttl=10)
        cache.set("a", "A")
        clock.advance(10)
        assert cache.get("a") == "A"  # exactly at the TTL is still live
        clock.advance(0.5)
        assert cache.get("a") is None
        assert "a" not in cache.keys()

    def test_expired_get_counts_miss_and_expiration(self, clock) -> None:
        cache = _cache(clock, ttl=1)
        cache.set("a", "A")
        clock.advance(2)
        cache.get("a")
        stats = cache.stats()
        assert stats.misses == 1
        assert stats.hits == 0
        assert stats.expirations == 1

    def test_per_entry_ttl_overrides_default(self, clock) -> None:
        cache = _cache(clock, ttl=100)
        cache.set("short", "S", ttl=1)
        cache.set("long", "L")
        clock.advance(5)
        assert cache.has("short") is False
        assert cache.has("long") is True

    def test_sweep_removes_only_expired(self, clock) -> None:
        cache = _cache(clock, ttl=5)
        cache.set("old", "O")
        clock.advance(4)
        cache.set("new", "N")
        clock.advance(2)
        assert cache.sweep() == 1
        assert cache.keys() == ["new"]


class TestStats:
    def test_hit_rate(self, clock) -> None:
        cache = _cache(clock)
        cache.set("a", "A")
        cache.get("a")
        cache.get("a")
        cache.get("missing")
        stats = cache.stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_hit_rate_zero_without_lookups(self, clock) -> None:
        assert _cache(clock).stats().hit_rate == 0.0

    def test_peek_does_not_touch_counters_or_recency(self, clock) -> None:
        cache = _cache(clock, max_size=2)
        cache.set("a", "A")
        clock.advance(1)
        cache.set("b", "B")
        clock.advance(1)
        assert cache.peek("a") == "A"
        cache.set("c", "C")
        assert cache.keys() == ["b", "c"]
        assert cache.stats().hits == 0

    def test_memory_warning_above_eighty_percent(self, clock) -> None:
        assert _cache(clock, memory_mb=79).stats().memory_warning is False
        assert _cache(clock, memory_mb=81).stats().memory_warning is True

    def test_memory_pressure_sweeps_on_set(self, clock) -> None:
        cache = _cache(clock, ttl=1, memory_mb=90)
        cache.set("a", "A")
        clock.advance(5)
        cache.set("b", "B")
        # "a" was expired and removed by the pressure sweep, not by eviction
        assert cache.keys() == ["b"]
        assert cache.stats().expirations == 1
        assert cache.stats().evictions == 0


class TestClearAndDelete:
    def test_clear_returns_previous_size(self, clock) -> None:
        cache = _cache(clock)
        cache.set("a", "A")
        cache.set("b", "B")
        assert cache.clear() == 2
        assert cache.stats().size == 0

    def test_delete(self, clock) -> None:
        cache = _cache(clock)
        cache.set("a", "A")
        assert cache.delete("a") is True
        assert cache.delete("a") is False


class TestBackgroundSweep:
    async def test_scheduled_sweep_runs_and_stops(self) -> None:
        now = [0.0]
        cache = BoundedCache[str](
            name="bg",
            max_size=5,
            ttl_seconds=1,
            cleanup_interval_seconds=0.01,
            clock=lambda: now[0],
            memory_reader=lambda: 0.0,
        )
        cache.set("a", "A")
        now[0] = 10.0
        cache.start()
        try:
            for _ in range(100):
                if len(cache) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            await cache.aclose()
        assert len(cache) == 0
