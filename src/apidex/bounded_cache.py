"""Capacity- and time-bounded in-memory cache.

Entries are evicted least-recently-used first once ``max_size`` is reached,
and expire ``ttl`` seconds after they were written. A background sweep
removes expired entries proactively; process memory pressure triggers an
immediate sweep and raises ``memory_warning`` in ``stats()``.

Eviction and expiry are routine and are only logged at debug level.
"""

from __future__ import annotations

import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Generic, TypeVar

import psutil
import structlog

from apidex.models.cache import CacheStats
from apidex.schedulers import PeriodicTask

if TYPE_CHECKING:
    from collections.abc import Callable

log = structlog.get_logger()

T = TypeVar("T")

# Fraction of the configured threshold at which pressure handling kicks in
MEMORY_PRESSURE_RATIO = 0.8


def process_memory_mb() -> float:
    """Resident set size of the current process in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


@dataclass
class CacheEntry(Generic[T]):
    data: T
    created_at: float
    ttl: float
    access_count: int
    last_accessed: float

    @property
    def expires_at(self) -> float:
        return self.created_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > self.ttl


class BoundedCache(Generic[T]):
    """LRU + TTL cache with hit/miss accounting."""

    def __init__(
        self,
        *,
        name: str = "cache",
        max_size: int = 100,
        ttl_seconds: float = 10 * 60,
        cleanup_interval_seconds: float = 60,
        memory_threshold_mb: float = 512,
        clock: Callable[[], float] = time.monotonic,
        memory_reader: Callable[[], float] = process_memory_mb,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.name = name
        self.max_size = max_size
        self.default_ttl = ttl_seconds
        self.memory_threshold_mb = memory_threshold_mb
        self._clock = clock
        self._memory_reader = memory_reader
        self._entries: OrderedDict[str, CacheEntry[T]] = OrderedDict()
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._sweeper = PeriodicTask(
            f"{name}_sweep", cleanup_interval_seconds, self._scheduled_sweep
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep. Requires a running event loop."""
        self._sweeper.start()

    async def aclose(self) -> None:
        await self._sweeper.stop()

    # ------------------------------------------------------------------
    # Key/value operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> T | None:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        now = self._clock()
        if entry.is_expired(now):
            self._expire(key)
            self._misses += 1
            return None

        entry.access_count += 1
        entry.last_accessed = now
        self._entries.move_to_end(key)
        self._hits += 1
        log.debug("cache_hit", cache=self.name, key=key)
        return entry.data

    def peek(self, key: str) -> T | None:
        """Return a live value without touching recency or counters."""
        entry = self._entries.get(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.data

    def set(self, key: str, value: T, ttl: float | None = None) -> None:
        if self.is_near_memory_limit():
            log.warning(
                "cache_memory_pressure",
                cache=self.name,
                threshold_mb=self.memory_threshold_mb,
            )
            self.sweep()

        now = self._clock()
        if key in self._entries:
            del self._entries[key]
        else:
            while len(self._entries) >= self.max_size:
                self._evict_one()

        self._entries[key] = CacheEntry(
            data=value,
            created_at=now,
            ttl=self.default_ttl if ttl is None else ttl,
            access_count=1,
            last_accessed=now,
        )
        log.debug("cache_set", cache=self.name, key=key)

    def delete(self, key: str) -> bool:
        if self._entries.pop(key, None) is None:
            return False
        log.debug("cache_delete", cache=self.name, key=key)
        return True

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self._expire(key)
            return False
        return True

    def keys(self) -> list[str]:
        return list(self._entries)

    def clear(self) -> int:
        """Drop every entry. Returns the number removed."""
        removed = len(self._entries)
        self._entries.clear()
        log.info("cache_cleared", cache=self.name, removed=removed)
        return removed

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Remove every expired entry. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._expire(key)
        if expired:
            log.info("cache_sweep_complete", cache=self.name, removed=len(expired))
        return len(expired)

    def is_near_memory_limit(self) -> bool:
        return self._memory_reader() > self.memory_threshold_mb * MEMORY_PRESSURE_RATIO

    def stats(self) -> CacheStats:
        lookups = self._hits + self._misses
        memory_mb = self._memory_reader()
        return CacheStats(
            size=len(self._entries),
            max_size=self.max_size,
            hits=self._hits,
            misses=self._misses,
            hit_rate=self._hits / lookups if lookups else 0.0,
            evictions=self._evictions,
            expirations=self._expirations,
            memory_estimate_mb=round(memory_mb, 2),
            memory_threshold_mb=self.memory_threshold_mb,
            memory_warning=memory_mb > self.memory_threshold_mb * MEMORY_PRESSURE_RATIO,
        )

    def _scheduled_sweep(self) -> None:
        self.sweep()
        if self.is_near_memory_limit():
            log.warning(
                "cache_near_memory_limit",
                cache=self.name,
                threshold_mb=self.memory_threshold_mb,
                size=len(self._entries),
            )

    def _evict_one(self) -> None:
        # Oldest access first, then nearest expiry, then insertion order
        victim, _ = min(
            enumerate(self._entries.items()),
            key=lambda item: (item[1][1].last_accessed, item[1][1].expires_at, item[0]),
        )[1]
        del self._entries[victim]
        self._evictions += 1
        log.debug("cache_evicted", cache=self.name, key=victim)

    def _expire(self, key: str) -> None:
        del self._entries[key]
        self._expirations += 1
        log.debug("cache_expired", cache=self.name, key=key)
