from __future__ import annotations

from pydantic import BaseModel


class CacheStats(BaseModel):
    """Point-in-time counters reported by BoundedCache.stats()."""

    size: int
    max_size: int
    hits: int
    misses: int
    hit_rate: float  # 0.0 when nothing has been looked up yet
    evictions: int
    expirations: int
    memory_estimate_mb: float  # Resident set size of the whole process
    memory_threshold_mb: float
    memory_warning: bool  # RSS above 80% of the threshold
