from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field


class RateLimit(BaseModel):
    """Caller-supplied rate-limit hint. Stored and reported, not enforced."""

    requests_per_second: float = Field(gt=0)
    burst_size: int = Field(ge=1)


class SessionConfig(BaseModel):
    """The part of a session the caller controls."""

    source_urls: list[str]
    headers: dict[str, str] = {}
    cache_ttl: timedelta | None = None  # None → registry default
    rate_limit: RateLimit | None = None


class Session(BaseModel):
    id: str
    source_urls: list[str]
    headers: dict[str, str] = {}
    cache_ttl: timedelta
    rate_limit: RateLimit | None = None
    created_at: datetime
    last_accessed: datetime
    active: bool = True


class RegistryStats(BaseModel):
    active_count: int
    total_count: int
    memory_estimate_mb: float
    memory_threshold_mb: float
    memory_warning: bool
