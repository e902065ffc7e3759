"""Input and output models for the MCP tools."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from apidex.models.cache import CacheStats
from apidex.models.index import OperationDetail, ScoredMatch
from apidex.models.session import RateLimit, RegistryStats

SearchType = Literal["keywords", "tags", "pattern"]

_MAX_URL_LENGTH = 2048


def _validate_url(value: str) -> str:
    if len(value) > _MAX_URL_LENGTH:
        raise ValueError(f"URL exceeds {_MAX_URL_LENGTH} characters")
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"Not an http(s) URL: {value!r}")
    return value


class _SourceInput(BaseModel):
    """Common fields: either a session, a document URL, or both."""

    source_url: str | None = None
    session_id: str | None = Field(default=None, min_length=1, max_length=200)

    @field_validator("source_url")
    @classmethod
    def validate_source_url(cls, v: str | None) -> str | None:
        return _validate_url(v) if v is not None else None


# ---------------------------------------------------------------------------
# configure_session
# ---------------------------------------------------------------------------


class ConfigureSessionInput(BaseModel):
    session_id: str = Field(min_length=1, max_length=200)
    source_urls: list[str] = Field(min_length=1)
    headers: dict[str, str] = {}
    cache_ttl_seconds: float | None = Field(default=None, gt=0)
    rate_limit: RateLimit | None = None

    @field_validator("source_urls")
    @classmethod
    def validate_source_urls(cls, v: list[str]) -> list[str]:
        return [_validate_url(url) for url in v]


class ConfigureSessionOutput(BaseModel):
    session_id: str
    status: Literal["created", "updated"]
    source_urls_configured: int
    cache_ttl_seconds: float


# ---------------------------------------------------------------------------
# search_endpoints
# ---------------------------------------------------------------------------


class SearchEndpointsInput(_SourceInput):
    search_type: SearchType = "keywords"
    query: str = Field(default="", max_length=500)
    methods: list[str] | None = None
    limit: int | None = Field(default=None, ge=1, le=200)


class ApiInfo(BaseModel):
    title: str
    version: str
    total_operations: int
    tags: list[str]
    base_url: str | None = None


class SearchEndpointsOutput(BaseModel):
    results: list[ScoredMatch]
    total_found: int
    search_time_ms: float
    api_info: ApiInfo
    stale: bool = False  # True when served from an index whose refresh failed


# ---------------------------------------------------------------------------
# get_endpoint_details
# ---------------------------------------------------------------------------


class GetEndpointDetailsInput(_SourceInput):
    endpoint_paths: list[str] = Field(min_length=1, max_length=50)
    methods: list[str] | None = None


class EndpointDetailsOutput(BaseModel):
    endpoints: list[OperationDetail]
    requested: int
    load_time_ms: float


# ---------------------------------------------------------------------------
# list_endpoint_models
# ---------------------------------------------------------------------------


class ListEndpointModelsInput(_SourceInput):
    path: str = Field(min_length=1, max_length=2048)
    method: str = Field(default="GET", pattern=r"^[A-Za-z]+$")
    include_definitions: bool = False


class EndpointModelsOutput(BaseModel):
    path: str
    method: str
    models: list[str]
    # Only filled when include_definitions is set; None for undefined references
    definitions: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# get_session_stats
# ---------------------------------------------------------------------------


class GetSessionStatsInput(BaseModel):
    session_id: str = Field(min_length=1, max_length=200)


class SessionInfo(BaseModel):
    id: str
    source_urls: list[str]
    cache_ttl_seconds: float
    rate_limit: RateLimit | None
    active: bool
    created_at: datetime
    last_accessed: datetime


class SessionStatsOutput(BaseModel):
    session_info: SessionInfo | None
    cache_stats: CacheStats
    system_stats: RegistryStats


# ---------------------------------------------------------------------------
# clear_cache
# ---------------------------------------------------------------------------


class ClearCacheInput(_SourceInput):
    pass


class ClearCacheOutput(BaseModel):
    cleared_items: int
    cache_type: Literal["specific", "all"]


# ---------------------------------------------------------------------------
# get_search_suggestions
# ---------------------------------------------------------------------------


class GetSearchSuggestionsInput(_SourceInput):
    partial: str = Field(max_length=500)
    limit: int = Field(default=5, ge=1, le=50)


class SuggestionsOutput(BaseModel):
    suggestions: list[str]
    popular_endpoints: list[ScoredMatch]
