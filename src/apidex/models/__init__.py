from __future__ import annotations

from apidex.models.cache import CacheStats
from apidex.models.index import (
    DocumentFetchMetadata,
    DocumentIndex,
    FetchedDocument,
    IndexMetadata,
    OperationDetail,
    OperationSummary,
    ScoredMatch,
    Validator,
)
from apidex.models.session import RateLimit, RegistryStats, Session, SessionConfig
from apidex.models.tools import (
    ApiInfo,
    ClearCacheInput,
    ClearCacheOutput,
    ConfigureSessionInput,
    ConfigureSessionOutput,
    EndpointDetailsOutput,
    GetEndpointDetailsInput,
    GetSearchSuggestionsInput,
    GetSessionStatsInput,
    SearchEndpointsInput,
    SearchEndpointsOutput,
    SessionInfo,
    SessionStatsOutput,
    SuggestionsOutput,
)

__all__ = [
    # cache
    "CacheStats",
    # index
    "DocumentFetchMetadata",
    "DocumentIndex",
    "FetchedDocument",
    "IndexMetadata",
    "OperationDetail",
    "OperationSummary",
    "ScoredMatch",
    "Validator",
    # session
    "RateLimit",
    "RegistryStats",
    "Session",
    "SessionConfig",
    # tools
    "ApiInfo",
    "ClearCacheInput",
    "ClearCacheOutput",
    "ConfigureSessionInput",
    "ConfigureSessionOutput",
    "EndpointDetailsOutput",
    "GetEndpointDetailsInput",
    "GetSearchSuggestionsInput",
    "GetSessionStatsInput",
    "SearchEndpointsInput",
    "SearchEndpointsOutput",
    "SessionInfo",
    "SessionStatsOutput",
    "SuggestionsOutput",
]
