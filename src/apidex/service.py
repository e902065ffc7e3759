"""SearchService: the facade every tool handler calls.

Composes the session registry, the indexer, the search functions and the
details loader. Owns the per-key index lifecycle:

    ABSENT → BUILDING → READY → STALE → BUILDING (refresh) → READY

A fetch failure during a refresh keeps serving the prior index and marks the
result ``stale``; with no prior index the error reaches the caller. Concurrent
requests for one key share a single build.
"""

from __future__ import annotations

import asyncio
import time
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from apidex import search as search_engine
from apidex.errors import ApidexError, ErrorCode, invalid_session
from apidex.fetcher import hash_url
from apidex.indexer import index_key, tokenize
from apidex.models.session import SessionConfig
from apidex.models.tools import (
    ApiInfo,
    ClearCacheOutput,
    ConfigureSessionOutput,
    EndpointDetailsOutput,
    EndpointModelsOutput,
    SearchEndpointsOutput,
    SessionInfo,
    SessionStatsOutput,
    SuggestionsOutput,
)
from apidex.singleflight import SingleFlight

if TYPE_CHECKING:
    from datetime import timedelta

    from apidex.config import SearchSettings
    from apidex.details import DetailsLoader
    from apidex.indexer import DocumentIndexer
    from apidex.models.index import DocumentIndex, OperationDetail
    from apidex.models.session import RateLimit, Session
    from apidex.models.tools import SearchType
    from apidex.sessions import SessionRegistry

log = structlog.get_logger()

# Failures during a refresh that fall back to the prior index
_STALE_FALLBACK_CODES = frozenset({ErrorCode.UPSTREAM_FETCH_FAILED, ErrorCode.TIMEOUT})

DEFAULT_DETAIL_METHODS: tuple[str, ...] = ("GET",)


class IndexState(StrEnum):
    ABSENT = "absent"
    BUILDING = "building"
    READY = "ready"
    STALE = "stale"


def auto_session_id(source_url: str) -> str:
    """Session id derived from a document URL when the caller names none."""
    return f"session_{hash_url(source_url)}"


class SearchService:
    def __init__(
        self,
        *,
        sessions: SessionRegistry,
        indexer: DocumentIndexer,
        details: DetailsLoader,
        settings: SearchSettings,
    ) -> None:
        self.sessions = sessions
        self.indexer = indexer
        self.details = details
        self._settings = settings
        self._builds: SingleFlight[DocumentIndex] = SingleFlight()
        self._stale_keys: set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start background sweeps. Requires a running event loop."""
        self.sessions.start()
        self.indexer.cache.start()
        self.details.start()

    async def aclose(self) -> None:
        await self.details.aclose()
        await self.indexer.cache.aclose()
        await self.sessions.aclose()

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def configure_session(
        self,
        session_id: str,
        source_urls: list[str],
        headers: dict[str, str] | None = None,
        cache_ttl: timedelta | None = None,
        rate_limit: RateLimit | None = None,
    ) -> ConfigureSessionOutput:
        existed = session_id in self.sessions
        session = self.sessions.create_or_update(
            session_id,
            SessionConfig(
                source_urls=source_urls,
                headers=headers or {},
                cache_ttl=cache_ttl,
                rate_limit=rate_limit,
            ),
        )
        return ConfigureSessionOutput(
            session_id=session.id,
            status="updated" if existed else "created",
            source_urls_configured=len(session.source_urls),
            cache_ttl_seconds=session.cache_ttl.total_seconds(),
        )

    def session_for_url(
        self,
        source_url: str,
        headers: dict[str, str] | None = None,
        cache_ttl: timedelta | None = None,
    ) -> Session:
        """Return the URL-derived session, creating it on first use."""
        session_id = auto_session_id(source_url)
        session = self.sessions.get(session_id)
        if session is not None and source_url in session.source_urls:
            return session
        return self.sessions.create_or_update(
            session_id,
            SessionConfig(source_urls=[source_url], headers=headers or {}, cache_ttl=cache_ttl),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search(
        self,
        source_url: str | None,
        session_id: str | None,
        search_type: SearchType,
        query: str,
        methods: list[str] | None = None,
        limit: int | None = None,
    ) -> SearchEndpointsOutput:
        url, session = self._resolve(source_url, session_id)
        params = self._search_params(search_type, query, methods, limit)

        started = time.monotonic()
        index, stale = await self._load(url, session)
        results = search_engine.search(index, params)
        elapsed_ms = round((time.monotonic() - started) * 1000, 2)

        log.info(
            "search_complete",
            session_id=session.id,
            search_type=search_type,
            results=len(results),
            stale=stale,
            duration_ms=elapsed_ms,
        )
        return SearchEndpointsOutput(
            results=results,
            total_found=len(results),
            search_time_ms=elapsed_ms,
            api_info=ApiInfo(
                title=index.metadata.title,
                version=index.metadata.version,
                total_operations=index.metadata.total_operations,
                tags=index.metadata.tags,
                base_url=index.metadata.base_url,
            ),
            stale=stale,
        )

    async def get_details(
        self,
        source_url: str | None,
        session_id: str | None,
        paths: list[str],
        methods: list[str] | None = None,
    ) -> EndpointDetailsOutput:
        """Load every path × method pair concurrently; failed pairs are omitted."""
        url, session = self._resolve(source_url, session_id)
        wanted = [method.upper() for method in (methods or DEFAULT_DETAIL_METHODS)]
        pairs = [(path, method) for path in paths for method in wanted]

        started = time.monotonic()
        document_url = await self._document_url(url, session)
        outcomes = await asyncio.gather(
            *(
                self.details.load_details(document_url, path, method, session.headers)
                for path, method in pairs
            ),
            return_exceptions=True,
        )

        endpoints: list[OperationDetail] = []
        for (path, method), outcome in zip(pairs, outcomes, strict=True):
            if isinstance(outcome, ApidexError):
                log.info(
                    "endpoint_details_skipped",
                    path=path,
                    method=method,
                    code=outcome.code,
                    reason=outcome.message,
                )
            elif isinstance(outcome, Exception):
                log.warning(
                    "endpoint_details_error", path=path, method=method, exc_info=outcome
                )
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                endpoints.append(outcome)

        return EndpointDetailsOutput(
            endpoints=endpoints,
            requested=len(pairs),
            load_time_ms=round((time.monotonic() - started) * 1000, 2),
        )

    async def get_models(
        self,
        source_url: str | None,
        session_id: str | None,
        path: str,
        method: str = "GET",
        *,
        include_definitions: bool = False,
    ) -> EndpointModelsOutput:
        """Schema models one operation references. Raises NOT_FOUND for unknown operations."""
        url, session = self._resolve(source_url, session_id)
        document_url = await self._document_url(url, session)
        models = await self.details.load_models(document_url, path, method, session.headers)
        return EndpointModelsOutput(
            path=path,
            method=method.upper(),
            models=list(models),
            definitions=models if include_definitions else None,
        )

    def get_stats(self, session_id: str) -> SessionStatsOutput:
        """Counters for one session plus cache and registry totals.

        An unknown session yields ``session_info=None`` rather than an error.
        """
        session = self.sessions.get(session_id)
        info = None
        if session is not None:
            info = SessionInfo(
                id=session.id,
                source_urls=session.source_urls,
                cache_ttl_seconds=session.cache_ttl.total_seconds(),
                rate_limit=session.rate_limit,
                active=session.active,
                created_at=session.created_at,
                last_accessed=session.last_accessed,
            )
        return SessionStatsOutput(
            session_info=info,
            cache_stats=self.indexer.cache.stats(),
            system_stats=self.sessions.stats(),
        )

    async def clear_cache(
        self, source_url: str | None = None, session_id: str | None = None
    ) -> ClearCacheOutput:
        """Clear one session's indexes, or everything when neither argument is given."""
        if source_url is None and session_id is None:
            cleared = await self.indexer.clear()
            self._stale_keys.clear()
            log.info("cache_cleared_all", cleared_items=cleared)
            return ClearCacheOutput(cleared_items=cleared, cache_type="all")

        targets: list[tuple[str, str]]
        if source_url is not None:
            targets = [(source_url, session_id or auto_session_id(source_url))]
        else:
            session = self.sessions.get(session_id) if session_id is not None else None
            targets = []
            if session is not None:
                targets = [(url, session.id) for url in session.source_urls]

        cleared = 0
        for url, sid in targets:
            if await self.indexer.forget(url, sid):
                cleared += 1
            self._stale_keys.discard(index_key(url, sid))
        log.info("cache_cleared_specific", cleared_items=cleared, targets=len(targets))
        return ClearCacheOutput(cleared_items=cleared, cache_type="specific")

    async def get_suggestions(
        self,
        source_url: str | None,
        session_id: str | None,
        partial: str,
        limit: int | None = None,
    ) -> SuggestionsOutput:
        url, session = self._resolve(source_url, session_id)
        limit = limit or self._settings.suggestion_limit
        index, _ = await self._load(url, session)
        return SuggestionsOutput(
            suggestions=search_engine.suggest(index, partial, limit),
            popular_endpoints=search_engine.popular_endpoints(index, limit),
        )

    def index_state(self, source_url: str, session_id: str) -> IndexState:
        key = index_key(source_url, session_id)
        if key in self._builds:
            return IndexState.BUILDING
        if self.indexer.cached_index(source_url, session_id) is None:
            return IndexState.ABSENT
        if key in self._stale_keys or self.indexer.is_expired(source_url, session_id):
            return IndexState.STALE
        return IndexState.READY

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve(self, source_url: str | None, session_id: str | None) -> tuple[str, Session]:
        """Pick the session and document URL for a query.

        A named session must exist; its first URL is used when none is given.
        Without a session id the URL-derived session is created on demand.
        """
        if session_id is not None:
            session = self.sessions.get(session_id)
            if session is None:
                raise invalid_session(session_id)
            url = source_url or (session.source_urls[0] if session.source_urls else None)
            if url is None:
                raise ApidexError(
                    code=ErrorCode.INVALID_INPUT,
                    message=f"Session {session_id!r} has no document URL configured",
                    suggestion="Pass source_url or reconfigure the session with source_urls.",
                    recoverable=True,
                )
            return url, session

        if source_url is None:
            raise ApidexError(
                code=ErrorCode.INVALID_INPUT,
                message="Either session_id or source_url is required",
                suggestion="Call configure_session first, or pass the document URL directly.",
                recoverable=True,
            )
        return source_url, self.session_for_url(source_url)

    async def _document_url(self, url: str, session: Session) -> str:
        """The URL the document is actually read from.

        Indexing resolves it first when this key has never been indexed, so a
        base URL discovered during indexing is reused here. Indexing failures
        leave the configured URL in place.
        """
        if self.indexer.fetch_metadata(url, session.id) is None:
            try:
                await self._load(url, session)
            except ApidexError as exc:
                log.info("document_url_unresolved", source_url=url, code=exc.code)
                return url
        return self.indexer.document_url(url, session.id)

    def _search_params(
        self,
        search_type: SearchType,
        query: str,
        methods: list[str] | None,
        limit: int | None,
    ) -> search_engine.SearchParams:
        common = {
            "methods": methods or None,
            "limit": limit or self._settings.default_limit,
            "max_keyword_results": self._settings.max_keyword_results,
        }
        if search_type == "tags":
            tags = [tag.strip() for tag in query.split(",") if tag.strip()]
            if not tags:
                raise _invalid_query("Tag search needs at least one tag (comma-separated)")
            return search_engine.SearchParams(tags=tags, **common)
        if search_type == "pattern":
            pattern = query.strip()
            if not pattern:
                raise _invalid_query("Pattern search needs a non-empty path pattern")
            return search_engine.SearchParams(pattern=pattern, **common)
        if not tokenize(query):
            raise _invalid_query("Keyword search needs at least one keyword besides stop words")
        keywords = query.split()
        return search_engine.SearchParams(keywords=keywords, **common)

    async def _load(self, url: str, session: Session) -> tuple[DocumentIndex, bool]:
        """Load or refresh the index, falling back to the prior one on fetch failure."""
        key = index_key(url, session.id)

        async def work() -> DocumentIndex:
            return await self.indexer.load_with_auto_refresh(
                url, session.id, headers=session.headers, cache_ttl=session.cache_ttl
            )

        try:
            index = await self._builds.run(key, work)
        except ApidexError as exc:
            if exc.code not in _STALE_FALLBACK_CODES:
                raise
            prior = self.indexer.cached_index(url, session.id)
            if prior is None:
                raise
            self._stale_keys.add(key)
            log.warning(
                "index_refresh_failed_serving_stale",
                key=key,
                code=exc.code,
                reason=exc.message,
            )
            return prior, True

        self._stale_keys.discard(key)
        return index, False


def _invalid_query(message: str) -> ApidexError:
    return ApidexError(
        code=ErrorCode.INVALID_QUERY,
        message=message,
        suggestion="Provide keywords separated by spaces, tags separated by commas, "
        "or a path pattern such as /users/{id}.",
        recoverable=True,
    )
