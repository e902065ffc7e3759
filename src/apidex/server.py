"""MCP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Build AppState via the FastMCP lifespan context manager
- Register tools
- Start the correct transport (stdio or HTTP)
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog
from mcp.server.fastmcp import Context, FastMCP
from mcp.types import CallToolResult, TextContent

import apidex.tools.clear_cache as t_clear_cache
import apidex.tools.configure_session as t_configure
import apidex.tools.get_endpoint_details as t_details
import apidex.tools.get_search_suggestions as t_suggestions
import apidex.tools.get_session_stats as t_stats
import apidex.tools.list_endpoint_models as t_models
import apidex.tools.search_endpoints as t_search
from apidex import __version__
from apidex.bounded_cache import BoundedCache
from apidex.config import Settings
from apidex.details import DetailsLoader
from apidex.errors import ApidexError
from apidex.fetcher import Fetcher, build_http_client
from apidex.indexer import DocumentIndexer
from apidex.models.tools import SearchType  # noqa: TC001  resolved by FastMCP at runtime
from apidex.service import SearchService
from apidex.sessions import SessionRegistry
from apidex.state import AppState
from apidex.store import SnapshotStore
from apidex.transport import run_http_server

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Awaitable

    import httpx

    from apidex.models.index import DocumentIndex
    from apidex.protocols import SnapshotStoreProtocol

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        # stdout carries the MCP JSON-RPC stream
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Composition
# ---------------------------------------------------------------------------


def build_service(
    settings: Settings,
    http_client: httpx.AsyncClient,
    store: SnapshotStoreProtocol | None,
) -> SearchService:
    """Wire the registry, indexer and details loader from settings."""
    fetcher = Fetcher(http_client, settings.fetcher)
    default_ttl = timedelta(seconds=settings.sessions.default_cache_ttl_seconds)

    sessions = SessionRegistry(
        default_cache_ttl=default_ttl,
        max_sessions=settings.sessions.max_sessions,
        sweep_interval_seconds=settings.sessions.sweep_interval_seconds,
        memory_threshold_mb=settings.cache.memory_threshold_mb,
    )
    index_cache: BoundedCache[DocumentIndex] = BoundedCache(
        name="index_cache",
        max_size=settings.cache.max_indexes,
        ttl_seconds=settings.cache.index_ttl_seconds,
        cleanup_interval_seconds=settings.cache.cleanup_interval_seconds,
        memory_threshold_mb=settings.cache.memory_threshold_mb,
    )
    indexer = DocumentIndexer(
        fetcher=fetcher,
        cache=index_cache,
        settings=settings.fetcher,
        store=store,
        default_cache_ttl=default_ttl,
    )
    details = DetailsLoader(
        fetcher=fetcher,
        settings=settings.fetcher,
        store=store,
        details_ttl_minutes=settings.cache.details_ttl_minutes,
        cleanup_interval_seconds=settings.cache.details_cleanup_interval_seconds,
    )
    return SearchService(
        sessions=sessions,
        indexer=indexer,
        details=details,
        settings=settings.search,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__, transport=settings.server.transport)

    http_client = build_http_client(settings.fetcher)

    db_path = Path(settings.cache.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    store = SnapshotStore(db)
    await store.init_db()
    await store.cleanup_expired(settings.cache.details_ttl_minutes)

    service = build_service(settings, http_client, store)
    service.start()

    state = AppState(
        settings=settings,
        service=service,
        http_client=http_client,
        store=store,
    )

    log.info(
        "server_started",
        version=__version__,
        transport=settings.server.transport,
        db_path=str(db_path),
    )

    try:
        yield state
    finally:
        await service.aclose()
        await http_client.aclose()
        await db.close()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# FastMCP instance and tool registration
# ---------------------------------------------------------------------------

mcp = FastMCP("apidex", lifespan=lifespan)
# FastMCP has no version kwarg; the initialize handshake reads it from here
mcp._mcp_server.version = __version__  # pyright: ignore[reportPrivateUsage]


def _serialise_tool_error(error: ApidexError) -> CallToolResult:
    """Convert an ApidexError to the MCP tool error result envelope."""
    return CallToolResult(
        content=[TextContent(type="text", text=json.dumps(error.to_dict()))],
        isError=True,
    )


async def _run_tool(tool: str, call: Awaitable[dict]) -> object:
    try:
        return await call
    except ApidexError as exc:
        log.warning(
            "tool_error",
            tool=tool,
            code=exc.code,
            message=exc.message,
            recoverable=exc.recoverable,
        )
        return _serialise_tool_error(exc)
    except Exception:
        log.error("tool_unexpected_error", tool=tool, exc_info=True)
        raise


@mcp.tool()
async def configure_session(
    session_id: str,
    source_urls: list[str],
    ctx: Context,
    headers: dict[str, str] | None = None,
    cache_ttl_seconds: float | None = None,
    rate_limit: dict[str, Any] | None = None,
) -> object:
    """Register or update a session bound to one or more API description URLs.

    Headers are sent with every document fetch for this session (e.g.
    Authorization). cache_ttl_seconds controls how long an index is trusted
    before it is revalidated against the source.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "configure_session",
        t_configure.handle(
            session_id, source_urls, headers, cache_ttl_seconds, rate_limit, state
        ),
    )


@mcp.tool()
async def search_endpoints(
    ctx: Context,
    query: str = "",
    search_type: SearchType = "keywords",
    session_id: str | None = None,
    source_url: str | None = None,
    methods: list[str] | None = None,
    limit: int | None = None,
) -> object:
    """Search API operations by keywords, tags, or a path pattern.

    keywords: space-separated words ("list users").
    tags: comma-separated tag names ("admin,billing").
    pattern: path glob, where * and ? stay within one segment and {name}
    matches a whole segment ("/users/{id}/*").

    Pass session_id from configure_session, or source_url alone to use a
    session derived from the URL.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "search_endpoints",
        t_search.handle(source_url, session_id, search_type, query, methods, limit, state),
    )


@mcp.tool()
async def get_endpoint_details(
    endpoint_paths: list[str],
    ctx: Context,
    session_id: str | None = None,
    source_url: str | None = None,
    methods: list[str] | None = None,
) -> object:
    """Return full operation definitions for the given paths (GET unless methods are given).

    Paths or methods that do not exist are left out of the result.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "get_endpoint_details",
        t_details.handle(source_url, session_id, endpoint_paths, methods, state),
    )


@mcp.tool()
async def list_endpoint_models(
    path: str,
    ctx: Context,
    method: str = "GET",
    session_id: str | None = None,
    source_url: str | None = None,
    include_definitions: bool = False,
) -> object:
    """List the schema models one operation references, including nested ones.

    Set include_definitions to also return each model's schema.
    """
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "list_endpoint_models",
        t_models.handle(source_url, session_id, path, method, include_definitions, state),
    )


@mcp.tool()
async def get_session_stats(session_id: str, ctx: Context) -> object:
    """Report session settings, index cache counters and process memory."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("get_session_stats", t_stats.handle(session_id, state))


@mcp.tool()
async def clear_cache(
    ctx: Context,
    session_id: str | None = None,
    source_url: str | None = None,
) -> object:
    """Drop cached indexes for a session or URL, or all of them when neither is given."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool("clear_cache", t_clear_cache.handle(source_url, session_id, state))


@mcp.tool()
async def get_search_suggestions(
    partial: str,
    ctx: Context,
    session_id: str | None = None,
    source_url: str | None = None,
    limit: int = 5,
) -> object:
    """Suggest paths and tags that complete a partial input, plus common endpoints."""
    state: AppState = ctx.request_context.lifespan_context
    return await _run_tool(
        "get_search_suggestions",
        t_suggestions.handle(source_url, session_id, partial, limit, state),
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()

    if settings.server.transport == "http":
        _setup_logging(settings)
        run_http_server(mcp, settings)
        return

    mcp.run()


if __name__ == "__main__":
    main()
