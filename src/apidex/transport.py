"""Streamable HTTP transport for the MCP server, behind a small ASGI guard."""

from __future__ import annotations

import re
import secrets
from typing import TYPE_CHECKING

import structlog
import uvicorn
from starlette.datastructures import Headers
from starlette.responses import PlainTextResponse

if TYPE_CHECKING:
    from mcp.server.fastmcp import FastMCP
    from starlette.types import ASGIApp, Receive, Scope, Send

    from apidex.config import Settings

log = structlog.get_logger()

SUPPORTED_PROTOCOL_VERSIONS: frozenset[str] = frozenset({"2025-11-25", "2025-06-18", "2025-03-26"})
_LOOPBACK_ORIGIN = re.compile(r"^https?://(localhost|127\.0\.0\.1|\[::1\])(:\d+)?$")


class MCPSecurityMiddleware:
    """Pure ASGI guard in front of the streamable HTTP app.

    Checks, in order: bearer key (when enabled), browser Origin (loopback or
    explicitly allowed), and the MCP-Protocol-Version header. Requests without
    an Origin or protocol header pass those checks. Pure ASGI so streamed
    responses pass through unbuffered.
    """

    def __init__(
        self,
        app: ASGIApp,
        *,
        auth_enabled: bool,
        auth_key: str | None = None,
        allowed_origins: frozenset[str] = frozenset(),
    ) -> None:
        self.app = app
        self.auth_enabled = auth_enabled
        self.auth_key = auth_key
        self.allowed_origins = allowed_origins

    def rejection(self, headers: Headers) -> tuple[int, str] | None:
        """Return ``(status, reason)`` for a request that must be refused."""
        if self.auth_enabled:
            scheme, _, token = headers.get("authorization", "").partition(" ")
            if scheme != "Bearer" or not self.auth_key or token != self.auth_key:
                return 401, "Unauthorized"

        origin = headers.get("origin")
        if origin and origin not in self.allowed_origins and not _LOOPBACK_ORIGIN.match(origin):
            return 403, "Forbidden"

        version = headers.get("mcp-protocol-version")
        if version and version not in SUPPORTED_PROTOCOL_VERSIONS:
            return 400, f"Unsupported protocol version: {version}"
        return None

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        rejected = self.rejection(Headers(scope=scope))
        if rejected is None:
            await self.app(scope, receive, send)
            return

        status, reason = rejected
        log.info("http_request_rejected", status=status, path=scope.get("path"), reason=reason)
        await PlainTextResponse(reason, status_code=status)(scope, receive, send)


def run_http_server(mcp: FastMCP, settings: Settings) -> None:
    """Serve the MCP app over Streamable HTTP with uvicorn."""
    http_log = log.bind(transport="http")

    auth_key = settings.server.auth_key or None
    if settings.server.auth_enabled and auth_key is None:
        auth_key = secrets.token_urlsafe(32)
        http_log.warning("http_auth_key_generated", auth_key=auth_key)
    elif not settings.server.auth_enabled:
        http_log.warning("http_auth_disabled")

    app = MCPSecurityMiddleware(
        mcp.streamable_http_app(),
        auth_enabled=settings.server.auth_enabled,
        auth_key=auth_key,
        allowed_origins=frozenset(settings.server.allowed_origins),
    )
    http_log.info("http_server_starting", host=settings.server.host, port=settings.server.port)
    uvicorn.run(
        app,
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # structlog owns logging
    )
