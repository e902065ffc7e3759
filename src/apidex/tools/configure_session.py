"""Tool handler for configure_session.

Receives AppState, validates input, and registers or updates the session.
No MCP or FastMCP imports; server.py handles the MCP wiring.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from apidex.errors import ApidexError, ErrorCode
from apidex.models.tools import ConfigureSessionInput

if TYPE_CHECKING:
    from apidex.state import AppState


async def handle(
    session_id: str,
    source_urls: list[str],
    headers: dict[str, str] | None,
    cache_ttl_seconds: float | None,
    rate_limit: dict[str, Any] | None,
    state: AppState,
) -> dict:
    """Handle a configure_session tool call."""
    log = structlog.get_logger().bind(tool="configure_session", session_id=session_id)
    log.info("handler_called", urls=len(source_urls))

    try:
        validated = ConfigureSessionInput(
            session_id=session_id,
            source_urls=source_urls,
            headers=headers or {},
            cache_ttl_seconds=cache_ttl_seconds,
            rate_limit=rate_limit,
        )
    except ValueError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a session id and at least one http(s) document URL.",
            recoverable=False,
        ) from exc

    output = state.service.configure_session(
        validated.session_id,
        validated.source_urls,
        headers=validated.headers,
        cache_ttl=(
            timedelta(seconds=validated.cache_ttl_seconds)
            if validated.cache_ttl_seconds is not None
            else None
        ),
        rate_limit=validated.rate_limit,
    )
    return output.model_dump(mode="json")
