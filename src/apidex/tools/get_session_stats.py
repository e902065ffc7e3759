"""Tool handler for get_session_stats."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from apidex.errors import ApidexError, ErrorCode
from apidex.models.tools import GetSessionStatsInput

if TYPE_CHECKING:
    from apidex.state import AppState


async def handle(session_id: str, state: AppState) -> dict:
    """Handle a get_session_stats tool call."""
    log = structlog.get_logger().bind(tool="get_session_stats", session_id=session_id)
    log.info("handler_called")

    try:
        validated = GetSessionStatsInput(session_id=session_id)
    except ValueError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a non-empty session id (max 200 chars).",
            recoverable=False,
        ) from exc

    return state.service.get_stats(validated.session_id).model_dump(mode="json")
