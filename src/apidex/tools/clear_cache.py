"""Tool handler for clear_cache."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from apidex.errors import ApidexError, ErrorCode
from apidex.models.tools import ClearCacheInput

if TYPE_CHECKING:
    from apidex.state import AppState


async def handle(source_url: str | None, session_id: str | None, state: AppState) -> dict:
    """Handle a clear_cache tool call.

    With neither argument every cached index is dropped.
    """
    log = structlog.get_logger().bind(tool="clear_cache", session_id=session_id)
    log.info("handler_called", source_url=source_url)

    try:
        validated = ClearCacheInput(source_url=source_url, session_id=session_id)
    except ValueError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="source_url must be an http(s) URL; session_id is optional.",
            recoverable=False,
        ) from exc

    output = await state.service.clear_cache(validated.source_url, validated.session_id)
    return output.model_dump(mode="json")
