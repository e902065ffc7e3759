"""Tool handler for get_search_suggestions."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from apidex.errors import ApidexError, ErrorCode
from apidex.models.tools import GetSearchSuggestionsInput

if TYPE_CHECKING:
    from apidex.state import AppState


async def handle(
    source_url: str | None,
    session_id: str | None,
    partial: str,
    limit: int,
    state: AppState,
) -> dict:
    """Handle a get_search_suggestions tool call."""
    log = structlog.get_logger().bind(tool="get_search_suggestions", session_id=session_id)
    log.info("handler_called", partial=partial)

    try:
        validated = GetSearchSuggestionsInput(
            source_url=source_url,
            session_id=session_id,
            partial=partial,
            limit=limit,
        )
    except ValueError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide a partial path or tag (max 500 chars) and a limit of 1-50.",
            recoverable=False,
        ) from exc

    output = await state.service.get_suggestions(
        validated.source_url,
        validated.session_id,
        validated.partial,
        validated.limit,
    )
    return output.model_dump(mode="json")
