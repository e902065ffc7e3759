"""Tool handler for search_endpoints.

Receives AppState, validates input, and delegates to SearchService.search.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from apidex.errors import ApidexError, ErrorCode
from apidex.models.tools import SearchEndpointsInput

if TYPE_CHECKING:
    from apidex.models.tools import SearchType
    from apidex.state import AppState


async def handle(
    source_url: str | None,
    session_id: str | None,
    search_type: SearchType,
    query: str,
    methods: list[str] | None,
    limit: int | None,
    state: AppState,
) -> dict:
    """Handle a search_endpoints tool call."""
    log = structlog.get_logger().bind(tool="search_endpoints", session_id=session_id)
    log.info("handler_called", search_type=search_type, query=query)

    try:
        validated = SearchEndpointsInput(
            source_url=source_url,
            session_id=session_id,
            search_type=search_type,
            query=query,
            methods=methods,
            limit=limit,
        )
    except ValueError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="search_type is one of keywords, tags, pattern; limit is 1-200.",
            recoverable=False,
        ) from exc

    output = await state.service.search(
        validated.source_url,
        validated.session_id,
        validated.search_type,
        validated.query,
        methods=validated.methods,
        limit=validated.limit,
    )
    return output.model_dump(mode="json")
