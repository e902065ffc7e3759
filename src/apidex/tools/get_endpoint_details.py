"""Tool handler for get_endpoint_details."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from apidex.errors import ApidexError, ErrorCode
from apidex.models.tools import GetEndpointDetailsInput

if TYPE_CHECKING:
    from apidex.state import AppState


async def handle(
    source_url: str | None,
    session_id: str | None,
    endpoint_paths: list[str],
    methods: list[str] | None,
    state: AppState,
) -> dict:
    """Handle a get_endpoint_details tool call."""
    log = structlog.get_logger().bind(tool="get_endpoint_details", session_id=session_id)
    log.info("handler_called", paths=len(endpoint_paths))

    try:
        validated = GetEndpointDetailsInput(
            source_url=source_url,
            session_id=session_id,
            endpoint_paths=endpoint_paths,
            methods=methods,
        )
    except ValueError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide between 1 and 50 endpoint paths.",
            recoverable=False,
        ) from exc

    output = await state.service.get_details(
        validated.source_url,
        validated.session_id,
        validated.endpoint_paths,
        methods=validated.methods,
    )
    log.info("details_complete", found=len(output.endpoints), requested=output.requested)
    return output.model_dump(mode="json")
