"""Tool handler for list_endpoint_models."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from apidex.errors import ApidexError, ErrorCode
from apidex.models.tools import ListEndpointModelsInput

if TYPE_CHECKING:
    from apidex.state import AppState


async def handle(
    source_url: str | None,
    session_id: str | None,
    path: str,
    method: str,
    include_definitions: bool,
    state: AppState,
) -> dict:
    """Handle a list_endpoint_models tool call."""
    log = structlog.get_logger().bind(tool="list_endpoint_models", session_id=session_id)
    log.info("handler_called", path=path, method=method)

    try:
        validated = ListEndpointModelsInput(
            source_url=source_url,
            session_id=session_id,
            path=path,
            method=method,
            include_definitions=include_definitions,
        )
    except ValueError as exc:
        raise ApidexError(
            code=ErrorCode.INVALID_INPUT,
            message=str(exc),
            suggestion="Provide an endpoint path such as /users/{id} and an HTTP method name.",
            recoverable=False,
        ) from exc

    output = await state.service.get_models(
        validated.source_url,
        validated.session_id,
        validated.path,
        validated.method,
        include_definitions=validated.include_definitions,
    )
    log.info("models_complete", models=len(output.models))
    return output.model_dump(mode="json")
