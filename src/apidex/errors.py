from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    INVALID_SESSION = "INVALID_SESSION"
    INVALID_DOCUMENT = "INVALID_DOCUMENT"
    NOT_FOUND = "NOT_FOUND"
    UPSTREAM_FETCH_FAILED = "UPSTREAM_FETCH_FAILED"
    TIMEOUT = "TIMEOUT"
    INVALID_QUERY = "INVALID_QUERY"
    INVALID_INPUT = "INVALID_INPUT"


class ApidexError(Exception):
    """Raised for all expected failure conditions.

    Caught by server.py and serialised into the MCP error response. Batch
    operations in the service catch it per item; everything else lets it
    propagate so the caller receives a structured error with a suggestion.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


def invalid_session(session_id: str) -> ApidexError:
    return ApidexError(
        code=ErrorCode.INVALID_SESSION,
        message=f"Unknown or expired session: {session_id!r}",
        suggestion="Call configure_session first, or pass the document URL to auto-create one.",
        recoverable=True,
    )
