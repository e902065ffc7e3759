"""Protocol interfaces for swappable components.

The indexer, details loader and AppState reference these protocols, not the
concrete implementations. This allows:
- Tests to use lightweight in-memory fakes
- Other storage backends to be swapped in without touching the indexer
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from apidex.models.index import FetchedDocument, OperationDetail, Validator


class FetcherProtocol(Protocol):
    """Interface for the outbound document fetcher."""

    async def fetch_document(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> FetchedDocument: ...

    async def is_unmodified(
        self,
        url: str,
        validator: Validator,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> bool: ...

    async def discover_document(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        *,
        timeout: float | None = None,
    ) -> FetchedDocument | None: ...


class SnapshotStoreProtocol(Protocol):
    """Interface for the best-effort on-disk snapshot store."""

    async def load_index(self, key: str) -> str | None: ...

    async def save_index(self, key: str, source_url: str, payload: str) -> None: ...

    async def delete_index(self, key: str) -> None: ...

    async def get_details(self, key: str, max_age_minutes: float) -> OperationDetail | None: ...

    async def set_details(self, key: str, detail: OperationDetail) -> None: ...

    async def clear(self) -> int: ...

    async def cleanup_expired(self, max_age_minutes: float) -> None: ...
