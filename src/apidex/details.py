"""Full operation definitions for individual path+method pairs.

The index never holds full operation bodies. Details are read from the source
document on demand and memoised in the SnapshotStore for
``details_ttl_minutes``. Expired memo rows are pruned on a fixed interval
while the loader is started.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from apidex.document import parse_api_description
from apidex.errors import ApidexError, ErrorCode
from apidex.fetcher import hash_url
from apidex.models.index import OperationDetail
from apidex.schedulers import PeriodicTask
from apidex.singleflight import SingleFlight

if TYPE_CHECKING:
    from apidex.config import FetcherSettings
    from apidex.document import ApiDescription
    from apidex.protocols import FetcherProtocol, SnapshotStoreProtocol

log = structlog.get_logger()


def memo_key(source_url: str, path: str, method: str) -> str:
    return f"{hash_url(source_url)}_{path}_{method.lower()}"


def _operation_not_found(source_url: str, path: str, method: str) -> ApidexError:
    return ApidexError(
        code=ErrorCode.NOT_FOUND,
        message=f"No {method.upper()} operation at {path!r} in {source_url}",
        suggestion="Use search_endpoints to find valid paths and methods.",
        recoverable=False,
    )


class DetailsLoader:
    def __init__(
        self,
        *,
        fetcher: FetcherProtocol,
        settings: FetcherSettings,
        store: SnapshotStoreProtocol | None = None,
        details_ttl_minutes: float = 30,
        cleanup_interval_seconds: float = 15 * 60,
    ) -> None:
        self._fetcher = fetcher
        self._settings = settings
        self._store = store
        self._details_ttl_minutes = details_ttl_minutes
        self._documents: SingleFlight[ApiDescription] = SingleFlight()
        self._cleaner = PeriodicTask("details_cleanup", cleanup_interval_seconds, self.cleanup)

    def start(self) -> None:
        """Start pruning expired memo rows. A no-op without a store."""
        if self._store is not None:
            self._cleaner.start()

    async def aclose(self) -> None:
        await self._cleaner.stop()

    async def cleanup(self) -> None:
        if self._store is not None:
            await self._store.cleanup_expired(self._details_ttl_minutes)

    async def load_details(
        self,
        source_url: str,
        path: str,
        method: str,
        headers: dict[str, str] | None = None,
    ) -> OperationDetail:
        """Return the operation object for ``method path``.

        Raises ApidexError NOT_FOUND when the document has no such operation,
        and propagates fetch and document errors.
        """
        key = memo_key(source_url, path, method)
        if self._store is not None:
            memoised = await self._store.get_details(key, self._details_ttl_minutes)
            if memoised is not None:
                log.debug("details_memo_hit", key=key)
                return memoised

        description = await self._load_document(source_url, headers or {})
        operation = description.operation(path, method)
        if operation is None:
            raise _operation_not_found(source_url, path, method)

        detail = OperationDetail(path=path, method=method.upper(), definition=operation)
        if self._store is not None:
            await self._store.set_details(key, detail)
        return detail

    async def load_models(
        self,
        source_url: str,
        path: str,
        method: str,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Schema models referenced by one operation, keyed by model name.

        Models reached through other models are included. A reference with no
        definition in the document maps to ``None``.
        """
        description = await self._load_document(source_url, headers or {})
        operation = description.operation(path, method)
        if operation is None:
            raise _operation_not_found(source_url, path, method)
        models = description.referenced_models(operation)
        log.debug("models_resolved", path=path, method=method.upper(), models=len(models))
        return models

    async def _load_document(self, source_url: str, headers: dict[str, str]) -> ApiDescription:
        # Concurrent misses for the same source and headers share one fetch
        flight_key = (source_url, tuple(sorted(headers.items())))

        async def fetch() -> ApiDescription:
            document = await self._fetcher.fetch_document(
                source_url, headers, timeout=self._settings.details_timeout_seconds
            )
            log.debug("details_document_fetched", source_url=source_url)
            return parse_api_description(document.body, source_url=source_url)

        return await self._documents.run(flight_key, fetch)
