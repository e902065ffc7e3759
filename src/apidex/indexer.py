"""Document indexing: fetch, build, cache, refresh and warm-start.

The pure part (tokenising and scoring, building a DocumentIndex from a
validated ApiDescription) has no I/O and is exercised directly by tests. The
DocumentIndexer class wraps it with the fetcher, the in-memory BoundedCache and
the best-effort SnapshotStore.

Freshness is tracked per index key in DocumentFetchMetadata:
  expires_at  downloaded_at + the session's cache TTL
  checked_at  last time the source confirmed the content (fetch or 304)
"""

from __future__ import annotations

import re
import time
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from apidex.codec import decode_snapshot, encode_snapshot
from apidex.document import parse_api_description
from apidex.errors import ApidexError, ErrorCode
from apidex.fetcher import hash_url
from apidex.models.index import (
    DocumentFetchMetadata,
    DocumentIndex,
    IndexMetadata,
    OperationSummary,
    ScoredMatch,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from apidex.bounded_cache import BoundedCache
    from apidex.config import FetcherSettings
    from apidex.document import ApiDescription
    from apidex.protocols import FetcherProtocol, SnapshotStoreProtocol

log = structlog.get_logger()

STOP_WORDS: frozenset[str] = frozenset(
    {
        "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
        "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
        "has", "had", "do", "does", "did", "will", "would", "could", "should",
        "may", "might", "can", "must", "this", "that", "these", "those",
    }
)  # fmt: skip

_TOKEN_SPLIT = re.compile(r"[^a-z0-9]+")

# Per-field weights for a token found in an operation's indexed text
PATH_SEGMENT_WEIGHT = 1.0
PATH_SUBSTRING_WEIGHT = 0.8
OPERATION_ID_WEIGHT = 0.6
TAG_WEIGHT = 0.5
SUMMARY_WEIGHT = 0.4
DESCRIPTION_WEIGHT = 0.3


def _utcnow() -> datetime:
    return datetime.now(UTC)


def index_key(source_url: str, session_id: str) -> str:
    """Cache identity of one (source, session) index."""
    return f"{hash_url(source_url)}_{session_id}"


# ---------------------------------------------------------------------------
# Pure indexing
# ---------------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Lowercase, split on non-alphanumerics, drop short tokens and stop words.

    Order is preserved and duplicates are removed.
    """
    seen: dict[str, None] = {}
    for token in _TOKEN_SPLIT.split(text.lower()):
        if len(token) < 2 or token in STOP_WORDS:
            continue
        seen.setdefault(token)
    return list(seen)


def path_segments(path: str) -> list[str]:
    """``/users/{id}/posts`` → ``["users", "id", "posts"]`` (lowercased)."""
    return [segment.strip("{}").lower() for segment in path.split("/") if segment]


def operation_tokens(operation: OperationSummary) -> list[str]:
    text = " ".join(
        [
            operation.path,
            operation.summary or "",
            operation.description or "",
            operation.operation_id or "",
            *operation.tags,
        ]
    )
    return tokenize(text)


def score_token(token: str, operation: OperationSummary) -> float:
    """Additive relevance of one token for one operation."""
    score = 0.0
    path = operation.path.lower()
    if token in path_segments(operation.path):
        score += PATH_SEGMENT_WEIGHT
    elif token in path:
        score += PATH_SUBSTRING_WEIGHT
    if operation.summary and token in operation.summary.lower():
        score += SUMMARY_WEIGHT
    if operation.description and token in operation.description.lower():
        score += DESCRIPTION_WEIGHT
    if any(token in tag.lower() for tag in operation.tags):
        score += TAG_WEIGHT
    if operation.operation_id and token in operation.operation_id.lower():
        score += OPERATION_ID_WEIGHT
    return score


def _text(value: object) -> str | None:
    return value if isinstance(value, str) and value else None


def summarize_operation(path: str, method: str, operation: dict) -> OperationSummary:
    raw_tags = operation.get("tags")
    tags = [tag for tag in raw_tags if isinstance(tag, str)] if isinstance(raw_tags, list) else []
    return OperationSummary(
        method=method.upper(),
        path=path,
        summary=_text(operation.get("summary")),
        description=_text(operation.get("description")),
        operation_id=_text(operation.get("operationId")),
        tags=tags,
    )


def build_document_index(description: ApiDescription, *, built_at: datetime) -> DocumentIndex:
    """Build path, tag and keyword indexes from a validated description."""
    path_index: dict[str, OperationSummary] = {}
    tag_index: dict[str, list[str]] = {}
    keyword_index: dict[str, list[ScoredMatch]] = {}
    tags: list[str] = []

    for path, method, operation in description.operations():
        summary = summarize_operation(path, method, operation)
        path_index[f"{summary.method}-{path}"] = summary

        for tag in summary.tags:
            if tag not in tag_index:
                tags.append(tag)
            paths = tag_index.setdefault(tag, [])
            if path not in paths:
                paths.append(path)

        for token in operation_tokens(summary):
            keyword_index.setdefault(token, []).append(
                ScoredMatch(
                    path=path,
                    method=summary.method,
                    relevance=score_token(token, summary),
                    description=summary.description or summary.summary,
                )
            )

    return DocumentIndex(
        metadata=IndexMetadata(
            title=description.info.title,
            version=description.info.version,
            total_operations=len(path_index),
            tags=tags,
            base_url=description.base_url,
        ),
        tag_index=tag_index,
        path_index=path_index,
        keyword_index=keyword_index,
        built_at=built_at,
    )


# ---------------------------------------------------------------------------
# DocumentIndexer
# ---------------------------------------------------------------------------


class DocumentIndexer:
    """Builds and caches one DocumentIndex per (source URL, session) pair."""

    def __init__(
        self,
        *,
        fetcher: FetcherProtocol,
        cache: BoundedCache[DocumentIndex],
        settings: FetcherSettings,
        store: SnapshotStoreProtocol | None = None,
        default_cache_ttl: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._fetcher = fetcher
        self._cache = cache
        self._settings = settings
        self._store = store
        self._default_cache_ttl = default_cache_ttl
        self._clock = clock
        self._metadata: dict[str, DocumentFetchMetadata] = {}

    @property
    def cache(self) -> BoundedCache[DocumentIndex]:
        return self._cache

    async def build_index(
        self,
        source_url: str,
        session_id: str,
        *,
        headers: dict[str, str] | None = None,
        cache_ttl: timedelta | None = None,
    ) -> DocumentIndex:
        """Fetch the document and replace the cached index for this key.

        The first build for a key falls back to probing common document
        locations when ``source_url`` is missing or is not an API description.
        Later builds fetch from wherever the document was found.

        Raises ApidexError (INVALID_DOCUMENT, UPSTREAM_FETCH_FAILED, TIMEOUT,
        NOT_FOUND). Nothing is cached when it raises.
        """
        key = index_key(source_url, session_id)
        started = time.monotonic()
        previous = self._cache.peek(key)
        previous_metadata = self._metadata.get(key)
        fetch_url = source_url
        if previous_metadata is not None and previous_metadata.document_url:
            fetch_url = previous_metadata.document_url

        try:
            document = await self._fetcher.fetch_document(
                fetch_url, headers, timeout=self._settings.document_timeout_seconds
            )
            description = parse_api_description(document.body, source_url=fetch_url)
        except ApidexError as exc:
            if previous_metadata is not None or not self._can_discover(exc):
                raise
            discovered = await self._fetcher.discover_document(
                source_url, headers, timeout=self._settings.discovery_timeout_seconds
            )
            if discovered is None:
                raise
            document = discovered
            description = parse_api_description(document.body, source_url=document.url)

        now = self._clock()
        if (
            previous is not None
            and previous_metadata is not None
            and previous_metadata.content_hash == document.content_hash
        ):
            index = previous
            log.info("index_unchanged", key=key, source_url=source_url)
        else:
            index = build_document_index(description, built_at=now)

        metadata = DocumentFetchMetadata(
            validator=document.validator,
            content_hash=document.content_hash,
            downloaded_at=now,
            expires_at=now + (cache_ttl or self._default_cache_ttl),
            checked_at=now,
            document_url=document.url if document.url != source_url else None,
        )
        self._cache.set(key, index)
        self._metadata[key] = metadata

        if self._store is not None:
            await self._store.save_index(key, source_url, encode_snapshot(index, metadata))

        log.info(
            "index_built",
            key=key,
            source_url=source_url,
            spec_version=description.spec_version,
            operations=index.metadata.total_operations,
            tags=len(index.metadata.tags),
            keywords=len(index.keyword_index),
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return index

    async def needs_refresh(
        self,
        source_url: str,
        session_id: str,
        *,
        headers: dict[str, str] | None = None,
        cache_ttl: timedelta | None = None,
    ) -> bool:
        """Decide whether the cached index must be rebuilt.

        True without network when nothing is cached or the TTL has elapsed.
        False without network when the source confirmed the content within
        ``revalidate_interval_seconds``. Otherwise asks the source with a
        conditional request; only ``304`` keeps the index and extends its
        expiry.
        """
        key = index_key(source_url, session_id)
        if not self._cache.has(key):
            self._metadata.pop(key, None)
            return True
        metadata = self._metadata.get(key)
        if metadata is None:
            return True

        now = self._clock()
        if now > metadata.expires_at:
            log.debug("index_expired", key=key)
            return True
        revalidate_after = timedelta(seconds=self._settings.revalidate_interval_seconds)
        if now - metadata.checked_at < revalidate_after:
            return False
        if metadata.validator.is_empty:
            return True

        try:
            unmodified = await self._fetcher.is_unmodified(
                metadata.document_url or source_url,
                metadata.validator,
                headers,
                timeout=self._settings.conditional_timeout_seconds,
            )
        except ApidexError as exc:
            log.info("conditional_check_failed", key=key, code=exc.code, reason=exc.message)
            return True

        if not unmodified:
            return True
        metadata.checked_at = now
        metadata.expires_at = now + (cache_ttl or self._default_cache_ttl)
        log.debug("index_revalidated", key=key, expires_at=metadata.expires_at.isoformat())
        return False

    async def load_with_auto_refresh(
        self,
        source_url: str,
        session_id: str,
        *,
        headers: dict[str, str] | None = None,
        cache_ttl: timedelta | None = None,
    ) -> DocumentIndex:
        """Return a fresh index, touching the network only when needed."""
        key = index_key(source_url, session_id)
        if not self._cache.has(key):
            await self._restore(key)

        if not await self.needs_refresh(
            source_url, session_id, headers=headers, cache_ttl=cache_ttl
        ):
            index = self._cache.get(key)
            if index is not None:
                return index

        return await self.build_index(source_url, session_id, headers=headers, cache_ttl=cache_ttl)

    def cached_index(self, source_url: str, session_id: str) -> DocumentIndex | None:
        """The live cached index, if any, without counting a lookup."""
        return self._cache.peek(index_key(source_url, session_id))

    def fetch_metadata(self, source_url: str, session_id: str) -> DocumentFetchMetadata | None:
        return self._metadata.get(index_key(source_url, session_id))

    def document_url(self, source_url: str, session_id: str) -> str:
        """Where the document behind ``source_url`` is actually served from."""
        metadata = self.fetch_metadata(source_url, session_id)
        if metadata is None or metadata.document_url is None:
            return source_url
        return metadata.document_url

    def is_expired(self, source_url: str, session_id: str) -> bool:
        """True when no freshness record exists or its TTL has elapsed."""
        metadata = self.fetch_metadata(source_url, session_id)
        return metadata is None or self._clock() > metadata.expires_at

    async def forget(self, source_url: str, session_id: str) -> bool:
        """Drop one index from memory and disk. True if it was cached."""
        key = index_key(source_url, session_id)
        removed = self._cache.delete(key)
        self._metadata.pop(key, None)
        if self._store is not None:
            await self._store.delete_index(key)
        return removed

    async def clear(self) -> int:
        """Drop every index from memory and disk. Returns how many were cached."""
        removed = self._cache.clear()
        self._metadata.clear()
        if self._store is not None:
            await self._store.clear()
        return removed

    def _can_discover(self, exc: ApidexError) -> bool:
        return self._settings.discover_documents and exc.code in (
            ErrorCode.INVALID_DOCUMENT,
            ErrorCode.NOT_FOUND,
        )

    async def _restore(self, key: str) -> bool:
        if self._store is None:
            return False
        payload = await self._store.load_index(key)
        if payload is None:
            return False
        snapshot = decode_snapshot(payload)
        if snapshot is None:
            return False
        self._cache.set(key, snapshot.index)
        self._metadata[key] = snapshot.metadata
        log.info(
            "index_restored",
            key=key,
            operations=snapshot.index.metadata.total_operations,
            downloaded_at=snapshot.metadata.downloaded_at.isoformat(),
        )
        return True
