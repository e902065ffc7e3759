"""Versioned on-disk encoding of document indexes.

A snapshot is a JSON object ``{"format_version": 1, "index": ..., "metadata":
...}``. Decoding never raises: a corrupt payload or an unknown format version
is logged and reported as ``None`` so callers treat it as a cache miss.
"""

from __future__ import annotations

import structlog
from pydantic import BaseModel, ValidationError

from apidex.models.index import DocumentFetchMetadata, DocumentIndex

log = structlog.get_logger()

INDEX_FORMAT_VERSION = 1


class IndexSnapshot(BaseModel):
    format_version: int = INDEX_FORMAT_VERSION
    index: DocumentIndex
    metadata: DocumentFetchMetadata


def encode_snapshot(index: DocumentIndex, metadata: DocumentFetchMetadata) -> str:
    return IndexSnapshot(index=index, metadata=metadata).model_dump_json()


def decode_snapshot(payload: str) -> IndexSnapshot | None:
    try:
        snapshot = IndexSnapshot.model_validate_json(payload)
    except ValidationError:
        log.warning("snapshot_decode_error", exc_info=True)
        return None
    if snapshot.format_version != INDEX_FORMAT_VERSION:
        log.info(
            "snapshot_version_mismatch",
            found=snapshot.format_version,
            expected=INDEX_FORMAT_VERSION,
        )
        return None
    return snapshot
