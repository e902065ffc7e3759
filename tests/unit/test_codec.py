"""Unit tests for apidex.codec."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

from apidex.codec import INDEX_FORMAT_VERSION, decode_snapshot, encode_snapshot
from apidex.models.index import DocumentFetchMetadata, DocumentIndex, Validator


def _metadata() -> DocumentFetchMetadata:
    now = datetime(2026, 1, 1, tzinfo=UTC)
    return DocumentFetchMetadata(
        validator=Validator(etag='"abc"'),
        content_hash="sha256:" + "0" * 64,
        downloaded_at=now,
        expires_at=now + timedelta(minutes=10),
        checked_at=now,
    )


class TestSnapshotCodec:
    def test_decode_restores_index_and_metadata(self, index: DocumentIndex) -> None:
        snapshot = decode_snapshot(encode_snapshot(index, _metadata()))
        assert snapshot is not None
        assert snapshot.index == index
        assert snapshot.metadata.validator.etag == '"abc"'
        assert set(snapshot.index.keyword_index) == set(index.keyword_index)

    def test_payload_declares_format_version(self, index: DocumentIndex) -> None:
        payload = json.loads(encode_snapshot(index, _metadata()))
        assert payload["format_version"] == INDEX_FORMAT_VERSION

    def test_unknown_version_is_a_miss(self, index: DocumentIndex) -> None:
        payload = json.loads(encode_snapshot(index, _metadata()))
        payload["format_version"] = INDEX_FORMAT_VERSION + 1
        assert decode_snapshot(json.dumps(payload)) is None

    def test_corrupt_payload_is_a_miss(self) -> None:
        assert decode_snapshot("{not json") is None
        assert decode_snapshot('{"format_version": 1}') is None
