from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class OperationSummary(BaseModel):
    """Projection of one operation kept for indexing. Never holds schemas."""

    method: str  # Upper-case HTTP verb
    path: str
    summary: str | None = None
    description: str | None = None
    operation_id: str | None = None
    tags: list[str] = []


class ScoredMatch(BaseModel):
    """Single search hit."""

    path: str
    method: str | None = None
    relevance: float = Field(ge=0.0)
    description: str | None = None
    tag: str | None = None


class IndexMetadata(BaseModel):
    title: str
    version: str
    total_operations: int
    tags: list[str] = []  # Unique, in discovery order
    base_url: str | None = None


class DocumentIndex(BaseModel):
    """Compact searchable structure built from one API description.

    Treated as immutable once built: a refresh produces a new instance that
    replaces the cache entry.
    """

    model_config = ConfigDict(frozen=True)

    metadata: IndexMetadata

    # tag → paths carrying it, in discovery order, unique
    tag_index: dict[str, list[str]] = {}

    # "METHOD-path" → operation summary   e.g. "GET-/users/{id}"
    path_index: dict[str, OperationSummary] = {}

    # token → one match per operation whose indexed text contains the token
    keyword_index: dict[str, list[ScoredMatch]] = {}

    built_at: datetime


class Validator(BaseModel):
    """Transport-level validators captured at fetch time."""

    etag: str | None = None
    last_modified: str | None = None

    @property
    def is_empty(self) -> bool:
        return self.etag is None and self.last_modified is None


class DocumentFetchMetadata(BaseModel):
    """Per-document freshness record used to decide whether to re-fetch."""

    validator: Validator = Validator()
    content_hash: str  # "sha256:<hex>" of the canonical JSON body
    downloaded_at: datetime
    expires_at: datetime
    checked_at: datetime  # Last time the source confirmed the content
    # Where the document was found when it differs from the configured URL
    document_url: str | None = None


class FetchedDocument(BaseModel):
    """Parsed body and validators returned by the document fetcher."""

    url: str
    body: dict[str, Any]
    validator: Validator = Validator()
    content_hash: str


class OperationDetail(BaseModel):
    """Full operation definition for one path+method pair."""

    path: str
    method: str
    definition: dict[str, Any]
