"""Shared test fixtures for the apidex test suite."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import aiosqlite
import pytest

from apidex.document import ApiDescription, parse_api_description
from apidex.indexer import build_document_index
from apidex.models.index import DocumentIndex
from apidex.store import SnapshotStore

SAMPLE_URL = "https://api.example.com/openapi.json"
BUILT_AT = datetime(2026, 1, 1, tzinfo=UTC)


def make_document(paths: dict[str, Any], **extra: Any) -> dict[str, Any]:
    """Minimal OpenAPI 3 document around the given path table."""
    return {
        "openapi": "3.0.3",
        "info": {"title": "Test API", "version": "1.0.0"},
        "paths": paths,
        **extra,
    }


def make_index(document: dict[str, Any]) -> DocumentIndex:
    description = parse_api_description(document, source_url=SAMPLE_URL)
    return build_document_index(description, built_at=BUILT_AT)


class FakeClock:
    """Manually advanced clock returning monotonic seconds."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDatetimeClock:
    """Manually advanced UTC wall clock."""

    def __init__(self, start: datetime = BUILT_AT) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture()
def sample_document() -> dict[str, Any]:
    """A small OpenAPI 3 document covering tags, parameters and several verbs."""
    return make_document(
        {
            "/users": {
                "get": {
                    "summary": "List users",
                    "operationId": "listUsers",
                    "tags": ["users"],
                    "responses": {"200": {"description": "OK"}},
                },
                "post": {
                    "summary": "Create user",
                    "operationId": "createUser",
                    "tags": ["users"],
                    "requestBody": {
                        "content": {
                            "application/json": {"schema": {"$ref": "#/components/schemas/User"}}
                        }
                    },
                },
            },
            "/users/{id}": {
                "parameters": [{"name": "id", "in": "path", "required": True}],
                "get": {
                    "summary": "Get user by id",
                    "operationId": "getUser",
                    "tags": ["users"],
                },
                "delete": {
                    "summary": "Delete a user",
                    "description": "Permanently removes the account.",
                    "operationId": "deleteUser",
                    "tags": ["users", "admin"],
                },
            },
            "/health": {
                "get": {
                    "summary": "Health check",
                    "operationId": "healthCheck",
                    "tags": ["system"],
                },
            },
            "/admin/settings": {
                "get": {
                    "summary": "Read admin settings",
                    "operationId": "getAdminSettings",
                    "tags": ["admin"],
                },
                "put": {"summary": "Update admin settings", "tags": ["admin"]},
            },
            "/auth/login": {
                "post": {"summary": "Log in", "operationId": "login", "tags": ["auth"]},
            },
        },
        info={"title": "Example API", "version": "1.2.0"},
        servers=[{"url": "https://api.example.com/v1"}],
        components={"schemas": {"User": {"type": "object"}}},
    )


@pytest.fixture()
def description(sample_document: dict[str, Any]) -> ApiDescription:
    return parse_api_description(sample_document, source_url=SAMPLE_URL)


@pytest.fixture()
def index(sample_document: dict[str, Any]) -> DocumentIndex:
    return make_index(sample_document)


@pytest.fixture()
async def store() -> SnapshotStore:
    async with aiosqlite.connect(":memory:") as db:
        snapshot_store = SnapshotStore(db)
        await snapshot_store.init_db()
        yield snapshot_store


@pytest.fixture()
def source_url() -> str:
    return SAMPLE_URL


@pytest.fixture()
def index_from():
    """Build a DocumentIndex from a path table: ``index_from({"/x": {...}})``."""

    def _build(paths: dict[str, Any], **extra: Any) -> DocumentIndex:
        return make_index(make_document(paths, **extra))

    return _build


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def wall_clock() -> FakeDatetimeClock:
    return FakeDatetimeClock()
