"""Application state container.

AppState is created once at server startup (inside the FastMCP lifespan context
manager) and injected into every tool handler via the MCP Context object. Tests
build it directly with in-memory SQLite and a mocked HTTP transport.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import httpx

    from apidex.config import Settings
    from apidex.protocols import SnapshotStoreProtocol
    from apidex.service import SearchService


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every tool handler."""

    settings: Settings
    service: SearchService

    http_client: httpx.AsyncClient | None = None
    store: SnapshotStoreProtocol | None = None
