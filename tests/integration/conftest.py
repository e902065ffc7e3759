"""Integration test fixtures.

Provides a fully wired AppState with in-memory SQLite and a real
httpx.AsyncClient whose requests respx intercepts per test. Document fixtures
come from tests/conftest.py (sample_document, source_url).
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from typing import TYPE_CHECKING

import aiosqlite
import httpx
import pytest

from apidex.config import Settings
from apidex.server import build_service
from apidex.state import AppState
from apidex.store import SnapshotStore

if TYPE_CHECKING:
    from pathlib import Path


def _run_mcp_exchange(env: dict[str, str], calls: list[dict]) -> list[dict]:
    """Initialize a stdio server subprocess, send ``calls``, return every response.

    Request ids 1.. are assigned to ``calls`` in order after the handshake.
    """
    proc = subprocess.Popen(
        [sys.executable, "-m", "apidex.server"],
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        env=env,
    )
    assert proc.stdin is not None
    assert proc.stdout is not None
    assert proc.stderr is not None

    messages: list[dict] = [
        {
            "jsonrpc": "2.0",
            "id": 0,
            "method": "initialize",
            "params": {
                "protocolVersion": "2025-11-25",
                "capabilities": {},
                "clientInfo": {"name": "pytest", "version": "0"},
            },
        },
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
    ]
    messages += [{"jsonrpc": "2.0", "id": i, **call} for i, call in enumerate(calls, start=1)]

    for message in messages:
        proc.stdin.write(json.dumps(message) + "\n")
    proc.stdin.flush()

    # Keep stdin open until every request is answered: closing it ends the
    # server's receive loop and drops responses still in flight.
    expected_ids = {message["id"] for message in messages if "id" in message}
    responses: list[dict] = []
    while expected_ids:
        line = proc.stdout.readline()
        if not line:
            break
        if line.strip():
            response = json.loads(line)
            responses.append(response)
            expected_ids.discard(response.get("id"))

    proc.stdin.close()
    proc.stderr.read()  # Drain for clean process shutdown on all platforms
    proc.wait(timeout=10)
    proc.stdout.close()
    proc.stderr.close()
    return responses


@pytest.fixture()
def mcp_exchange():
    """``mcp_exchange(env, calls)`` runs one stdio session against a fresh server."""
    return _run_mcp_exchange


@pytest.fixture()
def subprocess_env(tmp_path: Path) -> dict[str, str]:
    """Baseline env dict for subprocess-based MCP integration tests.

    Overrides any local apidex.yaml by forcing stdio transport and pointing
    the snapshot database at an isolated tmp directory.
    """
    env = os.environ.copy()
    env["APIDEX__SERVER__TRANSPORT"] = "stdio"
    env["APIDEX__CACHE__DB_PATH"] = str(tmp_path / "cache.db")
    env["APIDEX__LOGGING__LEVEL"] = "WARNING"
    return env


@pytest.fixture()
async def app_state() -> AppState:
    """Full AppState wired the same way the server lifespan wires it."""
    async with aiosqlite.connect(":memory:") as db:
        store = SnapshotStore(db)
        await store.init_db()

        async with httpx.AsyncClient() as client:
            settings = Settings()
            state = AppState(
                settings=settings,
                service=build_service(settings, client, store),
                http_client=client,
                store=store,
            )
            yield state
