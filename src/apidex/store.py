"""SQLite snapshot store for document indexes and operation details.

All store operations catch ``aiosqlite.Error`` and undecodable rows internally
and degrade gracefully: read failures return ``None`` (treated as a miss by
callers), write failures are logged and ignored. Infrastructure errors never
cross the SnapshotStore class boundary. Deleting the database file at any time
only costs a re-fetch.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta

import aiosqlite
import structlog

from apidex.models.index import OperationDetail

log = structlog.get_logger()

_CREATE_INDEX_TABLE = """
CREATE TABLE IF NOT EXISTS index_snapshots (
    cache_key  TEXT PRIMARY KEY,
    source_url TEXT NOT NULL,
    payload    TEXT NOT NULL,
    saved_at   TEXT NOT NULL
)
"""

_CREATE_DETAILS_TABLE = """
CREATE TABLE IF NOT EXISTS operation_details (
    memo_key   TEXT PRIMARY KEY,
    path       TEXT NOT NULL,
    method     TEXT NOT NULL,
    definition TEXT NOT NULL,
    stored_at  TEXT NOT NULL
)
"""

_CREATE_DETAILS_INDEX = (
    "CREATE INDEX IF NOT EXISTS idx_details_stored ON operation_details(stored_at)"
)


class SnapshotStore:
    """SQLite-backed store implementing SnapshotStoreProtocol."""

    def __init__(self, db: aiosqlite.Connection) -> None:
        self._db = db

    async def init_db(self) -> None:
        """Create tables and set WAL mode. Called once at startup."""
        await self._db.execute("PRAGMA journal_mode = WAL")
        await self._db.execute(_CREATE_INDEX_TABLE)
        await self._db.execute(_CREATE_DETAILS_TABLE)
        await self._db.execute(_CREATE_DETAILS_INDEX)
        await self._db.commit()

    # ------------------------------------------------------------------
    # Index snapshots
    # ------------------------------------------------------------------

    async def load_index(self, key: str) -> str | None:
        """Read an encoded snapshot. Returns ``None`` on miss or read failure."""
        try:
            cursor = await self._db.execute(
                "SELECT payload FROM index_snapshots WHERE cache_key = ?", (key,)
            )
            row = await cursor.fetchone()
            return row[0] if row is not None else None
        except aiosqlite.Error:
            log.warning("store_read_error", key=f"index:{key}", exc_info=True)
            return None

    async def save_index(self, key: str, source_url: str, payload: str) -> None:
        """Write an encoded snapshot. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO index_snapshots "
                "(cache_key, source_url, payload, saved_at) VALUES (?, ?, ?, ?)",
                (key, source_url, payload, datetime.now(UTC).isoformat()),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=f"index:{key}", exc_info=True)

    async def delete_index(self, key: str) -> None:
        try:
            await self._db.execute("DELETE FROM index_snapshots WHERE cache_key = ?", (key,))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=f"index:{key}", exc_info=True)

    # ------------------------------------------------------------------
    # Operation details
    # ------------------------------------------------------------------

    async def get_details(self, key: str, max_age_minutes: float) -> OperationDetail | None:
        """Read a memoised operation.

        Entries older than ``max_age_minutes`` are deleted and reported as a
        miss. So are rows that no longer decode.
        """
        try:
            cursor = await self._db.execute(
                "SELECT path, method, definition, stored_at FROM operation_details "
                "WHERE memo_key = ?",
                (key,),
            )
            row = await cursor.fetchone()
        except aiosqlite.Error:
            log.warning("store_read_error", key=f"details:{key}", exc_info=True)
            return None
        if row is None:
            return None

        try:
            stored_at = datetime.fromisoformat(row[3])
            expired = datetime.now(UTC) - stored_at > timedelta(minutes=max_age_minutes)
            detail = OperationDetail(path=row[0], method=row[1], definition=json.loads(row[2]))
        except (ValueError, TypeError):
            log.warning("store_read_error", key=f"details:{key}", exc_info=True)
            await self._delete_details(key)
            return None

        if expired:
            await self._delete_details(key)
            log.debug("store_details_expired", key=key)
            return None
        return detail

    async def set_details(self, key: str, detail: OperationDetail) -> None:
        """Write a memoised operation. Non-fatal on failure."""
        try:
            await self._db.execute(
                "INSERT OR REPLACE INTO operation_details "
                "(memo_key, path, method, definition, stored_at) VALUES (?, ?, ?, ?, ?)",
                (
                    key,
                    detail.path,
                    detail.method,
                    json.dumps(detail.definition, default=str),
                    datetime.now(UTC).isoformat(),
                ),
            )
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=f"details:{key}", exc_info=True)

    async def _delete_details(self, key: str) -> None:
        try:
            await self._db.execute("DELETE FROM operation_details WHERE memo_key = ?", (key,))
            await self._db.commit()
        except aiosqlite.Error:
            log.warning("store_write_error", key=f"details:{key}", exc_info=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear(self) -> int:
        """Delete every stored row. Returns the number of index snapshots removed."""
        try:
            cursor = await self._db.execute("DELETE FROM index_snapshots")
            removed = cursor.rowcount
            await self._db.execute("DELETE FROM operation_details")
            await self._db.commit()
            log.info("store_cleared", index_snapshots=removed)
            return removed
        except aiosqlite.Error:
            log.warning("store_clear_error", exc_info=True)
            return 0

    async def cleanup_expired(self, max_age_minutes: float) -> None:
        """Delete operation details older than ``max_age_minutes``. Non-fatal on failure."""
        try:
            cutoff = (datetime.now(UTC) - timedelta(minutes=max_age_minutes)).isoformat()
            cursor = await self._db.execute(
                "DELETE FROM operation_details WHERE stored_at < ?", (cutoff,)
            )
            deleted = cursor.rowcount
            await self._db.commit()
            log.info("store_cleanup_complete", details_deleted=deleted)
        except aiosqlite.Error:
            log.warning("store_cleanup_error", exc_info=True)
