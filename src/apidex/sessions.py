"""Session registry: per-caller source URLs, headers, TTL and rate-limit hints.

Lookups never raise for unknown ids; they return ``None`` / ``False`` and
leave error reporting to the service layer.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import structlog

from apidex.bounded_cache import MEMORY_PRESSURE_RATIO, process_memory_mb
from apidex.models.session import RegistryStats, Session, SessionConfig
from apidex.schedulers import PeriodicTask

if TYPE_CHECKING:
    from collections.abc import Callable

log = structlog.get_logger()


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SessionRegistry:
    """In-memory session table with a background expiry sweep."""

    def __init__(
        self,
        *,
        default_cache_ttl: timedelta = timedelta(minutes=10),
        max_sessions: int = 100,
        sweep_interval_seconds: float = 5 * 60,
        memory_threshold_mb: float = 512,
        clock: Callable[[], datetime] = _utcnow,
        memory_reader: Callable[[], float] = process_memory_mb,
    ) -> None:
        self.default_cache_ttl = default_cache_ttl
        self.max_sessions = max_sessions
        self.memory_threshold_mb = memory_threshold_mb
        self._clock = clock
        self._memory_reader = memory_reader
        self._sessions: dict[str, Session] = {}
        self._sweeper = PeriodicTask("session_sweep", sweep_interval_seconds, self._scheduled_sweep)

    def start(self) -> None:
        """Start the periodic expiry sweep. Requires a running event loop."""
        self._sweeper.start()

    async def aclose(self) -> None:
        await self._sweeper.stop()

    def create_or_update(self, session_id: str, config: SessionConfig) -> Session:
        now = self._clock()
        existing = self._sessions.get(session_id)

        if existing is None and len(self._sessions) >= self.max_sessions:
            if not self._evict_oldest_inactive():
                log.warning(
                    "session_limit_exceeded",
                    max_sessions=self.max_sessions,
                    total=len(self._sessions),
                )

        session = Session(
            id=session_id,
            source_urls=list(config.source_urls),
            headers=dict(config.headers),
            cache_ttl=config.cache_ttl or self.default_cache_ttl,
            rate_limit=config.rate_limit,
            created_at=existing.created_at if existing is not None else now,
            last_accessed=now,
            active=True,
        )
        self._sessions[session_id] = session
        log.info(
            "session_updated" if existing is not None else "session_created",
            session_id=session_id,
            urls=len(session.source_urls),
            cache_ttl_seconds=session.cache_ttl.total_seconds(),
        )
        return session

    def get(self, session_id: str) -> Session | None:
        """Return the session and refresh its access time.

        An expired or deactivated session is removed and reported as absent.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        now = self._clock()
        if not session.active or self._is_expired(session, now):
            del self._sessions[session_id]
            log.info("session_expired", session_id=session_id)
            return None
        session.last_accessed = now
        return session

    def touch(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.last_accessed = self._clock()
        return True

    def deactivate(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.active = False
        log.info("session_deactivated", session_id=session_id)
        return True

    def remove(self, session_id: str) -> bool:
        if self._sessions.pop(session_id, None) is None:
            return False
        log.info("session_removed", session_id=session_id)
        return True

    def active_sessions(self) -> list[Session]:
        return [session for session in self._sessions.values() if session.active]

    def sweep_expired(self) -> int:
        """Remove inactive sessions and sessions idle longer than their TTL."""
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.active or self._is_expired(session, now)
        ]
        for session_id in expired:
            del self._sessions[session_id]
        if expired:
            log.info("session_sweep_complete", removed=len(expired))
        return len(expired)

    def stats(self) -> RegistryStats:
        memory_mb = self._memory_reader()
        return RegistryStats(
            active_count=sum(1 for session in self._sessions.values() if session.active),
            total_count=len(self._sessions),
            memory_estimate_mb=round(memory_mb, 2),
            memory_threshold_mb=self.memory_threshold_mb,
            memory_warning=memory_mb > self.memory_threshold_mb * MEMORY_PRESSURE_RATIO,
        )

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def _is_expired(self, session: Session, now: datetime) -> bool:
        ttl = session.cache_ttl or self.default_cache_ttl
        return now - session.last_accessed > ttl

    def _evict_oldest_inactive(self) -> bool:
        inactive = [session for session in self._sessions.values() if not session.active]
        if not inactive:
            return False
        oldest = min(inactive, key=lambda session: session.last_accessed)
        del self._sessions[oldest.id]
        log.info("session_evicted", session_id=oldest.id, reason="capacity")
        return True

    def _scheduled_sweep(self) -> None:
        self.sweep_expired()
        stats = self.stats()
        if stats.memory_warning:
            log.warning(
                "session_memory_near_threshold",
                memory_mb=stats.memory_estimate_mb,
                threshold_mb=stats.memory_threshold_mb,
            )
