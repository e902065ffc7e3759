"""Fixed-interval background tasks for cache and session sweeps."""

from __future__ import annotations

import asyncio
import inspect
from contextlib import suppress
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = structlog.get_logger()


class PeriodicTask:
    """Run a callback every ``interval_seconds`` until stopped.

    The owning component calls ``start()`` once an event loop is running and
    ``stop()`` on shutdown. Runs never overlap: ``run_once()`` returns False
    without calling the callback while a previous run is still in progress.
    Callback exceptions are logged and the loop keeps going.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        callback: Callable[[], object | Awaitable[object]],
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._callback = callback
        self._task: asyncio.Task[None] | None = None
        self._running = False

    @property
    def started(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self.started:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name=self.name)
        log.debug("periodic_task_started", task=self.name, interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with suppress(asyncio.CancelledError):
            await task
        log.debug("periodic_task_stopped", task=self.name)

    async def run_once(self) -> bool:
        """Invoke the callback now unless a run is already in progress."""
        if self._running:
            log.debug("periodic_task_skipped", task=self.name, reason="already_running")
            return False
        self._running = True
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            log.warning("periodic_task_error", task=self.name, exc_info=True)
        finally:
            self._running = False
        return True

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()
