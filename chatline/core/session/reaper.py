"""Session reaper: background sweep that evicts idle conversations.

Best-effort memory hygiene. An evicted conversation simply starts with a
fresh context the next time its identifier is used.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta

import structlog

from chatline.core.session.store import SessionStore, should_evict

logger = structlog.get_logger()

DEFAULT_SWEEP_INTERVAL = timedelta(minutes=60)


class SessionReaper:
    """Periodically evicts sessions idle beyond the store's timeout."""

    def __init__(
        self,
        store: SessionStore,
        interval: timedelta = DEFAULT_SWEEP_INTERVAL,
    ) -> None:
        self.store = store
        self.interval = interval
        self._running = False
        self._loop_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def sweep(self, now: datetime | None = None) -> list[str]:
        """Evict every idle session. Returns the evicted conversation ids.

        Candidates come from an unlocked snapshot; each eviction re-checks
        idleness under that conversation's lock.
        """
        now = now or self.store.now()
        evicted: list[str] = []

        for conversation_id, last_activity in self.store.snapshot():
            if not should_evict(last_activity, now, self.store.idle_timeout):
                continue
            if await self.store.evict_if_idle(conversation_id, now):
                evicted.append(conversation_id)

        if evicted:
            logger.info("sweep_completed", evicted=len(evicted), remaining=len(self.store))
        return evicted

    async def start(self) -> None:
        """Start the sweep loop."""
        if self._running:
            logger.warning("reaper_already_running")
            return

        self._running = True
        self._loop_task = asyncio.create_task(self._sweep_loop())
        logger.info("reaper_started", interval_seconds=self.interval.total_seconds())

    async def stop(self) -> None:
        """Stop the sweep loop."""
        self._running = False
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None
        logger.info("reaper_stopped")

    async def _sweep_loop(self) -> None:
        """Main sweep loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval.total_seconds())
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("reaper_loop_error", error=str(e))
