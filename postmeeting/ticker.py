"""
Server-owned timer that runs reconciliation cycles in the background.
"""
import asyncio
import time
from typing import Optional

from postmeeting.config import settings
from postmeeting.exceptions import DatabaseError
from postmeeting.logging_config import get_logger
from postmeeting.reconciler import Reconciler
from postmeeting.schemas import AppSettings, CycleStats

logger = get_logger(__name__)

MIN_POLL_SECONDS = 15


class Ticker:
    """
    Runs a reconciliation cycle every ``tick_seconds`` after a short initial delay.

    Cycles never overlap: the timer and manual triggers share one lock, and a
    tick that finds a cycle in flight is skipped. Calendars are re-synced
    inside a tick once the user's ``poll_seconds`` have elapsed.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        tick_seconds: Optional[float] = None,
        initial_delay: Optional[float] = None,
    ):
        self.reconciler = reconciler
        self.tick_seconds = tick_seconds if tick_seconds is not None else settings.tick_seconds
        self.initial_delay = initial_delay if initial_delay is not None else settings.initial_delay_seconds
        self.last_cycle: Optional[CycleStats] = None
        self._lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None
        self._last_sync: Optional[float] = None

    @property
    def running(self) -> bool:
        """True while a cycle is in flight."""
        return self._lock.locked()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="postmeeting-ticker")
            logger.info("ticker_started", tick_seconds=self.tick_seconds, initial_delay=self.initial_delay)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("ticker_stopped")

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error("ticker_tick_failed", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(self.tick_seconds)

    def request_sync(self) -> None:
        """Make the next tick re-sync calendars regardless of poll_seconds."""
        self._last_sync = None

    def _sync_due(self, poll_seconds: int) -> bool:
        if self._last_sync is None:
            return True
        return time.monotonic() - self._last_sync >= max(MIN_POLL_SECONDS, poll_seconds)

    async def tick(self, force_sync: bool = False) -> Optional[CycleStats]:
        """
        Run one cycle now, re-syncing calendars first when due.

        Returns:
            The cycle's stats, or None if another cycle was already running
        """
        if self._lock.locked():
            logger.info("reconcile_skipped_in_flight")
            return None

        async with self._lock:
            try:
                app_settings = await self.reconciler.store.get_settings()
            except DatabaseError as e:
                logger.warning("settings_load_failed", error=str(e))
                app_settings = AppSettings()

            if force_sync or self._sync_due(app_settings.poll_seconds):
                await self.reconciler.sync_calendars(app_settings)
                self._last_sync = time.monotonic()

            self.last_cycle = await self.reconciler.run_cycle()
            return self.last_cycle
