"""
Tests for the background ticker.
"""
import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest

from postmeeting.exceptions import DatabaseError
from postmeeting.schemas import AppSettings, CycleStats
from postmeeting.ticker import Ticker
from postmeeting.utils import utcnow


@pytest.fixture
def reconciler(store):
    mock = Mock()
    mock.store = store
    mock.sync_calendars = AsyncMock(return_value=1)
    mock.run_cycle = AsyncMock(side_effect=lambda: CycleStats(started_at=utcnow()))
    return mock


@pytest.mark.unit
class TestTick:
    """Test a single ticker step."""

    async def test_first_tick_syncs_then_waits_for_poll_interval(self, reconciler):
        """Test that the first tick syncs and the next waits for the interval."""
        ticker = Ticker(reconciler, tick_seconds=30, initial_delay=0)

        first = await ticker.tick()
        await ticker.tick()

        assert reconciler.sync_calendars.await_count == 1
        assert reconciler.run_cycle.await_count == 2
        assert ticker.last_cycle is not None
        assert first.status == "success"

    async def test_request_sync_forces_next_sync(self, reconciler):
        """Test that a sync request forces the next tick to sync."""
        ticker = Ticker(reconciler, tick_seconds=30, initial_delay=0)
        await ticker.tick()

        ticker.request_sync()
        await ticker.tick()

        assert reconciler.sync_calendars.await_count == 2

    async def test_force_sync(self, reconciler):
        """Test a forced sync."""
        ticker = Ticker(reconciler, tick_seconds=30, initial_delay=0)
        await ticker.tick()
        await ticker.tick(force_sync=True)

        assert reconciler.sync_calendars.await_count == 2

    async def test_sync_interval_has_a_floor(self, reconciler):
        """Test that the sync interval has a floor."""
        ticker = Ticker(reconciler)
        ticker._last_sync = 1000.0

        with patch("postmeeting.ticker.time.monotonic", return_value=1010.0):
            assert ticker._sync_due(1) is False
        with patch("postmeeting.ticker.time.monotonic", return_value=1015.0):
            assert ticker._sync_due(1) is True

    async def test_tick_is_skipped_while_a_cycle_runs(self, reconciler):
        """Test that a tick is skipped while a cycle runs."""
        ticker = Ticker(reconciler, tick_seconds=30, initial_delay=0)

        async with ticker._lock:
            assert ticker.running is True
            assert await ticker.tick() is None

        assert ticker.running is False
        reconciler.run_cycle.assert_not_awaited()

    async def test_concurrent_ticks_do_not_overlap(self, reconciler):
        """Test that concurrent ticks do not overlap."""
        release = asyncio.Event()

        async def slow_cycle():
            await release.wait()
            return CycleStats(started_at=utcnow())

        reconciler.run_cycle = AsyncMock(side_effect=slow_cycle)
        ticker = Ticker(reconciler, tick_seconds=30, initial_delay=0)

        first = asyncio.create_task(ticker.tick())
        await asyncio.sleep(0.01)
        skipped = await ticker.tick()
        release.set()

        assert skipped is None
        assert (await first) is not None
        assert reconciler.run_cycle.await_count == 1

    async def test_settings_failure_uses_defaults(self, reconciler, store):
        """Test that a settings failure falls back to defaults."""
        with patch.object(store, "get_settings", AsyncMock(side_effect=DatabaseError("down"))):
            await Ticker(reconciler).tick()

        reconciler.sync_calendars.assert_awaited_once_with(AppSettings())


@pytest.mark.unit
class TestTickerLoop:
    """Test the background ticker loop."""

    async def test_start_and_stop(self, reconciler):
        """Test starting and stopping the loop."""
        ticker = Ticker(reconciler, tick_seconds=0.01, initial_delay=0)

        ticker.start()
        await asyncio.sleep(0.1)
        await ticker.stop()

        assert reconciler.run_cycle.await_count >= 1
        assert ticker._task is None

    async def test_failing_tick_keeps_loop_alive(self, reconciler):
        """Test that a failing tick does not stop the loop."""
        reconciler.run_cycle = AsyncMock(side_effect=RuntimeError("boom"))
        ticker = Ticker(reconciler, tick_seconds=0.01, initial_delay=0)

        ticker.start()
        await asyncio.sleep(0.1)
        await ticker.stop()

        assert reconciler.run_cycle.await_count >= 2
