"""Tests for the background poll scheduler."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.tasks.scheduler import run_poll_cycle, start_scheduler, stop_scheduler


@pytest.mark.asyncio
async def test_run_poll_cycle_calls_monitor():
    monitor = MagicMock()
    monitor.poll_all = AsyncMock(return_value=[])
    await run_poll_cycle(monitor)
    monitor.poll_all.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_poll_cycle_survives_errors():
    monitor = MagicMock()
    monitor.poll_all = AsyncMock(side_effect=RuntimeError("database is locked"))
    # Must not raise; the next tick retries
    await run_poll_cycle(monitor)


@pytest.mark.asyncio
async def test_start_and_stop_scheduler():
    monitor = MagicMock()
    monitor.poll_all = AsyncMock(return_value=[])
    scheduler = start_scheduler(monitor, interval=3600)
    try:
        assert scheduler.running
        job = scheduler.get_job("poll_holdings")
        assert job is not None
        assert job.max_instances == 1
    finally:
        stop_scheduler(scheduler)
    assert not scheduler.running
