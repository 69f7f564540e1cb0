"""Background scheduler driving the holding poll loop."""

import logging
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config import POLL_INTERVAL
from app.services.monitor import HoldingMonitor

logger = logging.getLogger(__name__)


async def run_poll_cycle(monitor: HoldingMonitor) -> None:
    """Poll every holding of every user once."""
    try:
        await monitor.poll_all()
    except Exception as e:
        # Listing users/holdings failed; the next tick tries again
        logger.error(f"Poll cycle failed: {e!r}")


def start_scheduler(
    monitor: HoldingMonitor, interval: int = POLL_INTERVAL
) -> AsyncIOScheduler:
    """Start the background scheduler. The first cycle runs immediately."""
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_poll_cycle,
        trigger=IntervalTrigger(seconds=interval),
        args=[monitor],
        id="poll_holdings",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
        next_run_time=datetime.now(),
    )
    scheduler.start()
    logger.info(f"Scheduler started, polling every {interval}s")
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the background scheduler."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
