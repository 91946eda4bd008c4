"""APScheduler setup for the closing sweep and the hourly ending reminders."""

from datetime import timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from gavel.conf import EngineConf
from gavel.sweeper import ClosingSweeper
from gavel.utils import log

logger = log.get_logger(__name__)

_scheduler: Optional[AsyncIOScheduler] = None


async def closing_sweep_job(sweeper: ClosingSweeper):
    try:
        await sweeper.run_closing_sweep()
    except Exception as e:
        logger.error(f"Closing sweep job failed: {e}", exc_info=True)


async def ending_reminders_job(sweeper: ClosingSweeper):
    try:
        await sweeper.send_ending_reminders()
    except Exception as e:
        logger.error(f"Ending reminders job failed: {e}", exc_info=True)


def init_scheduler(sweeper: ClosingSweeper, conf: EngineConf) -> AsyncIOScheduler:
    """Start the APScheduler with the closing sweep and reminder jobs."""
    global _scheduler
    _scheduler = AsyncIOScheduler()

    _scheduler.add_job(
        closing_sweep_job,
        trigger=IntervalTrigger(seconds=conf.sweep_interval_seconds),
        args=[sweeper],
        id="closing_sweep",
        name="Auction Closing Sweep",
        replace_existing=True,
        max_instances=1,  # prevent overlap
        coalesce=True,
    )

    # Hourly ending-soon reminders (every hour at :00)
    _scheduler.add_job(
        ending_reminders_job,
        trigger=CronTrigger(minute=0, timezone=timezone.utc),
        args=[sweeper],
        id="ending_reminders",
        name="Auction Ending Reminders",
        replace_existing=True,
        max_instances=1,
    )

    _scheduler.start()
    logger.info(
        f"APScheduler started with closing sweep (every {conf.sweep_interval_seconds}s) "
        f"and ending reminders (hourly)"
    )
    return _scheduler


def shutdown_scheduler():
    """Gracefully shut down the scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("APScheduler shut down")
