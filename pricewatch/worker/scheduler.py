"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from pricewatch.config import settings
from pricewatch.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)


def setup_scheduler(task_runner: TaskRunner) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    One recurring tick polls for due items. APScheduler's max_instances keeps
    ticks from overlapping inside this process; the task runner's
    single-flight lock covers other processes and manual triggers.

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    tick_seconds = max(1, int(settings.scheduler_tick_seconds))

    scheduler.add_job(
        task_runner.run_due_checks,
        IntervalTrigger(seconds=tick_seconds),
        id="price_check",
        name="Check tracked items that are due",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=tick_seconds,
        replace_existing=True,
    )

    logger.info("Scheduler configured: price check tick every %d seconds", tick_seconds)
    return scheduler
