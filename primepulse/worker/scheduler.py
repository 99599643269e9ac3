"""APScheduler job definitions."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from primepulse.config import settings
from primepulse.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)


def setup_scheduler(task_runner: TaskRunner) -> AsyncIOScheduler:
    """
    Setup and configure APScheduler.

    Scheduling overview:
    - Crawl/detect cycle for every scope every settings.crawl_interval_minutes
    - Observation retention cleanup daily at 2 AM
    - Weekly prediction report on Sundays at 9 AM

    Returns:
        Configured scheduler instance
    """
    scheduler = AsyncIOScheduler()
    crawl_interval = max(1, int(settings.crawl_interval_minutes))

    scheduler.add_job(
        task_runner.run_crawl,
        IntervalTrigger(minutes=crawl_interval),
        id="main_crawl",
        name="Crawl tracked items and detect price changes",
        max_instances=1,  # Prevent overlapping runs
        coalesce=True,
        misfire_grace_time=600,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.run_daily_cleanup,
        CronTrigger(hour=2, minute=0),
        id="daily_cleanup",
        name="Purge observations past retention",
        max_instances=1,
        replace_existing=True,
    )

    scheduler.add_job(
        task_runner.run_weekly_report,
        CronTrigger(day_of_week="sun", hour=9, minute=0),
        id="weekly_report",
        name="Send weekly prediction report",
        max_instances=1,
        replace_existing=True,
    )

    logger.info(
        "Scheduler configured: crawl every %d minutes, cleanup at 2 AM "
        "(retention %d days), weekly report on Sundays at 9 AM",
        crawl_interval,
        settings.retention_days,
    )

    return scheduler
