"""Scheduled jobs: crawl cycles, retention cleanup and the weekly report."""

import logging
import time
from typing import Optional

from primepulse import metrics
from primepulse.config import settings
from primepulse.errors import NotificationError, PrimePulseError
from primepulse.interfaces import AnalyticsStore, NotificationChannel, ObservationStore
from primepulse.notify.formatters import format_weekly_report
from primepulse.utils.clock import utcnow
from primepulse.worker.cycle import CycleRunner

logger = logging.getLogger(__name__)

WEEK_HOURS = 7 * 24
REPORT_SHOWN = 10


class TaskRunner:
    """
    Entry points invoked by the scheduler.

    Each job logs its duration and records a scheduler metric. A job that
    fails is reported to the notification channel and re-raised, so the
    scheduler logs it and simply waits for the next tick.
    """

    def __init__(
        self,
        runner: CycleRunner,
        observations: ObservationStore,
        channel: NotificationChannel,
        analytics: Optional[AnalyticsStore] = None,
    ):
        self.runner = runner
        self.observations = observations
        self.channel = channel
        self.analytics = analytics

    async def notify(self, message: str, level: str) -> None:
        try:
            await self.channel.send_system_notice(message, level)
        except NotificationError as e:
            logger.error(f"Failed to send {level} notice: {e}")

    async def _run_job(self, name: str, job) -> None:
        logger.info(f"Starting scheduled job: {name}")
        start = time.monotonic()
        try:
            await job()
        except PrimePulseError as e:
            metrics.record_scheduler_run(name, False)
            logger.error(f"Error in scheduled job {name}: {e}")
            await self.notify(f"Scheduled job failed: {name} - {e}", "error")
            raise
        metrics.record_scheduler_run(name, True)
        logger.info(
            f"Completed scheduled job: {name}",
            extra={"duration_ms": int((time.monotonic() - start) * 1000)},
        )

    async def run_crawl(self) -> None:
        await self._run_job("main_crawl", self.runner.run_all)

    async def run_daily_cleanup(self) -> int:
        """Purge observations past the retention window."""
        removed = 0

        async def cleanup():
            nonlocal removed
            removed = await self.observations.purge_older_than(settings.retention_days)
            await self.notify(
                f"Daily cleanup completed: {removed} old price records removed", "info"
            )

        await self._run_job("daily_cleanup", cleanup)
        return removed

    async def run_weekly_report(self) -> bool:
        """Send the week's top predictions. Returns True when a report went out."""
        sent = False

        async def report():
            nonlocal sent
            if self.analytics is None:
                logger.warning("Analytics store not configured, skipping weekly report")
                return

            predictions = await self.analytics.top_predictions(
                limit=settings.weekly_report_size,
                recency_hours=WEEK_HOURS,
            )
            if not predictions:
                logger.info("No predictions to report")
                return

            text = format_weekly_report(predictions, shown=REPORT_SHOWN)
            text += f"_Report generated: {utcnow():%Y-%m-%d %H:%M} UTC_"
            await self.notify(text, "info")
            sent = True
            logger.info(
                "Weekly report sent",
                extra={"predictions_included": min(len(predictions), REPORT_SHOWN)},
            )

        await self._run_job("weekly_report", report)
        return sent
