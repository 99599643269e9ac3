"""Run cycle: fetch, persist, extract, detect, score and dispatch for one scope."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional

from redis.exceptions import RedisError

from primepulse import metrics
from primepulse.config import settings
from primepulse.detect.detector import Detector
from primepulse.detect.features import FeatureExtractor
from primepulse.detect.threat import ThreatScorer
from primepulse.errors import CycleError, NotificationError, StoreError
from primepulse.ingest.fetcher import Fetcher
from primepulse.interfaces import AlertLog, AnalyticsStore, ItemSource, ObservationStore
from primepulse.logging_config import get_logger
from primepulse.models import (
    Alert,
    CycleSummary,
    Observation,
    ThreatAssessment,
    TrackedItem,
    TrackingScope,
)
from primepulse.notify.dispatcher import AlertDispatcher
from primepulse.utils.clock import utcnow
from primepulse.worker.cycle_lock import CycleLock

logger = logging.getLogger(__name__)

# Below this share of fetched items a crawl is reported as degraded
MIN_FETCH_SUCCESS_RATE = 0.8


@dataclass
class _ItemOutcome:
    alerts: list[Alert] = field(default_factory=list)
    assessment: Optional[ThreatAssessment] = None


class CycleRunner:
    """
    Drives run cycles for tracking scopes.

    All collaborators are passed in. The analytics store is optional; when
    it is absent, feature extraction and threat scoring are skipped and only
    change detection runs.
    """

    def __init__(
        self,
        items: ItemSource,
        observations: ObservationStore,
        alert_log: AlertLog,
        fetcher: Fetcher,
        dispatcher: AlertDispatcher,
        analytics: Optional[AnalyticsStore] = None,
        lock: Optional[CycleLock] = None,
        detector: Optional[Detector] = None,
        batch_limit: Optional[int] = None,
        history_limit: Optional[int] = None,
        history_window_days: Optional[int] = None,
        pipeline_concurrency: Optional[int] = None,
    ):
        self.items = items
        self.observations = observations
        self.fetcher = fetcher
        self.dispatcher = dispatcher
        self.analytics = analytics
        self.lock = lock
        self.detector = detector or Detector(alert_log)
        self.batch_limit = batch_limit or settings.batch_limit
        self.history_limit = history_limit or settings.history_limit
        self.history_window_days = history_window_days or settings.history_window_days
        self.pipeline_concurrency = max(1, pipeline_concurrency or settings.pipeline_concurrency)

        self._closing = False
        self._in_flight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def accepting(self) -> bool:
        return not self._closing

    async def shutdown(self) -> None:
        """Stop accepting new cycles and wait for running ones to finish."""
        self._closing = True
        if self._in_flight:
            logger.info(f"Waiting for {self._in_flight} in-flight cycle(s) to drain")
        await self._idle.wait()
        logger.info("Cycle runner stopped")

    async def run_cycle(self, scope: TrackingScope) -> CycleSummary:
        if self._closing:
            raise CycleError("runner is shutting down")

        self._in_flight += 1
        self._idle.clear()
        start = time.monotonic()
        success = False
        try:
            summary = await self._run(scope)
            success = True
            return summary
        finally:
            metrics.record_cycle(success, time.monotonic() - start)
            self._in_flight -= 1
            if self._in_flight == 0:
                self._idle.set()

    async def _run(self, scope: TrackingScope) -> CycleSummary:
        log = get_logger(__name__, scope_id=scope.id)
        summary = CycleSummary(scope_id=scope.id)

        # Resolved once; nothing below re-checks whether analytics is ready
        analytics = self.analytics
        extractor = FeatureExtractor(analytics) if analytics is not None else None
        scorer = ThreatScorer(analytics) if analytics is not None else None

        try:
            due = await self.items.list_due_items(scope.id, limit=self.batch_limit)
        except StoreError as e:
            log.error(f"Cannot list due items for scope {scope.id}: {e}")
            raise CycleError(f"cannot list due items for scope {scope.id}: {e}") from e

        summary.items_due = len(due)
        if not due:
            log.info("No items due for refresh")
            summary.finished_at = utcnow()
            return summary

        log.info(f"Starting cycle for {scope.name}: {len(due)} items due")

        # Fetch + persist
        results = await self.fetcher.fetch_many([item.identifier for item in due])
        persisted: list[tuple[TrackedItem, Observation]] = []
        for item, result in zip(due, results):
            if not result.success or result.data is None:
                summary.items_failed += 1
                summary.record_error(item.identifier, result.error or "fetch failed")
                continue

            observation = Observation.from_listing(item.id, result.data, result.fetched_at)
            try:
                stored = await self.observations.append(observation)
                await self.items.mark_observed(item.id, result.fetched_at)
            except StoreError as e:
                summary.items_failed += 1
                summary.record_error(item.identifier, str(e))
                log.error(f"Failed to persist observation for {item.identifier}: {e}")
                continue

            if item.title is None and result.data.title:
                item.title = result.data.title
            metrics.observations_stored_total.inc()
            summary.items_fetched += 1
            persisted.append((item, stored))

        # Extract -> detect -> score, bounded fan-out
        semaphore = asyncio.Semaphore(self.pipeline_concurrency)

        async def bounded(item: TrackedItem, observation: Observation) -> _ItemOutcome:
            async with semaphore:
                return await self._process_item(item, observation, extractor, scorer)

        outcomes = await asyncio.gather(
            *(bounded(item, observation) for item, observation in persisted),
            return_exceptions=True,
        )

        alerts: list[Alert] = []
        threats: list[ThreatAssessment] = []
        for (item, _), outcome in zip(persisted, outcomes):
            if isinstance(outcome, BaseException):
                metrics.item_pipeline_errors_total.inc()
                summary.record_error(item.identifier, f"pipeline: {outcome}")
                log.error(f"Pipeline failed for {item.identifier}: {outcome}")
                continue
            summary.items_processed += 1
            alerts.extend(outcome.alerts)
            if outcome.assessment is not None:
                threats.append(outcome.assessment)

        threats.sort(key=lambda t: t.drop_probability, reverse=True)

        summary.alerts_generated = len(alerts)
        summary.threats_identified = len(threats)
        summary.top_threats = threats[: self.dispatcher.digest_size]

        try:
            report = await self.dispatcher.dispatch(alerts, threats, scope)
            summary.alerts_delivered = report.delivered
        except Exception:
            log.exception(f"Dispatch failed for scope {scope.id}")

        summary.finished_at = utcnow()
        log.info(
            "Cycle completed",
            extra={
                "items_due": summary.items_due,
                "items_fetched": summary.items_fetched,
                "items_processed": summary.items_processed,
                "alerts": summary.alerts_generated,
                "threats": summary.threats_identified,
            },
        )
        return summary

    async def _process_item(
        self,
        item: TrackedItem,
        observation: Observation,
        extractor: Optional[FeatureExtractor],
        scorer: Optional[ThreatScorer],
    ) -> _ItemOutcome:
        history = await self.observations.recent_by_item(
            item.id,
            limit=self.history_limit,
            window_days=self.history_window_days,
        )
        if not history:
            history = [observation]

        if extractor is not None:
            await extractor.extract(history, item)

        current = history[0]
        previous = history[1] if len(history) > 1 else None
        outcome = _ItemOutcome(alerts=await self.detector.detect(item, current, previous))

        if extractor is not None and scorer is not None:
            snapshot = await extractor.snapshot(item, history)
            outcome.assessment = await scorer.score(item, snapshot, current.price)

        return outcome

    async def run_all(self) -> list[CycleSummary]:
        """
        Run a cycle for every active scope, one after another.

        A failing scope is logged and does not stop the others. A warning
        notice goes out when any scope failed or the overall fetch success
        rate fell below 80%.
        """
        if self._closing:
            logger.info("Runner is shutting down, skipping crawl")
            return []

        try:
            scopes = await self.items.list_scopes()
        except StoreError as e:
            raise CycleError(f"cannot list scopes: {e}") from e

        if not scopes:
            logger.warning("No active scopes found for crawling")
            return []

        summaries: list[CycleSummary] = []
        failed = 0
        for scope in scopes:
            if self._closing:
                break

            token = None
            if self.lock is not None:
                try:
                    token = await self.lock.acquire(scope.id)
                    holder = None if token else await self.lock.get_lock_info(scope.id)
                except RedisError as e:
                    logger.warning(f"Cycle lock unavailable, running scope {scope.id} unlocked: {e}")
                else:
                    if token is None:
                        started = (holder or {}).get("started_at", "unknown")
                        logger.info(
                            f"Scope {scope.id} already being processed since {started}, skipping"
                        )
                        continue

            try:
                summaries.append(await self.run_cycle(scope))
            except CycleError as e:
                failed += 1
                logger.error(f"Cycle failed for scope {scope.name}: {e}")
            finally:
                if token is not None:
                    await self.lock.release(scope.id, token)

        total_due = sum(s.items_due for s in summaries)
        total_fetched = sum(s.items_fetched for s in summaries)
        logger.info(
            "Crawl completed",
            extra={
                "scopes": len(scopes),
                "failed_scopes": failed,
                "items_due": total_due,
                "items_fetched": total_fetched,
            },
        )

        if failed > 0 or total_fetched < total_due * MIN_FETCH_SUCCESS_RATE:
            message = (
                f"Crawl cycle completed with issues: {len(scopes) - failed}/{len(scopes)} "
                f"scopes successful, {total_fetched}/{total_due} items fetched"
            )
            try:
                await self.dispatcher.channel.send_system_notice(message, "warning")
            except NotificationError as e:
                logger.error(f"Failed to send crawl warning: {e}")

        return summaries
