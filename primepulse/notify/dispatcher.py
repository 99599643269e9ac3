"""Severity-tiered, rate-limited alert delivery for one cycle."""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

from primepulse import metrics
from primepulse.config import settings
from primepulse.errors import NotificationError
from primepulse.interfaces import NotificationChannel
from primepulse.models import Alert, Severity, ThreatAssessment, TrackingScope

logger = logging.getLogger(__name__)


@dataclass
class DispatchReport:
    """What one dispatch call delivered."""

    alerts_considered: int = 0
    throttled: int = 0
    critical_sent: int = 0
    critical_failed: int = 0
    batched: int = 0
    batch_delivered: bool = False
    digest_delivered: bool = False

    @property
    def delivered(self) -> int:
        return self.critical_sent + (self.batched if self.batch_delivered else 0)


class AlertDispatcher:
    """
    Delivers a cycle's alerts and threat digest.

    Alerts beyond the scope's cap are dropped in production order. Critical
    alerts go out one by one; everything else is sent as a single batch.
    The digest is sent independently of the cap. Delivery failures are
    logged and never raised.
    """

    def __init__(
        self,
        channel: NotificationChannel,
        max_alerts_per_cycle: Optional[int] = None,
        digest_size: Optional[int] = None,
    ):
        self.channel = channel
        self.max_alerts_per_cycle = (
            max_alerts_per_cycle if max_alerts_per_cycle is not None else settings.max_alerts_per_cycle
        )
        self.digest_size = digest_size or settings.digest_size

    def cap_for(self, scope: TrackingScope) -> int:
        if scope.max_alerts_per_cycle is not None:
            return scope.max_alerts_per_cycle
        return self.max_alerts_per_cycle

    async def dispatch(
        self,
        alerts: Sequence[Alert],
        threats: Sequence[ThreatAssessment],
        scope: TrackingScope,
    ) -> DispatchReport:
        report = DispatchReport(alerts_considered=len(alerts))
        channel = await self.channel.for_scope(scope)

        cap = self.cap_for(scope)
        if len(alerts) > cap:
            report.throttled = len(alerts) - cap
            metrics.alerts_throttled_total.inc(report.throttled)
            logger.warning(
                "Alert rate limit exceeded, throttling alerts",
                extra={"scope_id": scope.id, "alerts": len(alerts), "cap": cap},
            )
            alerts = list(alerts)[:cap]

        critical = [a for a in alerts if a.severity == Severity.CRITICAL]
        others = [a for a in alerts if a.severity != Severity.CRITICAL]

        for alert in critical:
            try:
                await channel.send_alert(alert)
                report.critical_sent += 1
                metrics.record_alert_sent("critical", True)
                logger.info(
                    "Critical alert sent",
                    extra={"scope_id": scope.id, "asin": alert.identifier},
                )
            except NotificationError as e:
                report.critical_failed += 1
                metrics.record_alert_sent("critical", False)
                logger.error(f"Error sending critical alert for {alert.identifier}: {e}")

        if others:
            report.batched = len(others)
            try:
                await channel.send_batch(others)
                report.batch_delivered = True
                metrics.record_alert_sent("batch", True, len(others))
            except NotificationError as e:
                metrics.record_alert_sent("batch", False, len(others))
                logger.error(f"Error sending alert batch for scope {scope.id}: {e}")

        top = sorted(threats, key=lambda t: t.drop_probability, reverse=True)[: self.digest_size]
        if top:
            try:
                await channel.send_digest(top, scope.name)
                report.digest_delivered = True
            except NotificationError as e:
                logger.error(f"Error sending top threats for scope {scope.id}: {e}")

        return report
