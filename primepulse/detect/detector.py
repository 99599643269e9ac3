"""Rule-based change detection between two consecutive observations."""

import logging
from decimal import Decimal
from typing import Optional

from primepulse import metrics
from primepulse.config import settings
from primepulse.detect.features import delta_percent
from primepulse.interfaces import AlertLog
from primepulse.models import (
    Alert,
    AlertKind,
    Availability,
    Observation,
    Severity,
    TrackedItem,
)
from primepulse.utils.clock import utcnow

logger = logging.getLogger(__name__)

GONE_STATES = (Availability.OUT_OF_STOCK, Availability.UNAVAILABLE)


def severity_for(change_percent: float) -> Severity:
    """Severity bucket for a price change magnitude."""
    magnitude = abs(change_percent)
    if magnitude >= 30:
        return Severity.CRITICAL
    if magnitude >= 20:
        return Severity.HIGH
    if magnitude >= 10:
        return Severity.MEDIUM
    return Severity.LOW


def evaluate_pair(
    item: TrackedItem,
    current: Observation,
    previous: Observation,
    drop_threshold: float = 10.0,
    minimum_discount: float = 5.0,
) -> list[Alert]:
    """
    Apply every rule to an observation pair.

    Rules are independent; the result holds at most one alert per kind in
    the order price_drop, coupon_added, back_in_stock.
    """
    alerts: list[Alert] = []
    now = utcnow()

    # A listing that stops showing a price is not a drop
    previous_price = previous.price or Decimal("0")
    current_price = current.price
    if previous_price > 0 and current_price is not None:
        change = current_price - previous_price
        change_percent = delta_percent(current.price, previous.price)
        if change_percent <= -drop_threshold and abs(change) >= Decimal(str(minimum_discount)):
            alerts.append(
                Alert(
                    item_id=item.id,
                    identifier=item.identifier,
                    title=item.title,
                    kind=AlertKind.PRICE_DROP,
                    severity=severity_for(change_percent),
                    current_price=current.price,
                    previous_price=previous.price,
                    price_change=change,
                    price_change_percent=round(change_percent, 2),
                    availability=current.availability,
                    created_at=now,
                )
            )

    if current.has_coupon and not previous.has_coupon:
        alerts.append(
            Alert(
                item_id=item.id,
                identifier=item.identifier,
                title=item.title,
                kind=AlertKind.COUPON_ADDED,
                severity=Severity.MEDIUM,
                current_price=current.price,
                coupon_amount=current.coupon_amount,
                availability=current.availability,
                created_at=now,
            )
        )

    if (
        Availability.parse(previous.availability) in GONE_STATES
        and Availability.parse(current.availability) == Availability.IN_STOCK
    ):
        alerts.append(
            Alert(
                item_id=item.id,
                identifier=item.identifier,
                title=item.title,
                kind=AlertKind.BACK_IN_STOCK,
                severity=Severity.LOW,
                current_price=current.price,
                availability=current.availability,
                created_at=now,
            )
        )

    return alerts


class Detector:
    """Evaluates rules for an item and records every alert it raises."""

    def __init__(
        self,
        alert_log: AlertLog,
        drop_threshold: Optional[float] = None,
        minimum_discount: Optional[float] = None,
    ):
        self.alert_log = alert_log
        self.drop_threshold = (
            drop_threshold if drop_threshold is not None else settings.drop_threshold_percent
        )
        self.minimum_discount = (
            minimum_discount if minimum_discount is not None else settings.minimum_discount
        )

    async def detect(
        self,
        item: TrackedItem,
        current: Observation,
        previous: Optional[Observation],
    ) -> list[Alert]:
        if previous is None:
            return []

        alerts = evaluate_pair(
            item,
            current,
            previous,
            drop_threshold=self.drop_threshold,
            minimum_discount=self.minimum_discount,
        )
        for alert in alerts:
            await self.alert_log.record(item.scope_id, alert)
            metrics.record_alert_generated(alert.kind.value, alert.severity.value)

        return alerts
