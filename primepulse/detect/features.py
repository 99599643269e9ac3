"""Feature extraction from an item's observation history.

Observations are always handed in newest first. A feature row is computed
from the two most recent observations and persisted per (item, timestamp);
the rolling FeatureSnapshot aggregates the persisted rows of the window.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional, Sequence

import numpy as np

from primepulse.config import settings
from primepulse.interfaces import AnalyticsStore
from primepulse.models import (
    Availability,
    FeatureSnapshot,
    Observation,
    PriceFeatures,
    TrackedItem,
)
from primepulse.utils.clock import to_zone, utcnow

logger = logging.getLogger(__name__)

AVAILABILITY_SCORES = {
    Availability.IN_STOCK: 1.0,
    Availability.LIMITED: 0.7,
    Availability.LOW_STOCK: 0.5,
    Availability.OUT_OF_STOCK: 0.0,
    Availability.UNAVAILABLE: 0.0,
}

VOLATILITY_WINDOW = 10  # most recent observations considered
MIN_VOLATILITY_POINTS = 3
MIN_SNAPSHOT_PRICES = 3


def _price(value: Optional[Decimal]) -> float:
    return float(value) if value is not None else 0.0


def delta_percent(current: Optional[Decimal], previous: Optional[Decimal]) -> float:
    """Signed percent change from previous to current; 0 when previous <= 0."""
    prev = _price(previous)
    if prev <= 0:
        return 0.0
    return (_price(current) - prev) / prev * 100


def availability_score(availability) -> float:
    return AVAILABILITY_SCORES.get(Availability.parse(availability), 0.5)


def price_volatility(observations: Sequence[Observation]) -> float:
    """
    Coefficient of variation of recent prices.

    Uses up to the 10 most recent observations, ignoring missing or
    non-positive prices. Returns 0 for short or flat histories, never NaN.
    """
    if len(observations) < MIN_VOLATILITY_POINTS:
        return 0.0

    prices = [
        float(o.price)
        for o in observations[:VOLATILITY_WINDOW]
        if o.price is not None and o.price > 0
    ]
    if len(prices) < 2:
        return 0.0

    mean = float(np.mean(prices))
    if mean <= 0:
        return 0.0
    return float(np.std(prices)) / mean


def build_price_features(
    item: TrackedItem,
    observations: Sequence[Observation],
    zone: str = "UTC",
) -> Optional[PriceFeatures]:
    """Feature row for the newest observation pair, or None with fewer than 2."""
    if len(observations) < 2:
        return None

    current, previous = observations[0], observations[1]
    local = to_zone(current.captured_at, zone)

    return PriceFeatures(
        item_id=item.id,
        identifier=item.identifier,
        timestamp=current.captured_at,
        current_price=_price(current.price),
        previous_price=_price(previous.price),
        price_delta=_price(current.price) - _price(previous.price),
        price_delta_percent=delta_percent(current.price, previous.price),
        coupon_flip=bool(current.has_coupon) != bool(previous.has_coupon),
        coupon_amount=_price(current.coupon_amount),
        seller_count=current.seller_count or 1,
        seller_delta=(current.seller_count or 1) - (previous.seller_count or 1),
        availability_score=availability_score(current.availability),
        prime_eligible=bool(current.prime_eligible),
        rating=current.rating or 0.0,
        review_count=current.review_count or 0,
        price_volatility=price_volatility(observations),
        is_weekend=local.weekday() >= 5,
        hour_of_day=local.hour,
    )


def summarize(item_id: int, rows: Sequence[PriceFeatures]) -> Optional[FeatureSnapshot]:
    """Aggregate feature rows (newest first) into a rolling snapshot."""
    if not rows:
        return None

    deltas = np.array([r.price_delta_percent for r in rows], dtype=float)
    sellers = np.array([r.seller_count for r in rows], dtype=float)

    return FeatureSnapshot(
        item_id=item_id,
        timestamp=rows[0].timestamp,
        avg_price_change=float(np.mean(deltas)),
        avg_abs_price_change=float(np.mean(np.abs(deltas))),
        price_volatility=rows[0].price_volatility,
        drop_count=int(np.sum(deltas < 0)),
        coupon_flips=sum(1 for r in rows if r.coupon_flip),
        avg_seller_count=float(np.mean(sellers)),
        max_price_drop=max(0.0, -float(np.min(deltas))),
        max_price_increase=max(0.0, float(np.max(deltas))),
        data_points=len(rows),
    )


class FeatureExtractor:
    """Computes, persists and aggregates per-item features."""

    def __init__(
        self,
        store: AnalyticsStore,
        window_days: Optional[int] = None,
        timezone: Optional[str] = None,
        row_limit: Optional[int] = None,
    ):
        self.store = store
        self.window_days = window_days or settings.feature_window_days
        self.timezone = timezone or settings.feature_timezone
        self.row_limit = row_limit or settings.history_limit

    async def extract(
        self,
        observations: Sequence[Observation],
        item: TrackedItem,
    ) -> Optional[PriceFeatures]:
        """Compute and upsert the feature row; no-op with fewer than 2 observations."""
        row = build_price_features(item, observations, self.timezone)
        if row is None:
            return None

        await self.store.upsert_features(row)
        logger.debug(
            f"Features stored for {item.identifier}: "
            f"delta={row.price_delta_percent:.2f}% volatility={row.price_volatility:.4f}"
        )
        return row

    def price_volatility(self, observations: Sequence[Observation]) -> float:
        return price_volatility(observations)

    async def snapshot(
        self,
        item: TrackedItem,
        observations: Sequence[Observation],
    ) -> Optional[FeatureSnapshot]:
        """
        Rolling snapshot over the stored feature rows of the window.

        None unless the observation window holds at least 3 positive prices.
        """
        positive = sum(1 for o in observations if o.price is not None and o.price > 0)
        if positive < MIN_SNAPSHOT_PRICES:
            return None

        since = utcnow() - timedelta(days=self.window_days)
        rows = await self.store.feature_rows(item.id, since, limit=self.row_limit)
        return summarize(item.id, rows)
