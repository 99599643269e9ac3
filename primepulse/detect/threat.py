"""Rule-based threat scoring: will this item drop in price soon?

``score_snapshot`` is a pure function from a frozen FeatureSnapshot to a
frozen ThreatScore; ``ThreatScorer`` wraps it with persistence. A learned
model can replace the rules without touching the run cycle.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from primepulse import metrics
from primepulse.interfaces import AnalyticsStore
from primepulse.models import FeatureSnapshot, ThreatAssessment, TrackedItem
from primepulse.utils.clock import utcnow

logger = logging.getLogger(__name__)

MODEL_VERSION = "rules-v1"

VOLATILITY_THRESHOLD = 0.1
DROP_COUNT_THRESHOLD = 3
AVG_CHANGE_THRESHOLD = -5.0
MAX_INCREASE_THRESHOLD = 15.0
MAX_EXPECTED_DROP = 50.0


@dataclass(frozen=True)
class ThreatScore:
    drop_probability: float
    expected_drop: float
    confidence: float


def _confidence(data_points: int) -> float:
    if data_points < 5:
        return 0.3
    if data_points < 20:
        return 0.6
    if data_points < 50:
        return 0.8
    return 0.9


def score_snapshot(snapshot: FeatureSnapshot) -> ThreatScore:
    """Score a snapshot. Deterministic; probability is clamped to [0, 1]."""
    probability = 0.0
    if snapshot.price_volatility > VOLATILITY_THRESHOLD:
        probability += 0.30
    if snapshot.drop_count > DROP_COUNT_THRESHOLD:
        probability += 0.20
    if snapshot.coupon_flips > 0:
        probability += 0.15
    if snapshot.avg_price_change < AVG_CHANGE_THRESHOLD:
        probability += 0.25
    if snapshot.max_price_increase > MAX_INCREASE_THRESHOLD:
        probability += 0.10

    expected_drop = min(
        (abs(snapshot.avg_price_change) + abs(snapshot.max_price_drop)) / 2,
        MAX_EXPECTED_DROP,
    )

    return ThreatScore(
        drop_probability=min(max(probability, 0.0), 1.0),
        expected_drop=expected_drop,
        confidence=_confidence(snapshot.data_points),
    )


class ThreatScorer:
    """Scores an item's snapshot and stores the resulting assessment."""

    def __init__(self, store: AnalyticsStore):
        self.store = store

    async def score(
        self,
        item: TrackedItem,
        snapshot: Optional[FeatureSnapshot],
        current_price: Optional[Decimal],
    ) -> Optional[ThreatAssessment]:
        if snapshot is None:
            return None

        result = score_snapshot(snapshot)
        assessment = ThreatAssessment(
            item_id=item.id,
            identifier=item.identifier,
            title=item.title,
            drop_probability=result.drop_probability,
            expected_drop=result.expected_drop,
            confidence=result.confidence,
            current_price=current_price,
            features={
                "avg_price_change": snapshot.avg_price_change,
                "price_volatility": snapshot.price_volatility,
                "drop_count": snapshot.drop_count,
                "coupon_flips": snapshot.coupon_flips,
            },
            created_at=snapshot.timestamp or utcnow(),
            model_version=MODEL_VERSION,
        )

        await self.store.upsert_prediction(assessment)
        metrics.threats_scored_total.inc()
        logger.debug(
            f"Threat for {item.identifier}: p={result.drop_probability:.2f} "
            f"expected={result.expected_drop:.1f}% confidence={result.confidence}"
        )
        return assessment
