"""Tests for the analytics store upserts and prediction ranking."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from primepulse.db.analytics import SqlAnalyticsStore
from primepulse.db.models import PredictionRow, PriceFeatureRow
from primepulse.models import PriceFeatures, ThreatAssessment
from primepulse.utils.clock import utcnow


def _features(item_id: int, timestamp, current_price: float = 10.0, delta: float = 0.0) -> PriceFeatures:
    return PriceFeatures(
        item_id=item_id,
        identifier=f"B{item_id:09d}",
        timestamp=timestamp,
        current_price=current_price,
        previous_price=current_price,
        price_delta=0.0,
        price_delta_percent=delta,
        coupon_flip=False,
        coupon_amount=0.0,
        seller_count=1,
        seller_delta=0,
        availability_score=1.0,
        prime_eligible=False,
        rating=0.0,
        review_count=0,
        price_volatility=0.0,
        is_weekend=False,
        hour_of_day=12,
    )


def _assessment(item_id: int, created_at, probability: float, expected: float = 5.0, price="10.00"):
    return ThreatAssessment(
        item_id=item_id,
        identifier=f"B{item_id:09d}",
        drop_probability=probability,
        expected_drop=expected,
        confidence=0.6,
        current_price=Decimal(price) if price is not None else None,
        features={"price_volatility": 0.2},
        created_at=created_at,
    )


async def _count(session_factory, model) -> int:
    async with session_factory() as db:
        return await db.scalar(select(func.count()).select_from(model))


@pytest.mark.asyncio
async def test_feature_upsert_replaces_on_same_key(analytics_db):
    store = SqlAnalyticsStore(analytics_db)
    ts = utcnow().replace(microsecond=0)

    await store.upsert_features(_features(1, ts, delta=-5.0))
    await store.upsert_features(_features(1, ts, delta=-7.5))
    await store.upsert_features(_features(1, ts - timedelta(hours=1)))

    rows = await store.feature_rows(1, ts - timedelta(days=1))
    assert await _count(analytics_db, PriceFeatureRow) == 2
    assert [r.timestamp for r in rows] == [ts, ts - timedelta(hours=1)]
    assert rows[0].price_delta_percent == -7.5


@pytest.mark.asyncio
async def test_feature_rows_filter_by_since_and_limit(analytics_db):
    store = SqlAnalyticsStore(analytics_db)
    now = utcnow()
    for hours in (1, 2, 3, 24 * 10):
        await store.upsert_features(_features(1, now - timedelta(hours=hours)))
    await store.upsert_features(_features(2, now))

    assert len(await store.feature_rows(1, now - timedelta(days=7))) == 3
    assert len(await store.feature_rows(1, now - timedelta(days=7), limit=2)) == 2


@pytest.mark.asyncio
async def test_prediction_upsert_is_idempotent(analytics_db):
    store = SqlAnalyticsStore(analytics_db)
    ts = utcnow()

    await store.upsert_prediction(_assessment(1, ts, 0.45))
    await store.upsert_prediction(_assessment(1, ts, 0.45))

    assert await _count(analytics_db, PredictionRow) == 1


@pytest.mark.asyncio
async def test_top_predictions_orders_by_probability_then_expected_drop(analytics_db):
    store = SqlAnalyticsStore(analytics_db)
    now = utcnow()
    await store.upsert_prediction(_assessment(1, now, 0.4, expected=5.0))
    await store.upsert_prediction(_assessment(2, now, 0.9, expected=5.0))
    await store.upsert_prediction(_assessment(3, now, 0.4, expected=12.0))

    ranked = await store.top_predictions(limit=10)

    assert [p.item_id for p in ranked] == [2, 3, 1]
    assert (await store.top_predictions(limit=1))[0].item_id == 2


@pytest.mark.asyncio
async def test_top_predictions_uses_latest_per_item_within_window(analytics_db):
    store = SqlAnalyticsStore(analytics_db)
    now = utcnow()
    await store.upsert_prediction(_assessment(1, now - timedelta(hours=2), 0.9))
    await store.upsert_prediction(_assessment(1, now - timedelta(minutes=5), 0.3))
    await store.upsert_prediction(_assessment(2, now - timedelta(hours=10), 0.8))

    ranked = await store.top_predictions(recency_hours=4)

    assert len(ranked) == 1
    assert ranked[0].item_id == 1
    assert ranked[0].drop_probability == 0.3


@pytest.mark.asyncio
async def test_top_predictions_prefers_latest_feature_price(analytics_db):
    store = SqlAnalyticsStore(analytics_db)
    now = utcnow()
    await store.upsert_features(_features(1, now - timedelta(hours=2), current_price=25.0))
    await store.upsert_features(_features(1, now - timedelta(minutes=1), current_price=21.5))
    await store.upsert_prediction(_assessment(1, now, 0.5, price="30.00"))
    await store.upsert_prediction(_assessment(2, now, 0.4, price="12.00"))

    ranked = {p.item_id: p for p in await store.top_predictions()}

    assert ranked[1].current_price == 21.5
    assert ranked[2].current_price == 12.0
