"""Tests for feature extraction and rolling snapshots."""

import math
from datetime import timedelta
from decimal import Decimal

import pytest

from primepulse.detect.features import (
    FeatureExtractor,
    availability_score,
    build_price_features,
    delta_percent,
    price_volatility,
    summarize,
)
from primepulse.models import Availability, Observation, PriceFeatures, TrackedItem
from primepulse.utils.clock import utcnow

from fakes import InMemoryAnalyticsStore

ITEM = TrackedItem(id=3, identifier="B000TEST01", scope_id=1)


def _history(prices, coupons=None, start=None):
    """Observations newest first, one hour apart."""
    start = start or utcnow()
    coupons = coupons or [False] * len(prices)
    return [
        Observation(
            item_id=ITEM.id,
            captured_at=start - timedelta(hours=i),
            price=Decimal(str(p)) if p is not None else None,
            has_coupon=c,
            availability=Availability.IN_STOCK,
        )
        for i, (p, c) in enumerate(zip(prices, coupons))
    ]


def test_volatility_of_flat_prices_is_zero():
    assert price_volatility(_history([100, 100, 100])) == 0.0


def test_volatility_guards_short_histories():
    assert price_volatility([]) == 0.0
    assert price_volatility(_history([100])) == 0.0
    assert price_volatility(_history([100, 50])) == 0.0


def test_volatility_ignores_non_positive_and_missing_prices():
    # Only one positive price survives filtering
    assert price_volatility(_history([100, 0, None])) == 0.0


def test_volatility_is_population_cv():
    value = price_volatility(_history([10, 20, 30]))
    expected = math.sqrt(((10 - 20) ** 2 + 0 + (30 - 20) ** 2) / 3) / 20
    assert value == pytest.approx(expected)
    assert not math.isnan(value)


def test_volatility_uses_ten_most_recent():
    prices = [50] * 10 + [1000, 1]
    assert price_volatility(_history(prices)) == 0.0


def test_delta_percent_guards_non_positive_previous():
    assert delta_percent(Decimal("10"), Decimal("0")) == 0.0
    assert delta_percent(Decimal("10"), None) == 0.0
    assert delta_percent(Decimal("90"), Decimal("100")) == pytest.approx(-10.0)


@pytest.mark.parametrize(
    "availability,score",
    [
        ("in stock", 1.0),
        ("limited", 0.7),
        ("low stock", 0.5),
        ("out of stock", 0.0),
        ("unavailable", 0.0),
        ("unknown", 0.5),
        ("Usually ships in 3 to 5 weeks", 0.5),
    ],
)
def test_availability_scores(availability, score):
    assert availability_score(availability) == score


def test_build_price_features_from_newest_pair():
    history = _history([90, 100, 100], coupons=[True, False, False])
    row = build_price_features(ITEM, history)

    assert row.timestamp == history[0].captured_at
    assert row.current_price == 90.0
    assert row.previous_price == 100.0
    assert row.price_delta == pytest.approx(-10.0)
    assert row.price_delta_percent == pytest.approx(-10.0)
    assert row.coupon_flip is True
    assert row.availability_score == 1.0
    assert row.hour_of_day == history[0].captured_at.hour


def test_build_price_features_uses_reference_timezone():
    start = utcnow().replace(hour=3, minute=0, second=0, microsecond=0)
    history = _history([10, 10], start=start)

    row = build_price_features(ITEM, history, zone="America/New_York")

    assert row.hour_of_day in (22, 23)  # EST/EDT


@pytest.mark.asyncio
async def test_extract_with_fewer_than_two_observations_writes_nothing():
    store = InMemoryAnalyticsStore()
    extractor = FeatureExtractor(store)

    assert await extractor.extract(_history([10]), ITEM) is None
    assert await extractor.extract([], ITEM) is None
    assert store.feature_writes == 0


@pytest.mark.asyncio
async def test_extract_upserts_keyed_by_item_and_timestamp():
    store = InMemoryAnalyticsStore()
    extractor = FeatureExtractor(store)
    history = _history([90, 100])

    await extractor.extract(history, ITEM)
    await extractor.extract(history, ITEM)

    assert store.feature_writes == 2
    assert list(store.features) == [(ITEM.id, history[0].captured_at)]


@pytest.mark.asyncio
async def test_snapshot_requires_three_positive_prices():
    store = InMemoryAnalyticsStore()
    extractor = FeatureExtractor(store)
    history = _history([90, 100, 0])
    await extractor.extract(history, ITEM)

    assert await extractor.snapshot(ITEM, history) is None


@pytest.mark.asyncio
async def test_snapshot_aggregates_window_rows():
    store = InMemoryAnalyticsStore()
    extractor = FeatureExtractor(store)
    prices = [80, 100, 90, 100]  # newest first

    # Replay the history oldest to newest, as successive cycles would
    for n in range(2, len(prices) + 1):
        await extractor.extract(_history(prices[-n:], start=utcnow() - timedelta(hours=len(prices) - n)), ITEM)

    snapshot = await extractor.snapshot(ITEM, _history(prices))

    assert snapshot is not None
    assert snapshot.data_points == 3
    assert snapshot.drop_count == 2
    assert snapshot.max_price_drop == pytest.approx(20.0)
    assert snapshot.max_price_increase == pytest.approx(100 / 9, rel=1e-6)
    assert snapshot.avg_price_change == pytest.approx((-20.0 + 100 / 9 - 10.0) / 3)


def test_summarize_empty_rows_is_none():
    assert summarize(ITEM.id, []) is None


def test_summarize_reports_magnitudes():
    now = utcnow()
    rows = [
        PriceFeatures(
            item_id=ITEM.id,
            identifier=ITEM.identifier,
            timestamp=now - timedelta(hours=i),
            current_price=0.0,
            previous_price=0.0,
            price_delta=0.0,
            price_delta_percent=pct,
            coupon_flip=flip,
            coupon_amount=0.0,
            seller_count=sellers,
            seller_delta=0,
            availability_score=1.0,
            prime_eligible=False,
            rating=0.0,
            review_count=0,
            price_volatility=0.2 if i == 0 else 0.0,
            is_weekend=False,
            hour_of_day=0,
        )
        for i, (pct, flip, sellers) in enumerate([(-25.0, True, 2), (10.0, False, 4), (5.0, True, 3)])
    ]

    snapshot = summarize(ITEM.id, rows)

    assert snapshot.timestamp == rows[0].timestamp
    assert snapshot.price_volatility == 0.2
    assert snapshot.max_price_drop == 25.0
    assert snapshot.max_price_increase == 10.0
    assert snapshot.avg_abs_price_change == pytest.approx(40.0 / 3)
    assert snapshot.coupon_flips == 2
    assert snapshot.avg_seller_count == 3.0
    assert snapshot.drop_count == 1
