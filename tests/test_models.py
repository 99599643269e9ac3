"""Tests for domain record helpers."""

from datetime import datetime
from decimal import Decimal

import pytest

from primepulse.models import (
    Alert,
    AlertKind,
    Availability,
    CycleSummary,
    ListingData,
    Observation,
    Severity,
)


@pytest.mark.parametrize(
    "text,expected",
    [
        ("In Stock", Availability.IN_STOCK),
        ("in_stock", Availability.IN_STOCK),
        ("Only 2 left in stock - order soon.", Availability.IN_STOCK),
        ("Temporarily out of stock.", Availability.OUT_OF_STOCK),
        ("LOW-STOCK", Availability.LOW_STOCK),
        ("Currently unavailable.", Availability.UNAVAILABLE),
        ("limited", Availability.LIMITED),
        ("ships in 3 weeks", Availability.UNKNOWN),
        ("", Availability.UNKNOWN),
        (None, Availability.UNKNOWN),
        (Availability.LIMITED, Availability.LIMITED),
    ],
)
def test_availability_parse(text, expected):
    assert Availability.parse(text) == expected


def test_listing_from_dict_defaults():
    data = ListingData.from_dict({"price": "12.50", "sellerCount": 0})

    assert data.price == Decimal("12.50")
    assert data.list_price is None
    assert data.seller_count == 1
    assert data.availability == Availability.UNKNOWN
    assert data.has_coupon is False


def test_worker_prices_are_rounded_to_cents():
    data = ListingData.from_dict({"price": 19.999, "listPrice": "24.994", "couponAmount": "2.005"})

    assert (data.price, data.list_price, data.coupon_amount) == (
        Decimal("20.00"),
        Decimal("24.99"),
        Decimal("2.01"),
    )


@pytest.mark.parametrize(
    "price,list_price,expected",
    [
        (Decimal("80"), Decimal("100"), 20.0),
        (Decimal("100"), Decimal("100"), None),
        (Decimal("120"), Decimal("100"), None),
        (None, Decimal("100"), None),
        (Decimal("0"), Decimal("100"), None),
    ],
)
def test_discount_percent(price, list_price, expected):
    assert ListingData(price=price, list_price=list_price).discount_percent == expected


def test_observation_from_listing_copies_fields():
    captured = datetime(2024, 5, 1, 8, 0)
    data = ListingData(
        price=Decimal("80"),
        list_price=Decimal("100"),
        seller_count=2,
        availability="In Stock",
    )

    obs = Observation.from_listing(7, data, captured)

    assert obs.item_id == 7
    assert obs.captured_at == captured
    assert obs.discount_percent == 20.0
    assert obs.availability == Availability.IN_STOCK
    assert obs.id is None


def test_alert_to_dict_wire_format():
    alert = Alert(
        item_id=1,
        identifier="B000000001",
        kind=AlertKind.COUPON_ADDED,
        severity=Severity.MEDIUM,
        current_price=Decimal("39.99"),
        coupon_amount=Decimal("5"),
        created_at=datetime(2024, 5, 1, 8, 0),
    )

    payload = alert.to_dict()

    assert payload["asin"] == "B000000001"
    assert payload["alertType"] == "coupon_added"
    assert payload["currentPrice"] == 39.99
    assert payload["couponAmount"] == 5.0
    assert payload["previousPrice"] is None
    assert payload["timestamp"] == "2024-05-01T08:00:00"


def test_cycle_summary_keeps_first_errors():
    summary = CycleSummary(scope_id=1, items_due=4, items_fetched=3)

    for n in range(15):
        summary.record_error(f"B{n}", "boom")

    assert len(summary.item_errors) == 10
    assert "B0" in summary.item_errors
    assert summary.fetch_success_rate == 0.75
    assert CycleSummary(scope_id=2).fetch_success_rate == 1.0
