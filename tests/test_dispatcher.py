"""Tests for alert throttling and severity-tiered delivery."""

from decimal import Decimal

import pytest

from primepulse.models import Alert, AlertKind, Severity, ThreatAssessment, TrackingScope
from primepulse.notify.dispatcher import AlertDispatcher
from primepulse.utils.clock import utcnow

from fakes import RecordingChannel

SCOPE = TrackingScope(id=1, name="MVP Customer")


def _alert(n: int, severity: Severity = Severity.MEDIUM) -> Alert:
    return Alert(
        item_id=n,
        identifier=f"B{n:09d}",
        kind=AlertKind.PRICE_DROP,
        severity=severity,
        current_price=Decimal("10.00"),
    )


def _threat(n: int, probability: float) -> ThreatAssessment:
    return ThreatAssessment(
        item_id=n,
        identifier=f"B{n:09d}",
        drop_probability=probability,
        expected_drop=10.0,
        confidence=0.6,
        current_price=Decimal("10.00"),
        features={},
        created_at=utcnow(),
    )


@pytest.mark.asyncio
async def test_eight_alerts_with_cap_five_delivers_first_five_in_order():
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(channel, max_alerts_per_cycle=5)
    alerts = [_alert(n) for n in range(8)]

    report = await dispatcher.dispatch(alerts, [], SCOPE)

    assert channel.batches == [alerts[:5]]
    assert report.throttled == 3
    assert report.delivered == 5


@pytest.mark.asyncio
async def test_truncation_does_not_favour_critical_alerts():
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(channel, max_alerts_per_cycle=2)
    alerts = [_alert(0), _alert(1), _alert(2, Severity.CRITICAL)]

    await dispatcher.dispatch(alerts, [], SCOPE)

    assert channel.alerts == []
    assert channel.batches == [alerts[:2]]


@pytest.mark.asyncio
async def test_critical_alerts_sent_individually_and_failures_isolated():
    channel = RecordingChannel(fail_alerts=["B000000001"])
    dispatcher = AlertDispatcher(channel, max_alerts_per_cycle=10)
    alerts = [
        _alert(0, Severity.CRITICAL),
        _alert(1, Severity.CRITICAL),
        _alert(2, Severity.LOW),
        _alert(3, Severity.CRITICAL),
        _alert(4, Severity.HIGH),
    ]

    report = await dispatcher.dispatch(alerts, [], SCOPE)

    assert [a.identifier for a in channel.alerts] == ["B000000000", "B000000003"]
    assert report.critical_sent == 2
    assert report.critical_failed == 1
    assert channel.batches == [[alerts[2], alerts[4]]]


@pytest.mark.asyncio
async def test_scope_cap_overrides_default():
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(channel, max_alerts_per_cycle=5)
    scope = TrackingScope(id=2, name="Small", max_alerts_per_cycle=1)

    report = await dispatcher.dispatch([_alert(0), _alert(1)], [], scope)

    assert [[a.identifier for a in batch] for batch in channel.batches] == [["B000000000"]]
    assert report.throttled == 1


@pytest.mark.asyncio
async def test_scope_cap_of_zero_mutes_alerts():
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(channel, max_alerts_per_cycle=5)
    scope = TrackingScope(id=2, name="Muted", max_alerts_per_cycle=0)

    report = await dispatcher.dispatch([_alert(0), _alert(1)], [], scope)

    assert dispatcher.cap_for(scope) == 0
    assert channel.batches == []
    assert report.throttled == 2


@pytest.mark.asyncio
async def test_digest_sends_top_five_regardless_of_cap():
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(channel, max_alerts_per_cycle=1)
    threats = [_threat(n, p) for n, p in enumerate([0.1, 0.9, 0.4, 0.7, 0.2, 0.8, 0.3])]

    report = await dispatcher.dispatch([_alert(0), _alert(1)], threats, SCOPE)

    assert len(channel.digests) == 1
    sent, scope_name = channel.digests[0]
    assert scope_name == "MVP Customer"
    assert [t.drop_probability for t in sent] == [0.9, 0.8, 0.7, 0.4, 0.3]
    assert report.digest_delivered is True


@pytest.mark.asyncio
async def test_no_threats_means_no_digest():
    channel = RecordingChannel()
    dispatcher = AlertDispatcher(channel)

    report = await dispatcher.dispatch([], [], SCOPE)

    assert channel.digests == []
    assert channel.batches == []
    assert report.digest_delivered is False


@pytest.mark.asyncio
async def test_delivery_failures_never_raise():
    channel = RecordingChannel(fail_batch=True, fail_digest=True)
    dispatcher = AlertDispatcher(channel)

    report = await dispatcher.dispatch([_alert(0)], [_threat(0, 0.5)], SCOPE)

    assert report.batch_delivered is False
    assert report.digest_delivered is False
    assert report.delivered == 0


@pytest.mark.asyncio
async def test_delivery_goes_through_scope_channel():
    channel = RecordingChannel()

    await AlertDispatcher(channel).dispatch([_alert(0)], [], SCOPE)

    assert channel.scoped == [SCOPE.id]
