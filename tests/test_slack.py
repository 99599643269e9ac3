"""Tests for the Slack notification channel and message formatting."""

import json
from decimal import Decimal

import httpx
import pytest

from primepulse.errors import NotificationError
from primepulse.models import Alert, AlertKind, Severity, ThreatAssessment, TrackingScope
from primepulse.notify.formatters import format_alert_attachment, format_threat_digest
from primepulse.notify.slack import MAX_ATTACHMENTS, SlackChannel
from primepulse.utils.clock import utcnow

WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXXX"


def _alert(n: int = 1, severity: Severity = Severity.HIGH) -> Alert:
    return Alert(
        item_id=n,
        identifier=f"B{n:09d}",
        kind=AlertKind.PRICE_DROP,
        severity=severity,
        current_price=Decimal("39.99"),
        previous_price=Decimal("49.99"),
        price_change=Decimal("-10.00"),
        price_change_percent=-20.0,
        title="Echo Dot",
    )


def _threat(n: int = 1) -> ThreatAssessment:
    return ThreatAssessment(
        item_id=n,
        identifier=f"B{n:09d}",
        drop_probability=0.65,
        expected_drop=12.5,
        confidence=0.6,
        current_price=Decimal("24.99"),
        features={},
        created_at=utcnow(),
    )


class Recorder:
    def __init__(self, status: int = 200):
        self.status = status
        self.bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.bodies.append(json.loads(request.content))
        return httpx.Response(self.status, text="ok")


def _channel(recorder, **kwargs) -> SlackChannel:
    client = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    defaults = dict(
        webhook_url=WEBHOOK,
        channel="#price-alerts",
        username="PrimePulse Bot",
        enabled=True,
        client=client,
    )
    defaults.update(kwargs)
    return SlackChannel(**defaults)


def test_alert_attachment_fields():
    attachment = format_alert_attachment(_alert())
    fields = {f["title"]: f["value"] for f in attachment["fields"]}

    assert attachment["title"] == "💰 Price Drop Alert"
    assert attachment["text"] == "*Echo Dot*"
    assert fields["Current Price"] == "$39.99"
    assert fields["Previous Price"] == "$49.99"
    assert fields["Price Change"] == "-$10.00 (-20.0%)"
    assert fields["Severity"] == "high"
    assert "B000000001" in fields["ASIN"]


def test_critical_alert_is_coloured_danger():
    assert format_alert_attachment(_alert(severity=Severity.CRITICAL))["color"] == "danger"


def test_digest_ranks_threats():
    text = format_threat_digest([_threat(1), _threat(2)], "MVP Customer")

    assert text.startswith("🚨 *Top 2 Price Drop Threats for MVP Customer*")
    assert "*1. B000000001*" in text
    assert "*2. B000000002*" in text
    assert "Drop Probability: 65.0%" in text
    assert "Expected Drop: 12.5%" in text


@pytest.mark.asyncio
async def test_send_alert_posts_attachment():
    recorder = Recorder()
    await _channel(recorder).send_alert(_alert())

    [body] = recorder.bodies
    assert body["channel"] == "#price-alerts"
    assert body["username"] == "PrimePulse Bot"
    assert len(body["attachments"]) == 1


@pytest.mark.asyncio
async def test_send_batch_splits_into_attachment_groups():
    recorder = Recorder()
    alerts = [_alert(n) for n in range(MAX_ATTACHMENTS + 5)]

    await _channel(recorder).send_batch(alerts)

    assert [len(b["attachments"]) for b in recorder.bodies] == [MAX_ATTACHMENTS, 5]


@pytest.mark.asyncio
async def test_send_digest_uses_mrkdwn_and_skips_empty():
    recorder = Recorder()
    channel = _channel(recorder)

    await channel.send_digest([], "MVP Customer")
    await channel.send_digest([_threat()], "MVP Customer")

    [body] = recorder.bodies
    assert body["mrkdwn"] is True
    assert "MVP Customer" in body["text"]


@pytest.mark.asyncio
async def test_system_notice_level_sets_emoji():
    recorder = Recorder()
    await _channel(recorder).send_system_notice("crawl degraded", "warning")

    [body] = recorder.bodies
    assert body["icon_emoji"] == ":warning:"
    assert body["attachments"][0]["text"] == "crawl degraded"


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [{"enabled": False}, {"webhook_url": ""}])
async def test_inactive_channel_sends_nothing(kwargs):
    recorder = Recorder()
    channel = _channel(recorder, **kwargs)

    await channel.send_alert(_alert())
    await channel.send_system_notice("hello")

    assert recorder.bodies == []


@pytest.mark.asyncio
async def test_rejected_post_raises_notification_error():
    with pytest.raises(NotificationError, match="HTTP 404"):
        await _channel(Recorder(status=404)).send_alert(_alert())


@pytest.mark.asyncio
async def test_unreachable_webhook_raises_notification_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(NotificationError, match="cannot reach slack"):
        await _channel(handler).send_batch([_alert()])


@pytest.mark.asyncio
async def test_scope_webhook_overrides_default_destination():
    urls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        urls.append(str(request.url))
        return httpx.Response(200, text="ok")

    channel = _channel(handler)
    scoped = await channel.for_scope(
        TrackingScope(id=2, name="Other", webhook_url="https://hooks.slack.test/services/OTHER")
    )
    unchanged = await channel.for_scope(TrackingScope(id=1, name="MVP Customer"))

    await scoped.send_alert(_alert())
    await unchanged.send_alert(_alert())

    assert unchanged is channel
    assert urls == ["https://hooks.slack.test/services/OTHER", WEBHOOK]
