"""Slack message formatters.

Alerts become legacy attachments (one per alert); digests and reports are
plain mrkdwn text.
"""

import time
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from primepulse.models import Alert, AlertKind, RankedPrediction, ThreatAssessment
from primepulse.utils.clock import utcnow

PRODUCT_URL = "https://www.amazon.com/dp/{identifier}"

ALERT_TITLES = {
    AlertKind.PRICE_DROP: ("💰 Price Drop Alert", "good"),
    AlertKind.COUPON_ADDED: ("🎫 Coupon Added", "warning"),
    AlertKind.BACK_IN_STOCK: ("📦 Back in Stock", "good"),
}

SYSTEM_LEVELS = {
    "info": ("good", ":information_source:"),
    "warning": ("warning", ":warning:"),
    "error": ("danger", ":x:"),
}


def _money(value: Optional[Decimal | float]) -> str:
    if value is None:
        return "n/a"
    return f"${float(value):.2f}"


def _product_link(identifier: str) -> str:
    return f"<{PRODUCT_URL.format(identifier=identifier)}|{identifier}>"


def format_alert_attachment(alert: Alert) -> Dict[str, Any]:
    """Slack attachment for one alert."""
    title, color = ALERT_TITLES.get(alert.kind, ("Price Alert", "good"))

    fields = [
        {"title": "ASIN", "value": _product_link(alert.identifier), "short": True},
        {"title": "Current Price", "value": _money(alert.current_price), "short": True},
    ]

    if alert.previous_price is not None and alert.price_change is not None:
        change = float(alert.price_change)
        sign = "+" if change >= 0 else "-"
        fields.append(
            {"title": "Previous Price", "value": _money(alert.previous_price), "short": True}
        )
        fields.append(
            {
                "title": "Price Change",
                "value": f"{sign}${abs(change):.2f} ({alert.price_change_percent or 0:.1f}%)",
                "short": True,
            }
        )

    if alert.coupon_amount is not None:
        fields.append({"title": "Coupon", "value": _money(alert.coupon_amount), "short": True})

    fields.append({"title": "Severity", "value": alert.severity.value, "short": True})

    return {
        "color": "danger" if alert.severity.value == "critical" else color,
        "title": title,
        "text": f"*{alert.title}*" if alert.title else f"Product: {alert.identifier}",
        "fields": fields,
        "footer": "PrimePulse",
        "ts": int(time.time()),
    }


def format_threat_digest(
    threats: Sequence[ThreatAssessment],
    scope_name: str,
) -> str:
    """Ranked mrkdwn digest of the given threats."""
    text = f"🚨 *Top {len(threats)} Price Drop Threats for {scope_name}*\n\n"

    for rank, threat in enumerate(threats, 1):
        text += f"*{rank}. {threat.title or threat.identifier}*\n"
        text += f"• ASIN: {_product_link(threat.identifier)}\n"
        text += f"• Current Price: {_money(threat.current_price)}\n"
        text += f"• Drop Probability: {threat.drop_probability * 100:.1f}%\n"
        text += f"• Expected Drop: {threat.expected_drop:.1f}%\n"
        text += f"• Confidence: {threat.confidence * 100:.1f}%\n\n"

    text += f"_Generated at {utcnow():%Y-%m-%d %H:%M} UTC_"
    return text


def format_weekly_report(predictions: Sequence[RankedPrediction], shown: int = 10) -> str:
    """Weekly summary of the highest-probability predictions."""
    text = "📊 *Weekly PrimePulse Report*\n\n"
    text += f"Top {min(shown, len(predictions))} items with highest drop probability:\n\n"

    for rank, prediction in enumerate(predictions[:shown], 1):
        text += (
            f"{rank}. *{prediction.identifier}* - "
            f"{prediction.drop_probability * 100:.1f}% drop probability\n"
        )
        text += (
            f"   Expected drop: {prediction.expected_drop:.1f}% | "
            f"Current: {_money(prediction.current_price)}\n\n"
        )

    return text


def format_system_notice(message: str, level: str = "info") -> tuple[Dict[str, Any], str]:
    """Attachment and icon emoji for an operational notice."""
    color, emoji = SYSTEM_LEVELS.get(level, SYSTEM_LEVELS["info"])
    attachment = {
        "color": color,
        "title": "PrimePulse System Alert",
        "text": message,
        "footer": "PrimePulse System",
        "ts": int(time.time()),
    }
    return attachment, emoji
