"""Slack incoming-webhook notification channel."""

import logging
from typing import Any, Dict, Optional, Sequence

import httpx

from primepulse.config import settings
from primepulse.errors import NotificationError
from primepulse.models import Alert, ThreatAssessment, TrackingScope
from primepulse.notify.formatters import (
    format_alert_attachment,
    format_system_notice,
    format_threat_digest,
)

logger = logging.getLogger(__name__)

# Slack renders at most this many attachments per message
MAX_ATTACHMENTS = 20


class SlackChannel:
    """Sends alerts, digests and system notices to a Slack webhook."""

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        channel: Optional[str] = None,
        username: Optional[str] = None,
        enabled: Optional[bool] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.webhook_url = webhook_url if webhook_url is not None else settings.slack_webhook_url
        self.channel = channel or settings.slack_channel
        self.username = username or settings.slack_username
        self.enabled = enabled if enabled is not None else settings.slack_alerts_enabled
        self.timeout = timeout or settings.request_timeout_seconds
        self._http_client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self):
        """Close HTTP client."""
        if self._http_client and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def for_scope(self, scope: TrackingScope) -> "SlackChannel":
        """Channel posting to the scope's own webhook; shares this HTTP client."""
        if not scope.webhook_url or scope.webhook_url == self.webhook_url:
            return self
        client = await self._get_client()
        return SlackChannel(
            webhook_url=scope.webhook_url,
            channel=self.channel,
            username=self.username,
            enabled=self.enabled,
            timeout=self.timeout,
            client=client,
        )

    def _active(self) -> bool:
        if not self.enabled:
            logger.debug("Slack alerts disabled, skipping notification")
            return False
        if not self.webhook_url:
            logger.warning("Slack webhook URL not configured")
            return False
        return True

    async def _post(self, payload: Dict[str, Any], what: str) -> None:
        body = {"channel": self.channel, "username": self.username, **payload}
        client = await self._get_client()
        try:
            response = await client.post(self.webhook_url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(f"Slack rejected {what}: HTTP {e.response.status_code}")
            raise NotificationError(f"slack returned HTTP {e.response.status_code} for {what}") from e
        except httpx.HTTPError as e:
            logger.error(f"Failed to send {what} to Slack: {e}")
            raise NotificationError(f"cannot reach slack for {what}: {e}") from e

    async def send_alert(self, alert: Alert) -> None:
        if not self._active():
            return
        await self._post(
            {"icon_emoji": ":bell:", "attachments": [format_alert_attachment(alert)]},
            f"{alert.kind.value} alert for {alert.identifier}",
        )
        logger.info(f"Slack alert sent for {alert.identifier}")

    async def send_batch(self, alerts: Sequence[Alert]) -> None:
        """Send alerts as one message per group of attachments."""
        if not alerts or not self._active():
            return

        for start in range(0, len(alerts), MAX_ATTACHMENTS):
            group = alerts[start:start + MAX_ATTACHMENTS]
            await self._post(
                {
                    "icon_emoji": ":bell:",
                    "text": f"{len(group)} price alert(s)",
                    "attachments": [format_alert_attachment(a) for a in group],
                },
                f"batch of {len(group)} alerts",
            )
        logger.info(f"Slack batch sent with {len(alerts)} alerts")

    async def send_digest(self, threats: Sequence[ThreatAssessment], scope_name: str) -> None:
        if not threats or not self._active():
            return
        await self._post(
            {
                "icon_emoji": ":warning:",
                "text": format_threat_digest(threats, scope_name),
                "mrkdwn": True,
            },
            f"threat digest for {scope_name}",
        )
        logger.info(f"Top threats digest sent for {scope_name} ({len(threats)} threats)")

    async def send_system_notice(self, message: str, level: str = "info") -> None:
        if not self._active():
            return
        attachment, emoji = format_system_notice(message, level)
        await self._post(
            {"icon_emoji": emoji, "attachments": [attachment]},
            f"{level} system notice",
        )
        logger.info("System notice sent to Slack")
