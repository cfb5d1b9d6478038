"""Chat webhook notifications (WeCom-style text messages)."""

import logging
from typing import Optional, Protocol

import httpx

from ..config.settings import Settings
from ..news.models import FeedItem, Verdict

logger = logging.getLogger(__name__)


class NotificationError(Exception):
    """The alert could not be delivered."""


class Notifier(Protocol):
    async def send(self, item: FeedItem, verdict: Verdict) -> None: ...


def format_alert(item: FeedItem, verdict: Verdict) -> str:
    """Human-readable alert body."""
    lines = [
        item.title,
        f"Category: {verdict.category}",
        f"Analysis: {verdict.reason}",
    ]
    if verdict.tags:
        lines.append(f"Tags: {', '.join(verdict.tags)}")
    lines.append(f"Link: {item.link}")
    return "\n".join(lines)


class WebhookNotifier:
    """Posts a text message to a group-bot webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self._transport = transport

    async def send(self, item: FeedItem, verdict: Verdict) -> None:
        """
        Deliver one alert.

        Raises:
            NotificationError: On transport errors or a non-2xx response
        """
        payload = {
            "msgtype": "text",
            "text": {"content": format_alert(item, verdict)},
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.webhook_url, json=payload)
        except httpx.HTTPError as e:
            raise NotificationError(f"send webhook: {e}") from e

        if resp.status_code >= 300:
            raise NotificationError(f"webhook returned status {resp.status_code}")
        logger.info("[NOTIFIER] Sent alert for %s", item.guid)


class NullNotifier:
    """Used when no webhook is configured; only logs."""

    async def send(self, item: FeedItem, verdict: Verdict) -> None:
        logger.info("[NOTIFIER] Relevant item (no webhook configured): %s", item.title)


def build_notifier(settings: Settings) -> Notifier:
    if not settings.webhook_url:
        return NullNotifier()
    return WebhookNotifier(settings.webhook_url, timeout=settings.webhook_timeout_seconds)
