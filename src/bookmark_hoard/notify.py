"""Webhook notifications for terminal job outcomes."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

import httpx

from bookmark_hoard.storage import to_iso, utc_now

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DISCORD_SUCCESS_COLOR = 0x00FF00
DISCORD_FAILURE_COLOR = 0xFF0000


@dataclass(slots=True, frozen=True)
class Notification:
    """Platform-neutral notification content."""

    title: str
    description: str
    success: bool = True


class Notifier(Protocol):
    def notify(self, notification: Notification) -> bool:
        """Deliver the notification; return True if it was accepted."""


def format_payload(
    notification: Notification,
    webhook_type: str = "discord",
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Shape the notification for a Discord embed or Slack blocks message."""

    if webhook_type == "slack":
        marker = ":white_check_mark:" if notification.success else ":x:"
        return {
            "text": notification.title,
            "blocks": [
                {
                    "type": "header",
                    "text": {"type": "plain_text", "text": f"{marker} {notification.title}"},
                },
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": notification.description},
                },
            ],
        }
    return {
        "embeds": [
            {
                "title": notification.title,
                "description": notification.description,
                "color": DISCORD_SUCCESS_COLOR if notification.success else DISCORD_FAILURE_COLOR,
                "timestamp": to_iso(now or utc_now()),
            },
        ],
    }


class WebhookNotifier:
    """Posts notifications to a webhook. Delivery problems are logged, never raised."""

    def __init__(
        self,
        url: str | None,
        *,
        webhook_type: str = "discord",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.url = url
        self.webhook_type = webhook_type
        self._timeout = httpx.Timeout(timeout_seconds, connect=min(timeout_seconds, 5.0))
        self._transport = transport

    def notify(self, notification: Notification) -> bool:
        if not self.url:
            return False

        payload = format_payload(notification, self.webhook_type)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self.url, json=payload)
        except httpx.TimeoutException:
            logger.warning("Webhook timed out: %s", notification.title)
            return False
        except httpx.HTTPError as error:
            logger.warning("Webhook error for %r: %s", notification.title, error)
            return False

        if not response.is_success:
            logger.warning(
                "Webhook failed: %s %s",
                response.status_code,
                response.reason_phrase,
            )
            return False
        logger.debug("Webhook delivered: %s", notification.title)
        return True

