from __future__ import annotations

import json
from datetime import UTC, datetime

import allure
import httpx

from bookmark_hoard.notify import Notification, WebhookNotifier, format_payload

pytestmark = [
    allure.epic("Notifications"),
    allure.feature("Webhooks"),
]


def test_discord_payload_uses_embed_colors() -> None:
    now = datetime(2026, 1, 5, 10, 0, tzinfo=UTC)

    ok = format_payload(Notification("Bookmarks Processed", "**New:** 3"), now=now)
    failed = format_payload(Notification("Job Failed", "Error: boom", success=False), now=now)

    assert ok == {
        "embeds": [
            {
                "title": "Bookmarks Processed",
                "description": "**New:** 3",
                "color": 0x00FF00,
                "timestamp": "2026-01-05T10:00:00.000Z",
            },
        ],
    }
    assert failed["embeds"][0]["color"] == 0xFF0000


def test_slack_payload_uses_header_and_markdown_section() -> None:
    payload = format_payload(Notification("Job Failed", "Error: boom", success=False), "slack")

    assert payload["text"] == "Job Failed"
    assert payload["blocks"][0]["text"]["text"] == ":x: Job Failed"
    assert payload["blocks"][1]["text"] == {"type": "mrkdwn", "text": "Error: boom"}


def test_notify_posts_json_to_webhook() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(204)

    notifier = WebhookNotifier(
        "https://hooks.example.com/abc",
        webhook_type="slack",
        transport=httpx.MockTransport(handler),
    )

    assert notifier.notify(Notification("Bookmarks Processed", "done")) is True
    assert len(requests) == 1
    assert requests[0].method == "POST"
    body = json.loads(requests[0].content)
    assert body["blocks"][0]["text"]["text"] == ":white_check_mark: Bookmarks Processed"


def test_notify_failures_are_logged_not_raised(caplog) -> None:
    def rejected(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    def slow(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    for handler in (rejected, unreachable, slow):
        notifier = WebhookNotifier(
            "https://hooks.example.com/abc",
            transport=httpx.MockTransport(handler),
        )
        assert notifier.notify(Notification("Job Failed", "x", success=False)) is False

    assert "Webhook failed: 500" in caplog.text
    assert "Webhook timed out" in caplog.text


def test_notify_without_url_is_a_no_op() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    notifier = WebhookNotifier(None, transport=httpx.MockTransport(handler))

    assert notifier.notify(Notification("Bookmarks Processed", "done")) is False
