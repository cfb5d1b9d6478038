"""Webhook alert formatting and delivery."""

import asyncio
import json

import httpx
import pytest

from newswatch.config.settings import Settings
from newswatch.news.models import Verdict
from newswatch.notify.webhook import (
    NotificationError,
    NullNotifier,
    WebhookNotifier,
    build_notifier,
    format_alert,
)

from .conftest import make_item

VERDICT = Verdict(relevant=True, category="policy", reason="regulator approves framework", tags=["X", "SEC"])


def test_format_alert_lists_title_category_reason_and_link():
    item = make_item("a1", title="Policy X approved", link="https://example.com/newsletter/a1")

    text = format_alert(item, VERDICT)

    assert text.splitlines() == [
        "Policy X approved",
        "Category: policy",
        "Analysis: regulator approves framework",
        "Tags: X, SEC",
        "Link: https://example.com/newsletter/a1",
    ]


def test_webhook_posts_text_message():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"errcode": 0})

    notifier = WebhookNotifier("https://hooks.example/send?key=k", transport=httpx.MockTransport(handler))
    asyncio.run(notifier.send(make_item("a1", title="Policy X approved"), VERDICT))

    assert len(requests) == 1
    body = json.loads(requests[0].content)
    assert body["msgtype"] == "text"
    assert body["text"]["content"].startswith("Policy X approved\n")
    assert requests[0].url.params["key"] == "k"


def test_non_2xx_status_raises():
    notifier = WebhookNotifier(
        "https://hooks.example/send",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    with pytest.raises(NotificationError):
        asyncio.run(notifier.send(make_item("a1"), VERDICT))


def test_transport_error_raises():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    notifier = WebhookNotifier("https://hooks.example/send", transport=httpx.MockTransport(handler))
    with pytest.raises(NotificationError):
        asyncio.run(notifier.send(make_item("a1"), VERDICT))


def test_build_notifier_without_url_only_logs():
    notifier = build_notifier(Settings(_env_file=None, webhook_url=""))
    assert isinstance(notifier, NullNotifier)
    asyncio.run(notifier.send(make_item("a1"), VERDICT))

    assert isinstance(build_notifier(Settings(_env_file=None, webhook_url="https://hooks.example")), WebhookNotifier)
