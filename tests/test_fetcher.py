"""Feed fetching and entry normalization."""

import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from newswatch.news.fetcher import FeedFetcher, FeedFetchError

RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
<channel>
  <title>Example Web3 News</title>
  <link>https://example.com/</link>
  <description>Newsletter feed</description>
  <item>
    <guid>https://example.com/newsletter/100</guid>
    <title>Stablecoin bill passes</title>
    <link>https://example.com/newsletter/100</link>
    <pubDate>Mon, 01 Jan 2024 08:00:00 +0800</pubDate>
    <description><![CDATA[<p>The   bill <b>passed</b>.</p>]]></description>
  </item>
  <item>
    <title>No guid, link only</title>
    <link>https://example.com/newsletter/101</link>
    <pubDate>Tue, 02 Jan 2024 00:00:00 GMT</pubDate>
    <description>second</description>
  </item>
  <item>
    <guid>https://example.com/article/5</guid>
    <title>Not a newsletter</title>
    <link>https://example.com/article/5</link>
    <description>skip me</description>
  </item>
  <item>
    <guid>https://example.com/newsletter/102</guid>
    <title>Undated</title>
    <link>https://example.com/newsletter/102</link>
  </item>
</channel>
</rss>
"""

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _fetcher(handler, link_filter="/newsletter/") -> FeedFetcher:
    return FeedFetcher(
        "https://example.com/rss.xml",
        link_filter=link_filter,
        transport=httpx.MockTransport(handler),
        clock=lambda: NOW,
    )


def _serve(body: str, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, content=body.encode("utf-8"))

    return handler


def test_fetch_normalizes_entries_in_feed_order():
    items = asyncio.run(_fetcher(_serve(RSS)).fetch())

    assert [i.guid for i in items] == [
        "https://example.com/newsletter/100",
        "https://example.com/newsletter/101",
        "https://example.com/newsletter/102",
    ]
    first = items[0]
    assert first.title == "Stablecoin bill passes"
    assert first.published == datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)
    assert first.summary == "The bill passed."


def test_identifier_falls_back_to_link():
    items = asyncio.run(_fetcher(_serve(RSS)).fetch())
    assert items[1].guid == "https://example.com/newsletter/101"
    assert items[1].title == "No guid, link only"


def test_missing_date_uses_clock():
    items = asyncio.run(_fetcher(_serve(RSS)).fetch())
    assert items[2].published == NOW


def test_empty_filter_keeps_every_entry():
    items = asyncio.run(_fetcher(_serve(RSS), link_filter="").fetch())
    assert len(items) == 4


def test_entry_without_any_identifier_is_dropped():
    feed = """<?xml version="1.0"?><rss version="2.0"><channel><title>t</title>
    <item><description>nothing to key on</description></item>
    <item><title>Title only</title></item>
    </channel></rss>"""
    items = asyncio.run(_fetcher(_serve(feed), link_filter="").fetch())
    assert [i.guid for i in items] == ["Title only"]


def test_http_error_is_a_fetch_error():
    with pytest.raises(FeedFetchError):
        asyncio.run(_fetcher(_serve("busy", status=503)).fetch())


def test_transport_error_is_a_fetch_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FeedFetchError):
        asyncio.run(_fetcher(handler).fetch())


def test_unparseable_document_is_a_fetch_error():
    with pytest.raises(FeedFetchError):
        asyncio.run(_fetcher(_serve("<html><body><p>maintenance")).fetch())


def test_large_feed_parse_keeps_event_loop_responsive():
    entries = "".join(
        f"<item><guid>https://example.com/newsletter/{i}</guid><title>Item {i}</title>"
        f"<link>https://example.com/newsletter/{i}</link>"
        f"<pubDate>Mon, 01 Jan 2024 00:00:00 GMT</pubDate>"
        f"<description><![CDATA[<p>Body {i} with <b>markup</b></p>]]></description></item>"
        for i in range(3000)
    )
    big = f'<?xml version="1.0"?><rss version="2.0"><channel><title>big</title>{entries}</channel></rss>'

    async def _run():
        loop = asyncio.get_running_loop()
        done = asyncio.Event()
        gaps = []

        async def heartbeat():
            last = loop.time()
            while not done.is_set():
                await asyncio.sleep(0.005)
                now = loop.time()
                gaps.append(now - last)
                last = now

        beat = asyncio.create_task(heartbeat())
        await asyncio.sleep(0.02)
        try:
            items = await _fetcher(_serve(big)).fetch()
        finally:
            done.set()
            await beat
        return items, max(gaps)

    items, worst_gap = asyncio.run(_run())

    assert len(items) == 3000
    assert worst_gap < 0.5
