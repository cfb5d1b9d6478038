"""RSS feed fetching for the poll cycle.

Downloads a single feed with httpx, parses it with feedparser and
normalizes the entries into FeedItem objects.
"""

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Callable, Optional

import feedparser
import httpx

from .models import FeedItem

logger = logging.getLogger(__name__)

_HEADERS = {
    "User-Agent": "newswatch/0.1 (+https://github.com/newswatch)",
    "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
}


class FeedFetchError(Exception):
    """The whole feed could not be fetched or parsed."""


def pick_identifier(entry: feedparser.FeedParserDict) -> str:
    """Dedup key for an entry: guid, then link, then title."""
    for key in ("id", "link", "title"):
        value = (entry.get(key) or "").strip()
        if value:
            return value
    return ""


class FeedFetcher:
    """
    Fetches and normalizes entries from one RSS/Atom feed.

    A transport error, a non-2xx response or an unparseable document
    raises FeedFetchError; the caller treats it as a failed cycle.
    """

    def __init__(
        self,
        feed_url: str,
        link_filter: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        """
        Initialize the fetcher.

        Args:
            feed_url: URL of the RSS feed
            link_filter: Substring the identifier or link must contain (empty keeps all)
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests)
            clock: Source of "now" for entries without a publish date
        """
        self.feed_url = feed_url
        self.link_filter = link_filter
        self.timeout = timeout
        self._transport = transport
        self._clock = clock

    async def fetch(self) -> list[FeedItem]:
        """
        Fetch the feed and return its items in document order.

        Raises:
            FeedFetchError: If the feed cannot be downloaded or parsed
        """
        try:
            async with httpx.AsyncClient(
                follow_redirects=True,
                timeout=self.timeout,
                headers=_HEADERS,
                transport=self._transport,
            ) as client:
                resp = await client.get(self.feed_url)
                resp.raise_for_status()
                content = resp.content
        except httpx.HTTPError as e:
            raise FeedFetchError(f"fetch {self.feed_url}: {e}") from e

        # Parsing a large feed is CPU-bound; keep it off the event loop.
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._parse_feed, content)

    def _parse_feed(self, content: bytes) -> list[FeedItem]:
        """Parse a downloaded document into FeedItems (runs in a worker thread)."""
        feed = feedparser.parse(content)
        if feed.bozo and not feed.entries:
            raise FeedFetchError(f"parse {self.feed_url}: {feed.get('bozo_exception')}")

        items = []
        dropped = 0
        for entry in feed.entries:
            item = self._to_item(entry)
            if item is None:
                dropped += 1
                continue
            items.append(item)

        logger.info(
            "[FETCHER] Fetched %d items from %s (%d filtered out)",
            len(items),
            self.feed_url,
            dropped,
        )
        return items

    def _to_item(self, entry: feedparser.FeedParserDict) -> Optional[FeedItem]:
        guid = pick_identifier(entry)
        if not guid:
            return None

        link = entry.get("link", "") or ""
        if self.link_filter and self.link_filter not in guid and self.link_filter not in link:
            return None

        return FeedItem(
            guid=guid,
            title=entry.get("title", "") or "",
            link=link,
            published=self._parse_date(entry) or self._clock(),
            summary=self._clean_summary(entry.get("summary", "") or ""),
        )

    def _parse_date(self, entry: feedparser.FeedParserDict) -> Optional[datetime]:
        """Parse entry date from various RSS formats."""
        if entry.get("published_parsed"):
            # feedparser normalizes struct_time to UTC
            dt = datetime(*entry.published_parsed[:6])
            return dt.replace(tzinfo=timezone.utc)

        if entry.get("updated_parsed"):
            dt = datetime(*entry.updated_parsed[:6])
            return dt.replace(tzinfo=timezone.utc)

        return None

    def _clean_summary(self, summary: str) -> str:
        """Strip HTML and collapse whitespace."""
        clean = re.sub(r"<[^>]+>", "", summary)
        return re.sub(r"\s+", " ", clean).strip()
