"""Data models for feed items, classifier verdicts and stored records."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class FeedItem:
    """Normalized entry from the feed. Lives for a single cycle."""

    guid: str  # dedup key
    title: str
    link: str
    published: datetime
    summary: str = ""


@dataclass(frozen=True)
class ItemContext:
    """The fields of a FeedItem that are sent to the classifier."""

    title: str
    link: str
    published: datetime
    summary: str

    @classmethod
    def from_item(cls, item: FeedItem, max_summary_chars: int = 800) -> "ItemContext":
        return cls(
            title=item.title,
            link=item.link,
            published=item.published,
            summary=truncate_text(item.summary, max_summary_chars),
        )


@dataclass(frozen=True)
class Verdict:
    """Structured judgement returned by the classifier for one item."""

    relevant: bool
    category: str = ""
    reason: str = ""
    tags: list[str] = field(default_factory=list)


@dataclass
class PersistedRecord:
    """Row from the ledger."""

    guid: str
    title: str
    link: str
    published: Optional[datetime]
    relevant: bool
    category: str
    reason: str
    tags: list[str]
    first_seen: Optional[datetime] = None
    last_updated: Optional[datetime] = None
    summary: str = ""


def truncate_text(text: str, max_chars: int) -> str:
    """Cut text to at most max_chars characters.

    Python strings index by code point, so a multi-byte character is never split.
    """
    if len(text) <= max_chars:
        return text
    text = text.strip()
    if len(text) <= max_chars:
        return text
    return text[:max_chars]
