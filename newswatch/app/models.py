"""Pydantic response models for the web API."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from ..news.models import PersistedRecord


class ItemData(BaseModel):
    """A persisted record as served by /items."""

    guid: str
    title: str
    link: str
    published_at: Optional[datetime] = None
    relevant: bool
    category: str = ""
    reason: str = ""
    tags: list[str] = []
    first_seen_at: Optional[datetime] = None
    last_updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: PersistedRecord) -> "ItemData":
        return cls(
            guid=record.guid,
            title=record.title,
            link=record.link,
            published_at=record.published,
            relevant=record.relevant,
            category=record.category,
            reason=record.reason,
            tags=record.tags,
            first_seen_at=record.first_seen,
            last_updated_at=record.last_updated,
        )


class ItemsResponse(BaseModel):
    """Response body for GET /items."""

    count: int
    items: list[ItemData]
