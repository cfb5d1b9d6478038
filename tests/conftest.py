"""Shared fixtures and deterministic fakes for the pipeline collaborators."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from newswatch.config.settings import Settings
from newswatch.news.classifier import ClassificationError
from newswatch.news.models import FeedItem, ItemContext, Verdict
from newswatch.notify.webhook import NotificationError
from newswatch.storage.ledger import Ledger, LedgerError


class FakeClock:
    """Returns a strictly increasing UTC time, one second per call."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 6, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(seconds=1)
        return self.now


class FakeFeed:
    def __init__(self, items=None, error: Optional[Exception] = None):
        self.items = list(items or [])
        self.error = error
        self.calls = 0
        self.on_fetch = None

    async def fetch(self) -> list[FeedItem]:
        self.calls += 1
        if self.on_fetch is not None:
            self.on_fetch(self.calls)
        if self.error is not None:
            raise self.error
        return list(self.items)


class FakeClassifier:
    """Verdicts keyed by item title; titles in `failures` raise."""

    def __init__(self, verdicts=None, failures=(), default: Optional[Verdict] = None):
        self.verdicts = dict(verdicts or {})
        self.failures = dict.fromkeys(failures, ClassificationError("model said no"))
        self.default = default or Verdict(relevant=False, reason="off topic")
        self.contexts: list[ItemContext] = []
        self.on_evaluate = None

    def ready(self) -> bool:
        return True

    async def evaluate(self, context: ItemContext) -> Verdict:
        self.contexts.append(context)
        if self.on_evaluate is not None:
            self.on_evaluate(context)
        if context.title in self.failures:
            raise self.failures[context.title]
        return self.verdicts.get(context.title, self.default)

    @property
    def titles(self) -> list[str]:
        return [c.title for c in self.contexts]


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[tuple[FeedItem, Verdict]] = []

    async def send(self, item: FeedItem, verdict: Verdict) -> None:
        self.sent.append((item, verdict))
        if self.fail:
            raise NotificationError("webhook returned status 500")

    @property
    def guids(self) -> list[str]:
        return [item.guid for item, _ in self.sent]


class FlakyLedger:
    """Wraps a real ledger and fails selected identifiers."""

    def __init__(self, inner: Ledger, fail_exists=(), fail_upsert=()):
        self.inner = inner
        self.fail_exists = set(fail_exists)
        self.fail_upsert = set(fail_upsert)

    def exists(self, guid: str) -> bool:
        if guid in self.fail_exists:
            raise LedgerError(f"check exists {guid}: connection lost")
        return self.inner.exists(guid)

    def upsert(self, item: FeedItem, verdict: Verdict) -> None:
        if item.guid in self.fail_upsert:
            raise LedgerError(f"save analysis {item.guid}: deadlock")
        self.inner.upsert(item, verdict)


def make_item(guid: str, title: Optional[str] = None, published: Optional[datetime] = None, **kwargs) -> FeedItem:
    return FeedItem(
        guid=guid,
        title=title or f"Item {guid}",
        link=kwargs.pop("link", f"https://example.com/newsletter/{guid}"),
        published=published or datetime(2024, 1, 1, tzinfo=timezone.utc),
        summary=kwargs.pop("summary", "summary text"),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock) -> Ledger:
    store = Ledger("sqlite://", clock=clock)
    store.create_tables()
    yield store
    store.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None, database_url="sqlite://", max_items=50)
