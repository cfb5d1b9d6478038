"""Poll cycle orchestration.

Each cycle:
1. Fetch the feed (a failure ends the cycle with no side effects)
2. Skip items already in the ledger
3. Classify new items
4. Upsert the verdict
5. Alert on relevant items, only after a successful upsert

Steps 2-5 fail per item: an error skips that item for this cycle and the
next cycle tries it again, since nothing was persisted for it.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Optional, Protocol

from ..notify.webhook import NotificationError, Notifier
from ..storage.ledger import LedgerError
from .classifier import ClassificationError, ClassifierDisabledError, Classifier
from .fetcher import FeedFetchError
from .models import FeedItem, ItemContext, Verdict

logger = logging.getLogger(__name__)


class FeedSource(Protocol):
    async def fetch(self) -> list[FeedItem]: ...


class ItemLedger(Protocol):
    def exists(self, guid: str) -> bool: ...

    def upsert(self, item: FeedItem, verdict: Verdict) -> None: ...


@dataclass
class CycleReport:
    """Counters for one cycle."""

    fetched: int = 0
    already_seen: int = 0
    persisted: int = 0
    relevant: int = 0
    lookup_failed: int = 0
    classify_failed: int = 0
    persist_failed: int = 0
    fetch_failed: bool = False
    stopped_early: bool = False
    duration_seconds: float = 0.0
    failed_guids: list[str] = field(default_factory=list)

    def summary(self) -> str:
        return (
            f"fetched={self.fetched} seen={self.already_seen} persisted={self.persisted} "
            f"relevant={self.relevant} lookup_failed={self.lookup_failed} "
            f"classify_failed={self.classify_failed} persist_failed={self.persist_failed} "
            f"duration={self.duration_seconds:.1f}s"
        )


class Pipeline:
    """
    Drives fetch-classify-persist-notify cycles on a fixed interval.

    Collaborators are injected so tests can substitute deterministic fakes.
    Alerts run as detached tasks; their failures are logged and never reach
    the cycle.
    """

    def __init__(
        self,
        fetcher: FeedSource,
        classifier: Classifier,
        ledger: ItemLedger,
        notifier: Notifier,
        poll_interval_seconds: float = 15 * 60,
        summary_max_chars: int = 800,
    ):
        """
        Initialize the pipeline.

        Args:
            fetcher: Feed source returning the current items
            classifier: Relevance classifier
            ledger: Dedup ledger
            notifier: Alert sink for relevant items
            poll_interval_seconds: Pause between the end of one cycle and the next
            summary_max_chars: Character budget for the summary sent to the classifier
        """
        self.fetcher = fetcher
        self.classifier = classifier
        self.ledger = ledger
        self.notifier = notifier
        self.poll_interval_seconds = poll_interval_seconds
        self.summary_max_chars = summary_max_chars
        self._notifications: set[asyncio.Task] = set()

    async def cycle(self, stop: Optional[asyncio.Event] = None) -> CycleReport:
        """
        Run one poll cycle.

        Args:
            stop: When set, the cycle ends after the item in progress

        Returns:
            CycleReport with per-outcome counters
        """
        report = CycleReport()
        started = time.monotonic()
        logger.info("[PIPELINE] Polling feed")

        try:
            items = await self.fetcher.fetch()
        except FeedFetchError as e:
            logger.error("[PIPELINE] Failed to fetch feed: %s", e)
            report.fetch_failed = True
            return report
        except Exception:
            logger.exception("[PIPELINE] Unexpected error fetching feed")
            report.fetch_failed = True
            return report

        report.fetched = len(items)
        for item in items:
            if stop is not None and stop.is_set():
                logger.info("[PIPELINE] Stop requested, ending cycle early")
                report.stopped_early = True
                break
            try:
                await self._process_item(item, report)
            except Exception:
                logger.exception("[PIPELINE] Unexpected error processing %s", item.guid)
                report.failed_guids.append(item.guid)

        report.duration_seconds = time.monotonic() - started
        logger.info("[PIPELINE] Cycle done: %s", report.summary())
        return report

    async def _process_item(self, item: FeedItem, report: CycleReport) -> None:
        try:
            seen = await asyncio.to_thread(self.ledger.exists, item.guid)
        except LedgerError as e:
            logger.warning("[PIPELINE] Check exists failed for %s: %s", item.guid, e)
            report.lookup_failed += 1
            report.failed_guids.append(item.guid)
            return
        if seen:
            report.already_seen += 1
            return

        context = ItemContext.from_item(item, self.summary_max_chars)
        try:
            verdict = await self.classifier.evaluate(context)
        except ClassifierDisabledError as e:
            logger.debug("[PIPELINE] Skipping %s: %s", item.guid, e)
            report.classify_failed += 1
            report.failed_guids.append(item.guid)
            return
        except ClassificationError as e:
            logger.warning("[PIPELINE] Analysis error for %r: %s", item.title, e)
            report.classify_failed += 1
            report.failed_guids.append(item.guid)
            return

        try:
            await asyncio.to_thread(self.ledger.upsert, item, verdict)
        except LedgerError as e:
            logger.warning("[PIPELINE] Store analysis failed for %r: %s", item.title, e)
            report.persist_failed += 1
            report.failed_guids.append(item.guid)
            return
        report.persisted += 1

        if verdict.relevant:
            report.relevant += 1
            self._schedule_notification(item, verdict)

    def _schedule_notification(self, item: FeedItem, verdict: Verdict) -> None:
        task = asyncio.create_task(self._notify(item, verdict))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify(self, item: FeedItem, verdict: Verdict) -> None:
        # Detached: nothing here may propagate into a cycle.
        try:
            await self.notifier.send(item, verdict)
        except NotificationError as e:
            logger.warning("[PIPELINE] Notification failed for %s: %s", item.guid, e)
        except asyncio.CancelledError:
            logger.warning("[PIPELINE] Notification cancelled for %s", item.guid)
            raise
        except Exception:
            logger.exception("[PIPELINE] Unexpected notification error for %s", item.guid)

    @property
    def pending_notifications(self) -> int:
        return len(self._notifications)

    async def drain_notifications(self, timeout: Optional[float] = None) -> None:
        """Wait for outstanding alerts; cancel whatever is left after timeout."""
        if not self._notifications:
            return
        done, pending = await asyncio.wait(set(self._notifications), timeout=timeout)
        if pending:
            logger.warning("[PIPELINE] Cancelling %d undelivered notifications", len(pending))
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

    async def run_forever(self, stop: asyncio.Event) -> None:
        """One cycle immediately, then one on every tick until stop is set.

        Ticks fall on a fixed period measured from the start of each cycle;
        ticks missed by a long cycle are dropped, not queued.
        """
        loop = asyncio.get_running_loop()
        interval = self.poll_interval_seconds
        logger.info("[PIPELINE] Scheduler started, interval=%.0fs", interval)
        while not stop.is_set():
            started = loop.time()
            await self.cycle(stop)
            elapsed = loop.time() - started
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval - (elapsed % interval))
            except asyncio.TimeoutError:
                continue
        logger.info("[PIPELINE] Stopping scheduler")
