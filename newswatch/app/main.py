"""FastAPI application: health check, relevant items, and the poll scheduler."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import PlainTextResponse

from ..config.settings import Settings
from ..news.models import PersistedRecord
from ..news.pipeline import Pipeline
from ..storage.ledger import Ledger, LedgerError
from .models import ItemData, ItemsResponse

logger = logging.getLogger(__name__)


def get_relevant(ledger: Ledger, limit: int) -> list[PersistedRecord]:
    """Most recent relevant records, newest first."""
    return ledger.list_recent(relevant_only=True, limit=limit)


def _log_scheduler_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("[API] Poll scheduler stopped: %s", exc, exc_info=exc)


def create_app(
    settings: Settings,
    ledger: Ledger,
    pipeline: Optional[Pipeline] = None,
) -> FastAPI:
    """
    Build the web application.

    Args:
        settings: Loaded settings
        ledger: Initialized ledger (read-only from the API)
        pipeline: When given, its scheduler runs for the lifetime of the app

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        stop = asyncio.Event()
        scheduler = None
        if pipeline is not None:
            scheduler = asyncio.create_task(pipeline.run_forever(stop))
            scheduler.add_done_callback(_log_scheduler_exit)
        host, port = settings.bind_host_port()
        logger.info("[API] HTTP server listening on %s:%d", host, port)
        try:
            yield
        finally:
            stop.set()
            if scheduler is not None:
                # The item in progress is allowed to finish. A crash was
                # already logged by _log_scheduler_exit.
                await asyncio.gather(scheduler, return_exceptions=True)
                await pipeline.drain_notifications(timeout=settings.shutdown_grace_seconds)
            logger.info("[API] Shutdown complete")

    app = FastAPI(title="newswatch", lifespan=lifespan)
    app.state.settings = settings
    app.state.ledger = ledger

    @app.get("/healthz", response_class=PlainTextResponse)
    def health_check():
        """Liveness probe."""
        return "ok"

    @app.get("/items", response_model=ItemsResponse)
    def list_items(
        request: Request,
        limit: Optional[int] = Query(default=None, ge=1),
    ):
        """Most recent relevant items, capped at MAX_ITEMS."""
        max_items = request.app.state.settings.max_items
        effective = min(limit, max_items) if limit else max_items
        try:
            records = get_relevant(request.app.state.ledger, effective)
        except LedgerError as e:
            logger.error("[API] List relevant failed: %s", e)
            raise HTTPException(status_code=500, detail="internal error")

        items = [ItemData.from_record(r) for r in records]
        return ItemsResponse(count=len(items), items=items)

    return app
