#!/usr/bin/env python3
"""
News watch service

Polls one RSS feed, classifies new items with an LLM, stores verdicts,
alerts on relevant items and serves them over HTTP.

Usage:
    python -m newswatch.main            # Scheduler + HTTP server
    python -m newswatch.main --once     # Run a single cycle and exit
"""

import argparse
import asyncio
import logging
import sys

import uvicorn

from .app.main import create_app
from .config.settings import Settings, get_settings
from .news.classifier import build_classifier
from .news.fetcher import FeedFetcher
from .news.pipeline import Pipeline
from .notify.webhook import build_notifier
from .storage.ledger import Ledger, LedgerError

logger = logging.getLogger("newswatch")


def parse_args() -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Poll a news feed, classify new items and serve the relevant ones"
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one poll cycle and exit (no HTTP server)",
    )

    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)",
    )

    return parser.parse_args()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_pipeline(settings: Settings, ledger: Ledger) -> Pipeline:
    """Wire the pipeline collaborators from settings."""
    return Pipeline(
        fetcher=FeedFetcher(settings.feed_url, link_filter=settings.feed_link_filter),
        classifier=build_classifier(settings),
        ledger=ledger,
        notifier=build_notifier(settings),
        poll_interval_seconds=settings.poll_interval_seconds,
        summary_max_chars=settings.summary_max_chars,
    )


async def run_once(pipeline: Pipeline, grace_seconds: float) -> int:
    report = await pipeline.cycle()
    await pipeline.drain_notifications(timeout=grace_seconds)
    return 1 if report.fetch_failed else 0


def main() -> int:
    """Main entry point."""
    args = parse_args()
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level)

    try:
        ledger = Ledger.from_settings(settings)
    except LedgerError as e:
        logger.error("Failed to init ledger: %s", e)
        return 1

    try:
        pipeline = build_pipeline(settings, ledger)

        if args.once:
            return asyncio.run(run_once(pipeline, settings.shutdown_grace_seconds))

        host, port = settings.bind_host_port()
        uvicorn.run(
            create_app(settings, ledger, pipeline),
            host=host,
            port=port,
            timeout_graceful_shutdown=settings.shutdown_grace_seconds,
            log_level=settings.log_level.lower(),
        )
        return 0
    finally:
        ledger.close()


def cli() -> None:
    """CLI entry point."""
    sys.exit(main())


if __name__ == "__main__":
    cli()
