"""Scrape entrypoint - Standalone script for running incremental scrapes.

Usage:
    python -m roverfeed.scrape_entrypoint                         # All active sources
    python -m roverfeed.scrape_entrypoint perseverance            # Single source
    python -m roverfeed.scrape_entrypoint curiosity --lookback 30 # Wider re-scrape
"""

import argparse
import asyncio
import sys
from typing import Dict, Optional

from roverfeed.core.config import settings
from roverfeed.core.db import SessionLocal
from roverfeed.core.errors import RunInProgressError
from roverfeed.core.logging import get_logger
from roverfeed.ingestion.sources import source_names
from roverfeed.services.runner import BackgroundRunner
from roverfeed.services.scheduler import IncrementalScheduler, RunOutcome

logger = get_logger("scrape_entrypoint")


async def run_scrape_job(source: str, lookback: int) -> Dict[str, RunOutcome]:
    """Run an incremental scrape for a single source."""
    logger.info(f"Starting scrape job for source: {source}")
    with SessionLocal() as db:
        outcome = await IncrementalScheduler(db).run_incremental(source, lookback)
        logger.info(f"Scrape job completed for {source}: {outcome.to_dict()}")
        return {source: outcome}


async def run_all_sources(lookback: int) -> Optional[Dict[str, RunOutcome]]:
    """Run one pass over every active source."""
    logger.info(f"Running scrape for all active sources: {settings.SCRAPER_ACTIVE_SOURCES}")
    return await BackgroundRunner(lookback=lookback).run_once()


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="roverfeed.scrape_entrypoint", description="Run an incremental scrape")
    parser.add_argument("source", nargs="?", choices=source_names(), help="Source to scrape (default: all active)")
    parser.add_argument(
        "--lookback",
        type=int,
        default=settings.SCRAPER_LOOKBACK_WINDOWS,
        help="Sols to re-scrape behind the watermark",
    )
    return parser.parse_args(argv)


def main(argv=None):
    """Main entry point for scraping."""
    args = parse_args(argv)
    logger.info("Scraper starting...")

    try:
        if args.source:
            results = asyncio.run(run_scrape_job(args.source, args.lookback))
        else:
            results = asyncio.run(run_all_sources(args.lookback))
    except RunInProgressError as exc:
        logger.error(str(exc))
        sys.exit(1)

    # Exit with error code if any source failed
    if not results or any(not outcome.succeeded for outcome in results.values()):
        sys.exit(1)

    logger.info("Scraper completed successfully")
    return results


if __name__ == "__main__":
    main()
