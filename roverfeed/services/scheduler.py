"""Incremental scheduler: cursor -> window range -> fetch/extract/ingest -> cursor."""

from __future__ import annotations

import asyncio
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from roverfeed.core.config import settings
from roverfeed.core.cursors import CursorStore
from roverfeed.core.errors import CircuitOpenError, FetchError
from roverfeed.core.logging import get_logger
from roverfeed.ingestion.base import BaseSource
from roverfeed.ingestion.http_client import ResilientFetchClient
from roverfeed.ingestion.sources import get_source
from roverfeed.models.cursors import (
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_SUCCESS,
    ScraperCursor,
)
from roverfeed.models.runs import IngestionRun
from roverfeed.services.ingestion_processor import IngestionProcessor

log = get_logger("scheduler")

ClientFactory = Callable[[str], ResilientFetchClient]


@dataclass
class RunOutcome:
    source: str
    status: str = STATUS_IN_PROGRESS
    from_window: Optional[int] = None
    to_window: Optional[int] = None
    windows_scraped: int = 0
    records_added: int = 0
    failed_windows: List[int] = field(default_factory=list)
    error_message: Optional[str] = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class IncrementalScheduler:
    """Runs one incremental scrape per call.

    Responsibilities:
    - Claim the source cursor (one live run per source)
    - Compute the window range: [max(0, watermark - lookback), upstream max]
    - Fetch, extract and ingest each window, isolating per-window failures
    - Write the cursor and the run history once the run concludes
    """

    def __init__(
        self,
        db: Session,
        client_factory: Optional[ClientFactory] = None,
        window_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.cursors = CursorStore(db, stale_after_seconds=settings.SCRAPER_STALE_RUN_SECONDS)
        self.processor = IngestionProcessor(db)
        self.client_factory = client_factory or ResilientFetchClient
        self.window_delay = settings.SCRAPER_WINDOW_DELAY_SECONDS if window_delay is None else window_delay
        self.sleep = sleep

    async def run_incremental(self, source_id: str, lookback: int = 7) -> RunOutcome:
        """Run an incremental scrape for a single source.

        Raises UnknownSourceError for unregistered sources and
        RunInProgressError when another run holds the cursor. Every other
        failure is reported through the returned outcome and the cursor.
        """
        source = get_source(source_id)
        cursor = self.cursors.claim(source.name)
        started = time.monotonic()

        run = IngestionRun(
            source_id=source.name, status=STATUS_IN_PROGRESS, started_at=datetime.now(timezone.utc)
        )
        self.db.add(run)
        self.db.commit()

        outcome = RunOutcome(source=source.name)
        try:
            async with self.client_factory(source.name) as client:
                await self._run(source, client, cursor, max(0, lookback), outcome)
        except asyncio.CancelledError:
            outcome.error_message = "Run cancelled before completion"
            log.warning(f"Incremental scrape for {source.name} cancelled")
            self._finish(source, run, outcome, started)
            raise
        except FetchError as exc:
            outcome.error_message = f"Could not determine current upstream window: {exc}"
            log.error(f"Incremental scrape failed for {source.name}: {outcome.error_message}")
        except Exception as exc:  # noqa: BLE001
            self.db.rollback()
            outcome.error_message = str(exc) or type(exc).__name__
            log.exception(f"Incremental scrape failed for {source.name}: {exc}")

        self._finish(source, run, outcome, started)
        return outcome

    def reset_state(self, source_id: str, window: int) -> ScraperCursor:
        """Administrative override of the watermark (may move it backwards)."""
        source = get_source(source_id)
        return self.cursors.reset(source.name, window)

    # -------------------------------------------------------------------------
    # Run body
    # -------------------------------------------------------------------------
    async def _run(
        self,
        source: BaseSource,
        client: ResilientFetchClient,
        cursor: ScraperCursor,
        lookback: int,
        outcome: RunOutcome,
    ) -> None:
        watermark = cursor.last_watermark
        from_window = max(0, watermark - lookback)
        outcome.from_window = from_window

        to_window = await source.current_max_window(client)
        outcome.to_window = to_window

        if to_window < watermark:
            log.warning(
                f"Upstream regressed for {source.name}: current max sol {to_window} "
                f"< watermark {watermark}; watermark left unchanged"
            )
        if to_window < from_window:
            log.warning(f"Nothing to scrape for {source.name}: sols {from_window}-{to_window} is empty")
            return

        log.info(
            f"Starting incremental scrape for {source.name}: sols {from_window}-{to_window} "
            f"({to_window - from_window + 1} sols, lookback: {lookback})"
        )
        await self._scrape_windows(source, client, from_window, to_window, outcome)

    async def _scrape_windows(
        self,
        source: BaseSource,
        client: ResilientFetchClient,
        from_window: int,
        to_window: int,
        outcome: RunOutcome,
    ) -> None:
        for window in range(from_window, to_window + 1):
            try:
                batch = await source.fetch_window(client, window)
            except CircuitOpenError as exc:
                remaining = list(range(window, to_window + 1))
                outcome.failed_windows.extend(remaining)
                log.error(f"{exc}; abandoning {len(remaining)} remaining sols for {source.name}")
                return
            except FetchError as exc:
                outcome.failed_windows.append(window)
                log.error(f"Failed to scrape {source.name} sol {window}: {exc}")
                continue

            extraction = source.extract(batch)
            added = self.processor.ingest(source.name, extraction.records)
            outcome.windows_scraped += 1
            outcome.records_added += added
            if added:
                log.info(f"{source.name} sol {window}: {added} photos added")

            # Be nice to the upstream servers
            if window < to_window and self.window_delay > 0:
                await self.sleep(self.window_delay)

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------
    def _finish(self, source: BaseSource, run: IngestionRun, outcome: RunOutcome, started: float) -> None:
        """Single state mutation at the end of a run: cursor + history row."""
        if outcome.failed_windows and outcome.error_message is None:
            outcome.error_message = (
                f"Failed to scrape {len(outcome.failed_windows)} sols: "
                f"{', '.join(str(w) for w in outcome.failed_windows)}"
            )
        succeeded = outcome.error_message is None
        outcome.status = STATUS_SUCCESS if succeeded else STATUS_FAILED
        outcome.duration_seconds = round(time.monotonic() - started, 3)

        self.cursors.complete(
            source.name,
            succeeded=succeeded,
            records_added=outcome.records_added,
            watermark=outcome.to_window if succeeded else None,
            error_message=outcome.error_message,
        )

        run.status = outcome.status
        run.from_window = outcome.from_window
        run.to_window = outcome.to_window
        run.windows_scraped = outcome.windows_scraped
        run.records_added = outcome.records_added
        run.failed_windows = outcome.failed_windows or None
        run.error_message = outcome.error_message
        run.ended_at = datetime.now(timezone.utc)
        self.db.add(run)
        self.db.commit()

        if succeeded:
            log.info(
                f"Incremental scrape completed for {source.name}: {outcome.records_added} photos added "
                f"in {outcome.duration_seconds:.0f}s"
            )
        else:
            log.error(f"Incremental scrape failed for {source.name}: {outcome.error_message}")
