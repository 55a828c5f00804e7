"""Background runner: daily incremental pass over the active sources."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from roverfeed.core.config import settings
from roverfeed.core.db import SessionLocal
from roverfeed.core.errors import RunInProgressError
from roverfeed.core.logging import get_logger
from roverfeed.models.cursors import STATUS_FAILED
from roverfeed.services.scheduler import IncrementalScheduler, RunOutcome

log = get_logger("runner")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def next_run_time(now: datetime, run_at_hour: int, interval_hours: int) -> datetime:
    """First ``run_at_hour:00`` UTC slot strictly after ``now``, stepping by ``interval_hours``."""
    candidate = now.astimezone(timezone.utc).replace(hour=run_at_hour, minute=0, second=0, microsecond=0)
    step = timedelta(hours=max(1, interval_hours))
    while candidate <= now:
        candidate += step
    return candidate


class BackgroundRunner:
    """Owns the scheduled scrape loop started by the application lifespan.

    Passes never overlap: a wake that finds the previous pass still running
    is skipped. Each source runs in its own session and error boundary, so
    one failing rover never prevents the other from being scraped.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        sources: Optional[List[str]] = None,
        lookback: Optional[int] = None,
        scheduler_factory: Callable[[Session], IncrementalScheduler] = IncrementalScheduler,
        run_at_hour: Optional[int] = None,
        interval_hours: Optional[int] = None,
        source_delay: Optional[float] = None,
        error_backoff: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.session_factory = session_factory
        self.sources = list(sources if sources is not None else settings.SCRAPER_ACTIVE_SOURCES)
        self.lookback = settings.SCRAPER_LOOKBACK_WINDOWS if lookback is None else lookback
        self.scheduler_factory = scheduler_factory
        self.run_at_hour = settings.SCRAPER_RUN_AT_UTC_HOUR if run_at_hour is None else run_at_hour
        self.interval_hours = settings.SCRAPER_INTERVAL_HOURS if interval_hours is None else interval_hours
        self.source_delay = settings.SCRAPER_SOURCE_DELAY_SECONDS if source_delay is None else source_delay
        self.error_backoff = settings.SCRAPER_ERROR_BACKOFF_SECONDS if error_backoff is None else error_backoff
        self.sleep = sleep
        self.clock = clock
        self._pass_lock = asyncio.Lock()
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.is_running:
            return self._task
        log.info(
            f"Scheduled scraper started: sources={self.sources}, daily at "
            f"{self.run_at_hour:02d}:00 UTC, lookback={self.lookback}"
        )
        self._task = asyncio.create_task(self._loop(), name="roverfeed-scraper")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        log.info("Cancelling scheduled scraper task...")
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run_once(self) -> Optional[Dict[str, RunOutcome]]:
        """Run one pass over every active source.

        Returns the outcome per source, or ``None`` when the pass was skipped
        because another pass is still running.
        """
        if self._pass_lock.locked():
            log.warning("Previous scrape pass still running; skipping this wake")
            return None

        async with self._pass_lock:
            log.info(f"Starting scheduled scrape pass for {len(self.sources)} sources")
            results: Dict[str, RunOutcome] = {}
            for index, source_id in enumerate(self.sources):
                results[source_id] = await self._run_source(source_id)
                if index < len(self.sources) - 1 and self.source_delay > 0:
                    await self.sleep(self.source_delay)

            total = sum(r.records_added for r in results.values())
            failed = [s for s, r in results.items() if not r.succeeded]
            if failed:
                log.warning(f"Scrape pass finished: {total} photos added, failed sources: {failed}")
            else:
                log.info(f"Scrape pass finished: {total} photos added")
            return results

    async def _run_source(self, source_id: str) -> RunOutcome:
        db = self.session_factory()
        try:
            scheduler = self.scheduler_factory(db)
            return await scheduler.run_incremental(source_id, self.lookback)
        except RunInProgressError as exc:
            log.warning(f"Skipping {source_id}: {exc}")
            return RunOutcome(source=source_id, status=STATUS_FAILED, error_message=str(exc))
        except Exception as exc:  # noqa: BLE001
            log.exception(f"Scheduled scrape for {source_id} failed: {exc}")
            return RunOutcome(source=source_id, status=STATUS_FAILED, error_message=str(exc))
        finally:
            db.close()

    async def _loop(self) -> None:
        while True:
            try:
                now = self.clock()
                wake_at = next_run_time(now, self.run_at_hour, self.interval_hours)
                delay = (wake_at - now).total_seconds()
                log.info(f"Next scheduled scrape at {wake_at.isoformat()} (in {delay / 3600:.1f}h)")
                await self.sleep(delay)
                await self.run_once()
            except asyncio.CancelledError:
                log.info("Scheduled scraper task cancelled")
                raise
            except Exception as exc:
                log.exception(f"Scheduled scraper loop error: {exc}")
                await self.sleep(self.error_backoff)
