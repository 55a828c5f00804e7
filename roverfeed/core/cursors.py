"""Per-source ingestion cursor persistence"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from roverfeed.core.db import dialect_insert
from roverfeed.core.errors import RunInProgressError
from roverfeed.core.logging import get_logger
from roverfeed.models.cursors import (
    STATUS_FAILED,
    STATUS_IN_PROGRESS,
    STATUS_SUCCESS,
    ScraperCursor,
)

log = get_logger("cursor_store")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CursorStore:
    """Reads and writes the scraper cursor row of each source.

    The scheduler is the only writer during normal operation: it claims the
    row at the start of a run and writes the outcome once the run concludes.
    Reads are plain selects and need no coordination.
    """

    def __init__(self, db: Session, stale_after_seconds: int = 6 * 60 * 60):
        self.db = db
        self.stale_after = timedelta(seconds=stale_after_seconds)

    def get(self, source_id: str) -> Optional[ScraperCursor]:
        """Load the cursor for a source"""
        return self.db.get(ScraperCursor, source_id, populate_existing=True)

    def list_all(self) -> List[ScraperCursor]:
        stmt = select(ScraperCursor).order_by(ScraperCursor.source_id)
        return list(self.db.execute(stmt).scalars().all())

    def ensure(self, source_id: str) -> ScraperCursor:
        """Create the cursor at watermark 0 if the source has never run."""
        stmt = dialect_insert(self.db, ScraperCursor).values(
            source_id=source_id,
            last_watermark=0,
            last_run_at=_utcnow(),
            last_run_status=STATUS_SUCCESS,
            records_added_last_run=0,
        )
        stmt = stmt.on_conflict_do_nothing(index_elements=[ScraperCursor.source_id])
        result = self.db.execute(stmt)
        self.db.commit()
        if result.rowcount:
            log.info(f"Initialized cursor for {source_id} - next run scrapes from window 0")
        return self.get(source_id)

    def _unclaimed(self, now: datetime):
        """No live run holds the row: not in_progress, or claimed so long ago the run is presumed dead."""
        return or_(
            ScraperCursor.last_run_status != STATUS_IN_PROGRESS,
            ScraperCursor.last_run_at < now - self.stale_after,
        )

    def claim(self, source_id: str) -> ScraperCursor:
        """Mark the source in_progress, refusing if another live run holds it.

        The status check and the write are one conditional UPDATE, so two
        concurrent triggers cannot both win. A claim older than the stale
        threshold is treated as a crashed run and taken over.
        """
        self.ensure(source_id)
        now = _utcnow()
        stmt = (
            update(ScraperCursor)
            .where(ScraperCursor.source_id == source_id)
            .where(self._unclaimed(now))
            .values(last_run_status=STATUS_IN_PROGRESS, last_run_at=now, error_message=None)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        if result.rowcount == 0:
            raise RunInProgressError(f"An incremental run for '{source_id}' is already in progress")
        return self.get(source_id)

    def complete(
        self,
        source_id: str,
        *,
        succeeded: bool,
        records_added: int,
        watermark: Optional[int] = None,
        error_message: Optional[str] = None,
    ) -> ScraperCursor:
        """Write the outcome of a finished run.

        ``watermark`` is only applied when it moves the cursor forward.
        """
        cursor = self.get(source_id)
        if cursor is None:
            raise LookupError(f"No cursor for source '{source_id}'")

        if watermark is not None and watermark > cursor.last_watermark:
            cursor.last_watermark = watermark
        cursor.last_run_at = _utcnow()
        cursor.last_run_status = STATUS_SUCCESS if succeeded else STATUS_FAILED
        cursor.records_added_last_run = records_added
        cursor.error_message = error_message
        self.db.add(cursor)
        self.db.commit()
        return cursor

    def reset(self, source_id: str, window: int) -> ScraperCursor:
        """Administrative override: set the watermark directly, even backwards.

        Refused while a live run holds the cursor; that run would otherwise
        lose its claim and overwrite the new watermark when it completes.
        """
        self.ensure(source_id)
        now = _utcnow()
        stmt = (
            update(ScraperCursor)
            .where(ScraperCursor.source_id == source_id)
            .where(self._unclaimed(now))
            .values(
                last_watermark=window,
                last_run_at=now,
                last_run_status=STATUS_SUCCESS,
                records_added_last_run=0,
                error_message=None,
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.commit()
        if result.rowcount == 0:
            raise RunInProgressError(f"Cannot reset '{source_id}' while an incremental run is in progress")
        log.info(f"Reset cursor for {source_id} to window {window}")
        return self.get(source_id)
