"""Scraper routes - Trigger incremental runs and inspect cursors."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from roverfeed.api.deps import get_db, get_scheduler, require_admin_key
from roverfeed.core.cursors import CursorStore
from roverfeed.core.errors import RunInProgressError, UnknownSourceError
from roverfeed.core.logging import get_logger
from roverfeed.ingestion.sources import get_source
from roverfeed.schemas.api import CursorOut, IncrementalRunResponse, RunOut
from roverfeed.services.data_service import DataService
from roverfeed.services.scheduler import IncrementalScheduler

router = APIRouter(prefix="/scraper", tags=["scraper"], dependencies=[Depends(require_admin_key)])
log = get_logger("scraper_routes")


def _known_source(source: str) -> str:
    try:
        return get_source(source).name
    except UnknownSourceError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get("/status", response_model=list[CursorOut])
def get_all_status(db: Session = Depends(get_db)):
    """Cursor rows for every source that has run at least once."""
    return [CursorOut.model_validate(c) for c in CursorStore(db).list_all()]


@router.get("/runs", response_model=list[RunOut])
def get_runs(
    source: Optional[str] = Query(None, description="Filter by source"),
    limit: int = Query(20, ge=1, le=100, description="Number of runs to return"),
    db: Session = Depends(get_db),
):
    """
    Recent incremental runs, newest first.

    Use this for monitoring scraper health and debugging failed sols.
    """
    runs = DataService(db).get_runs(source=source, limit=limit)
    return [
        RunOut(
            run_id=str(run.run_id),
            source_id=run.source_id,
            status=run.status,
            from_window=run.from_window,
            to_window=run.to_window,
            windows_scraped=run.windows_scraped,
            records_added=run.records_added,
            failed_windows=run.failed_windows,
            error_message=run.error_message,
            started_at=run.started_at,
            ended_at=run.ended_at,
        )
        for run in runs
    ]


@router.post("/{source}/incremental", response_model=IncrementalRunResponse)
async def run_incremental(
    source: str,
    lookback: int = Query(7, ge=0, le=365, description="Sols to re-scrape behind the watermark"),
    scheduler: IncrementalScheduler = Depends(get_scheduler),
):
    """
    Run an incremental scrape for one source and wait for it to finish.

    1. Read the cursor and claim it
    2. Scrape sols [watermark - lookback, current upstream sol]
    3. Insert photos not seen before
    4. Advance the watermark if every sol succeeded

    Returns 409 if a run for the source is already in progress.
    """
    name = _known_source(source)
    log.info(f"Incremental scrape triggered for {name} (lookback {lookback})")

    try:
        outcome = await scheduler.run_incremental(name, lookback)
    except RunInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    return IncrementalRunResponse(**outcome.to_dict())


@router.get("/{source}/status", response_model=CursorOut)
def get_status(source: str, db: Session = Depends(get_db)):
    name = _known_source(source)
    cursor = CursorStore(db).get(name)
    if cursor is None:
        raise HTTPException(status_code=404, detail=f"No scraper state for '{name}' yet")
    return CursorOut.model_validate(cursor)


@router.post("/{source}/reset-state", response_model=CursorOut)
def reset_state(
    source: str,
    window: int = Query(..., ge=0, description="New watermark sol"),
    scheduler: IncrementalScheduler = Depends(get_scheduler),
):
    """
    Overwrite the watermark. The next run re-scrapes from ``window - lookback``.

    Returns 409 while an incremental run for the source is in progress.
    """
    name = _known_source(source)
    try:
        cursor = scheduler.reset_state(name, window)
    except RunInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    log.warning(f"Scraper state for {name} reset to sol {window}")
    return CursorOut.model_validate(cursor)
