"""Data Service - Query logic for the read API and operator endpoints."""

from __future__ import annotations

from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from roverfeed.core.logging import get_logger
from roverfeed.models.cameras import Camera
from roverfeed.models.photos import Photo
from roverfeed.models.runs import IngestionRun

log = get_logger("data_service")


class DataService:
    """Handles all data query operations - reads from DB only, no writes."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Photo Queries
    # -------------------------------------------------------------------------
    def get_photos(
        self,
        source: Optional[str] = None,
        sol: Optional[int] = None,
        camera: Optional[str] = None,
        limit: int = 25,
        offset: int = 0,
    ) -> Tuple[List[Tuple[Photo, str]], int]:
        """Photos with their camera name, newest sol first, plus the total match count."""
        stmt = select(Photo, Camera.name).join(Camera, Photo.camera_id == Camera.id)

        if source:
            stmt = stmt.where(Photo.source_id == source.lower())
        if sol is not None:
            stmt = stmt.where(Photo.sol == sol)
        if camera:
            stmt = stmt.where(func.upper(Camera.name) == camera.upper())

        total = self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0

        stmt = stmt.order_by(Photo.sol.desc(), Photo.id.asc()).limit(limit).offset(offset)
        rows = [(photo, camera_name) for photo, camera_name in self.db.execute(stmt).all()]
        return rows, total

    def get_photo(self, external_id: str) -> Optional[Tuple[Photo, str]]:
        stmt = (
            select(Photo, Camera.name)
            .join(Camera, Photo.camera_id == Camera.id)
            .where(Photo.external_id == external_id)
        )
        row = self.db.execute(stmt).first()
        return (row[0], row[1]) if row else None

    # -------------------------------------------------------------------------
    # Run History Queries
    # -------------------------------------------------------------------------
    def get_runs(self, source: Optional[str] = None, limit: int = 20) -> List[IngestionRun]:
        """Get recent incremental runs, newest first."""
        stmt = select(IngestionRun)
        if source:
            stmt = stmt.where(IngestionRun.source_id == source.lower())
        stmt = stmt.order_by(IngestionRun.started_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def get_last_run(self) -> Optional[IngestionRun]:
        stmt = select(IngestionRun).order_by(IngestionRun.started_at.desc()).limit(1)
        return self.db.execute(stmt).scalar_one_or_none()
