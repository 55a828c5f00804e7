"""Ingestion processor: dedup against stored photos, provision cameras, one atomic batch write."""

from __future__ import annotations

from dataclasses import asdict
from typing import Dict, List, Sequence, Set, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from roverfeed.core.db import dialect_insert
from roverfeed.core.logging import get_logger
from roverfeed.ingestion.extract import NormalizedRecord
from roverfeed.models.cameras import Camera
from roverfeed.models.photos import Photo

log = get_logger("ingestion_processor")


class IngestionProcessor:
    """Writes extracted records for one source.

    ``external_id`` uniqueness is the only idempotency mechanism: records
    already stored are dropped before the write, so re-processing a window is
    side-effect free.
    """

    def __init__(self, db: Session):
        self.db = db

    def ingest(self, source_id: str, records: Sequence[NormalizedRecord]) -> int:
        """Insert the records not yet stored; returns how many were added."""
        if not records:
            return 0

        unique: Dict[str, NormalizedRecord] = {}
        for rec in records:
            unique.setdefault(rec.external_id, rec)

        camera_ids = {
            name: self.get_or_create_camera(source_id, name)[0].id
            for name in sorted({rec.camera_name for rec in unique.values()})
        }

        existing = self._existing_external_ids(list(unique))
        new_records = [rec for ext_id, rec in unique.items() if ext_id not in existing]

        log.debug(
            f"Batch duplicate check for {source_id}: {len(unique)} in batch, {len(existing)} already stored"
        )
        if not new_records:
            return 0

        rows = [self._to_row(rec, camera_ids[rec.camera_name]) for rec in new_records]
        return self._insert_batch(rows)

    def get_or_create_camera(self, source_id: str, name: str) -> Tuple[Camera, bool]:
        """Look up a camera, creating it when upstream reports one we have never seen.

        Side effect: creates persistent state from unvalidated upstream input.
        Returns ``(camera, created)``.
        """
        camera = self._find_camera(source_id, name)
        if camera is not None:
            return camera, False

        stmt = dialect_insert(self.db, Camera).values(source_id=source_id, name=name, full_name=name)
        stmt = stmt.on_conflict_do_nothing(index_elements=[Camera.source_id, Camera.name])
        result = self.db.execute(stmt)
        self.db.commit()

        created = bool(result.rowcount)
        if created:
            log.warning(
                f"New sub-resource auto-provisioned: camera {name} for {source_id} "
                f"(upstream reported an unknown instrument)"
            )
        return self._find_camera(source_id, name), created

    def _find_camera(self, source_id: str, name: str) -> Camera | None:
        stmt = select(Camera).where(Camera.source_id == source_id, Camera.name == name)
        return self.db.execute(stmt).scalar_one_or_none()

    def _existing_external_ids(self, external_ids: List[str]) -> Set[str]:
        stmt = select(Photo.external_id).where(Photo.external_id.in_(external_ids))
        return set(self.db.execute(stmt).scalars().all())

    @staticmethod
    def _to_row(rec: NormalizedRecord, camera_id: int) -> dict:
        row = asdict(rec)
        row.pop("camera_name")
        row["camera_id"] = camera_id
        return row

    def _insert_batch(self, rows: List[dict]) -> int:
        """All-or-nothing insert; conflicts from a concurrent writer are ignored, not raised."""
        stmt = dialect_insert(self.db, Photo).values(rows)
        stmt = stmt.on_conflict_do_nothing(index_elements=[Photo.external_id])
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        inserted = result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(rows)
        log.info(f"Inserted {inserted} new photos")
        return inserted
