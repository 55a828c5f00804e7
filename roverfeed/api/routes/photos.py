"""Photo routes - Rate-limited read API over ingested photos."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from roverfeed.api.deps import enforce_rate_limit, get_db
from roverfeed.models.photos import Photo
from roverfeed.schemas.api import PhotoDetailOut, PhotoOut, PhotoPage
from roverfeed.services.data_service import DataService

router = APIRouter(prefix="/api/v1/photos", tags=["photos"], dependencies=[Depends(enforce_rate_limit)])


def _photo_fields(photo: Photo, camera_name: str) -> dict:
    fields = {name: getattr(photo, name) for name in PhotoDetailOut.model_fields if hasattr(photo, name)}
    fields["camera"] = camera_name
    return fields


@router.get("", response_model=PhotoPage)
def list_photos(
    source: Optional[str] = Query(None, description="Filter by rover (curiosity, perseverance)"),
    sol: Optional[int] = Query(None, ge=0, description="Filter by sol"),
    camera: Optional[str] = Query(None, description="Filter by camera name (case-insensitive)"),
    limit: int = Query(25, ge=1, le=100, description="Number of photos to return (max 100)"),
    offset: int = Query(0, ge=0, description="Number of photos to skip"),
    db: Session = Depends(get_db),
):
    """
    List full-quality photos, newest sol first.

    Every response carries X-RateLimit-* headers for the calling key.
    """
    rows, total = DataService(db).get_photos(source=source, sol=sol, camera=camera, limit=limit, offset=offset)
    return PhotoPage(
        request_id=str(uuid.uuid4()),
        total=total,
        limit=limit,
        offset=offset,
        data=[PhotoOut(**_photo_fields(photo, camera_name)) for photo, camera_name in rows],
    )


@router.get("/{external_id}", response_model=PhotoDetailOut)
def get_photo(external_id: str, db: Session = Depends(get_db)):
    """Single photo including the verbatim upstream payload."""
    row = DataService(db).get_photo(external_id)
    if row is None:
        raise HTTPException(status_code=404, detail=f"Photo '{external_id}' not found")
    photo, camera_name = row
    return PhotoDetailOut(**_photo_fields(photo, camera_name))
