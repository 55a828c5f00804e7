from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serialized with camelCase keys; still accepts snake_case on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


# -----------------------------------------------------------------------------
# Scraper
# -----------------------------------------------------------------------------


class IncrementalRunResponse(CamelModel):
    source: str
    windows_scraped: int
    records_added: int
    status: str
    from_window: Optional[int] = None
    to_window: Optional[int] = None
    failed_windows: list[int] = Field(default_factory=list)
    error_message: Optional[str] = None
    duration_seconds: float = 0.0


class CursorOut(CamelModel):
    source_id: str
    last_watermark: int
    last_run_at: datetime
    last_run_status: str
    records_added_last_run: int
    error_message: Optional[str] = None


class RunOut(CamelModel):
    run_id: str
    source_id: str
    status: str
    from_window: Optional[int] = None
    to_window: Optional[int] = None
    windows_scraped: int
    records_added: int
    failed_windows: Optional[list[int]] = None
    error_message: Optional[str] = None
    started_at: datetime
    ended_at: Optional[datetime] = None


# -----------------------------------------------------------------------------
# Photos
# -----------------------------------------------------------------------------


class PhotoOut(CamelModel):
    external_id: str
    source_id: str
    sol: int
    camera: str
    earth_date: Optional[date] = None
    date_taken_utc: Optional[datetime] = None
    date_taken_mars: Optional[str] = None
    img_src_full: str
    img_src_small: Optional[str] = None
    img_src_medium: Optional[str] = None
    img_src_large: Optional[str] = None
    sample_type: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    site: Optional[int] = None
    drive: Optional[int] = None
    mast_az: Optional[float] = None
    mast_el: Optional[float] = None
    title: Optional[str] = None
    caption: Optional[str] = None
    credit: Optional[str] = None


class PhotoDetailOut(PhotoOut):
    xyz: Optional[str] = None
    camera_vector: Optional[str] = None
    camera_position: Optional[str] = None
    camera_model_type: Optional[str] = None
    filter_name: Optional[str] = None
    attitude: Optional[str] = None
    spacecraft_clock: Optional[float] = None
    date_received: Optional[datetime] = None
    raw_payload: dict[str, Any]


class PhotoPage(CamelModel):
    request_id: str
    total: int
    limit: int
    offset: int
    data: list[PhotoOut]


# -----------------------------------------------------------------------------
# Health
# -----------------------------------------------------------------------------


class HealthResponse(BaseModel):
    database: str
    last_run_status: str | None
