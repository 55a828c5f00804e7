"""Photos are append-only: inserted once per external_id, never updated by ingestion."""

from datetime import date, datetime

from sqlalchemy import Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from roverfeed.models.base import Base, JSONType


class Photo(Base):
    __tablename__ = "photos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Upstream-assigned identifier; the only deduplication key
    external_id: Mapped[str] = mapped_column(String(200), nullable=False, unique=True, index=True)

    source_id: Mapped[str] = mapped_column(String(50), nullable=False)

    sol: Mapped[int] = mapped_column(Integer, nullable=False)

    camera_id: Mapped[int] = mapped_column(ForeignKey("cameras.id"), nullable=False, index=True)

    img_src_full: Mapped[str] = mapped_column(Text, nullable=False)
    img_src_small: Mapped[str | None] = mapped_column(Text, nullable=True)
    img_src_medium: Mapped[str | None] = mapped_column(Text, nullable=True)
    img_src_large: Mapped[str | None] = mapped_column(Text, nullable=True)

    earth_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    date_taken_utc: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    date_taken_mars: Mapped[str | None] = mapped_column(String(50), nullable=True)
    date_received: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    sample_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Location and telemetry
    site: Mapped[int | None] = mapped_column(Integer, nullable=True)
    drive: Mapped[int | None] = mapped_column(Integer, nullable=True)
    xyz: Mapped[str | None] = mapped_column(String(200), nullable=True)
    mast_az: Mapped[float | None] = mapped_column(Float, nullable=True)
    mast_el: Mapped[float | None] = mapped_column(Float, nullable=True)
    camera_vector: Mapped[str | None] = mapped_column(String(200), nullable=True)
    camera_position: Mapped[str | None] = mapped_column(String(200), nullable=True)
    camera_model_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    filter_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    attitude: Mapped[str | None] = mapped_column(String(200), nullable=True)
    spacecraft_clock: Mapped[float | None] = mapped_column(Float, nullable=True)

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    credit: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Complete upstream item, stored verbatim for replay
    raw_payload: Mapped[dict] = mapped_column(JSONType, nullable=False)

    ingested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (Index("ix_photos_source_sol", "source_id", "sol"),)
