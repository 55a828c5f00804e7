"""Powers incremental ingestion + resume-on-failure"""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from roverfeed.models.base import Base

STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"
STATUS_IN_PROGRESS = "in_progress"


class ScraperCursor(Base):
    __tablename__ = "scraper_cursors"

    source_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Last successfully ingested sol; only moves backwards through reset_state
    last_watermark: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    last_run_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    last_run_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,  # success | failed | in_progress
    )

    records_added_last_run: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
