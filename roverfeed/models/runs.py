"""Run history for /scraper/runs and operator debugging"""

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from roverfeed.models.base import Base, JSONType


class IngestionRun(Base):
    __tablename__ = "ingestion_runs"

    run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    source_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,  # in_progress | success | failed
    )

    from_window: Mapped[int | None] = mapped_column(Integer, nullable=True)
    to_window: Mapped[int | None] = mapped_column(Integer, nullable=True)

    windows_scraped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    records_added: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    failed_windows: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
