"""Shared rate-limit counters, used when RATE_LIMIT_BACKEND=database."""

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from roverfeed.models.base import Base

WINDOW_HOUR = "hour"
WINDOW_DAY = "day"


class RateWindowCounter(Base):
    __tablename__ = "rate_window_counters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    identity: Mapped[str] = mapped_column(String(200), nullable=False)

    # Truncated to the hour or day boundary (UTC)
    window_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    window_kind: Mapped[str] = mapped_column(String(10), nullable=False)  # hour | day

    count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("identity", "window_start", "window_kind", name="uq_rate_window_counter"),
        Index("ix_rate_window_counters_window_start", "window_start"),
    )
