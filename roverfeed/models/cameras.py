"""Cameras are provisioned lazily, the first time a source reports a new instrument."""

from datetime import datetime

from sqlalchemy import DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from roverfeed.models.base import Base


class Camera(Base):
    __tablename__ = "cameras"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    source_id: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False, comment="Canonical instrument name (e.g. 'NAVCAM')")

    # Auto-provisioned cameras start with full_name == name until curated
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (UniqueConstraint("source_id", "name", name="uq_cameras_source_name"),)
