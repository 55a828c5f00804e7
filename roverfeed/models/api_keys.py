"""Lookup-only view of issued API keys. Keys are issued elsewhere."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from roverfeed.models.base import Base


class ApiKey(Base):
    __tablename__ = "api_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # SHA-256 hex digest of the raw key
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)

    # Rate-limit identity (the key owner), shared by all keys of one owner
    identity: Mapped[str] = mapped_column(String(200), nullable=False)

    tier: Mapped[str] = mapped_column(String(20), nullable=False, default="free")

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
