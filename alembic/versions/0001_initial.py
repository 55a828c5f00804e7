"""initial schema: cursors, runs, cameras, photos, api keys, rate counters

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), "postgresql")


def upgrade() -> None:
    op.create_table(
        "scraper_cursors",
        sa.Column("source_id", sa.String(length=50), nullable=False),
        sa.Column("last_watermark", sa.Integer(), nullable=False),
        sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_run_status", sa.String(length=20), nullable=False),
        sa.Column("records_added_last_run", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("source_id"),
    )

    op.create_table(
        "ingestion_runs",
        sa.Column("run_id", sa.Uuid(), nullable=False),
        sa.Column("source_id", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("from_window", sa.Integer(), nullable=True),
        sa.Column("to_window", sa.Integer(), nullable=True),
        sa.Column("windows_scraped", sa.Integer(), nullable=False),
        sa.Column("records_added", sa.Integer(), nullable=False),
        sa.Column("failed_windows", JSON_TYPE, nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column("ended_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("ix_ingestion_runs_source_id", "ingestion_runs", ["source_id"])

    op.create_table(
        "cameras",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("source_id", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("full_name", sa.String(length=200), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_id", "name", name="uq_cameras_source_name"),
    )
    op.create_index("ix_cameras_source_id", "cameras", ["source_id"])

    op.create_table(
        "photos",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("external_id", sa.String(length=200), nullable=False),
        sa.Column("source_id", sa.String(length=50), nullable=False),
        sa.Column("sol", sa.Integer(), nullable=False),
        sa.Column("camera_id", sa.Integer(), nullable=False),
        sa.Column("img_src_full", sa.Text(), nullable=False),
        sa.Column("img_src_small", sa.Text(), nullable=True),
        sa.Column("img_src_medium", sa.Text(), nullable=True),
        sa.Column("img_src_large", sa.Text(), nullable=True),
        sa.Column("earth_date", sa.Date(), nullable=True),
        sa.Column("date_taken_utc", sa.DateTime(timezone=True), nullable=True),
        sa.Column("date_taken_mars", sa.String(length=50), nullable=True),
        sa.Column("date_received", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sample_type", sa.String(length=50), nullable=True),
        sa.Column("width", sa.Integer(), nullable=True),
        sa.Column("height", sa.Integer(), nullable=True),
        sa.Column("site", sa.Integer(), nullable=True),
        sa.Column("drive", sa.Integer(), nullable=True),
        sa.Column("xyz", sa.String(length=200), nullable=True),
        sa.Column("mast_az", sa.Float(), nullable=True),
        sa.Column("mast_el", sa.Float(), nullable=True),
        sa.Column("camera_vector", sa.String(length=200), nullable=True),
        sa.Column("camera_position", sa.String(length=200), nullable=True),
        sa.Column("camera_model_type", sa.String(length=100), nullable=True),
        sa.Column("filter_name", sa.String(length=100), nullable=True),
        sa.Column("attitude", sa.String(length=200), nullable=True),
        sa.Column("spacecraft_clock", sa.Float(), nullable=True),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("credit", sa.Text(), nullable=True),
        sa.Column("raw_payload", JSON_TYPE, nullable=False),
        sa.Column("ingested_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.ForeignKeyConstraint(["camera_id"], ["cameras.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_photos_external_id", "photos", ["external_id"], unique=True)
    op.create_index("ix_photos_camera_id", "photos", ["camera_id"])
    op.create_index("ix_photos_source_sol", "photos", ["source_id", "sol"])

    op.create_table(
        "api_keys",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("key_hash", sa.String(length=64), nullable=False),
        sa.Column("identity", sa.String(length=200), nullable=False),
        sa.Column("tier", sa.String(length=20), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_api_keys_key_hash", "api_keys", ["key_hash"], unique=True)

    op.create_table(
        "rate_window_counters",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("identity", sa.String(length=200), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_kind", sa.String(length=10), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("identity", "window_start", "window_kind", name="uq_rate_window_counter"),
    )
    op.create_index("ix_rate_window_counters_window_start", "rate_window_counters", ["window_start"])


def downgrade() -> None:
    op.drop_index("ix_rate_window_counters_window_start", table_name="rate_window_counters")
    op.drop_table("rate_window_counters")
    op.drop_index("ix_api_keys_key_hash", table_name="api_keys")
    op.drop_table("api_keys")
    op.drop_index("ix_photos_source_sol", table_name="photos")
    op.drop_index("ix_photos_camera_id", table_name="photos")
    op.drop_index("ix_photos_external_id", table_name="photos")
    op.drop_table("photos")
    op.drop_index("ix_cameras_source_id", table_name="cameras")
    op.drop_table("cameras")
    op.drop_index("ix_ingestion_runs_source_id", table_name="ingestion_runs")
    op.drop_table("ingestion_runs")
    op.drop_table("scraper_cursors")
