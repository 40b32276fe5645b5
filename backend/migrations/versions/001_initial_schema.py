"""Initial schema: crawl_sources, raw_content, booths, crawl_metrics.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Crawl sources
    op.create_table(
        "crawl_sources",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("source_url", sa.String(1000), nullable=False),
        sa.Column("extra_urls", postgresql.JSONB),
        sa.Column("strategy", sa.String(50), nullable=False, index=True),
        sa.Column("priority", sa.Integer, nullable=False, server_default="50"),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("crawl_frequency_minutes", sa.Integer, nullable=False, server_default="10080"),
        sa.Column("page_limit", sa.Integer),
        sa.Column("config_json", postgresql.JSONB),
        sa.Column("status", sa.String(20), nullable=False, server_default="active", index=True),
        sa.Column("needs_review", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("last_run_at", sa.DateTime(timezone=True)),
        sa.Column("last_success_at", sa.DateTime(timezone=True)),
        sa.Column("consecutive_failures", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_error_message", sa.Text),
        sa.Column("last_error_at", sa.DateTime(timezone=True)),
        sa.Column("total_found", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_added", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_updated", sa.Integer, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_source_due", "crawl_sources", ["enabled", "last_run_at", "crawl_frequency_minutes"])

    # Raw content (immutable, one row per distinct body)
    op.create_table(
        "raw_content",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("source_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("crawl_sources.id"), nullable=False, index=True),
        sa.Column("url", sa.String(1000), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("markdown", sa.Text),
        sa.Column("html", sa.Text),
        sa.Column("status_code", sa.Integer),
        sa.Column("size_bytes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("fetched_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("extracted_at", sa.DateTime(timezone=True)),
        sa.UniqueConstraint("source_id", "url", "content_hash", name="uq_raw_content_source_url_hash"),
    )
    op.create_index("idx_raw_content_latest", "raw_content", ["source_id", "url", "fetched_at"])

    # Booths
    op.create_table(
        "booths",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("slug", sa.String(255), unique=True, nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False, index=True),
        sa.Column("normalized_city", sa.String(100), index=True),
        sa.Column("address", sa.String(300)),
        sa.Column("city", sa.String(100), index=True),
        sa.Column("state", sa.String(100)),
        sa.Column("country", sa.String(100), index=True),
        sa.Column("postal_code", sa.String(20)),
        sa.Column("latitude", sa.Float),
        sa.Column("longitude", sa.Float),
        sa.Column("phone", sa.String(50)),
        sa.Column("website", sa.String(1000)),
        sa.Column("hours", sa.Text),
        sa.Column("cost", sa.String(255)),
        sa.Column("machine_model", sa.String(255)),
        sa.Column("machine_manufacturer", sa.String(255)),
        sa.Column("booth_type", sa.String(20)),
        sa.Column("description", sa.Text),
        sa.Column("is_operational", sa.Boolean),
        sa.Column("status", sa.String(20), nullable=False, server_default="active", index=True),
        sa.Column("needs_review", sa.Boolean, nullable=False, server_default="false", index=True),
        sa.Column("review_notes", postgresql.JSONB),
        sa.Column("primary_source_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("crawl_sources.id"), index=True),
        sa.Column("source_names", postgresql.JSONB),
        sa.Column("source_urls", postgresql.JSONB),
        sa.Column("confidence", sa.Float, nullable=False, server_default="0"),
        sa.Column("completeness_score", sa.Integer, nullable=False, server_default="0"),
        sa.Column("last_verified_at", sa.DateTime(timezone=True)),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_booth_name_city", "booths", ["normalized_name", "normalized_city"])
    op.create_index("idx_booth_geo", "booths", ["latitude", "longitude"])

    # Crawl metrics (append-only)
    op.create_table(
        "crawl_metrics",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("source_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("crawl_sources.id"), nullable=False, index=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("status", sa.String(20), nullable=False, server_default="running"),
        sa.Column("stage", sa.String(20)),
        sa.Column("content_unchanged", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("pages_crawled", sa.Integer, server_default="0"),
        sa.Column("candidates_found", sa.Integer, server_default="0"),
        sa.Column("records_added", sa.Integer, server_default="0"),
        sa.Column("records_updated", sa.Integer, server_default="0"),
        sa.Column("records_skipped", sa.Integer, server_default="0"),
        sa.Column("records_rejected", sa.Integer, server_default="0"),
        sa.Column("records_needing_review", sa.Integer, server_default="0"),
        sa.Column("duration_ms", sa.Integer),
        sa.Column("error_message", sa.Text),
    )
    op.create_index("idx_metrics_source_started", "crawl_metrics", ["source_id", "started_at"])


def downgrade() -> None:
    op.drop_table("crawl_metrics")
    op.drop_table("booths")
    op.drop_table("raw_content")
    op.drop_table("crawl_sources")
