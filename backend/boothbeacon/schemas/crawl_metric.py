"""Pydantic schemas for CrawlMetric model."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from boothbeacon.schemas.crawl_source import CrawlSourceSummary


class CrawlMetricSummary(BaseModel):
    """Minimal metric info for nested responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    source_id: UUID
    started_at: datetime
    completed_at: datetime | None = None
    status: str
    stage: str | None = None
    records_added: int = 0
    records_updated: int = 0


class CrawlMetricRead(CrawlMetricSummary):
    """Full metric row."""

    content_unchanged: bool = False
    pages_crawled: int = 0
    candidates_found: int = 0
    records_skipped: int = 0
    records_rejected: int = 0
    records_needing_review: int = 0
    duration_ms: int | None = None
    error_message: str | None = None


class CrawlMetricWithSource(CrawlMetricRead):
    """Metric with embedded source info."""

    source: CrawlSourceSummary | None = None
