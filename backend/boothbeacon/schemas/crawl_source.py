"""Pydantic schemas for CrawlSource model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict

if TYPE_CHECKING:
    from boothbeacon.schemas.crawl_metric import CrawlMetricSummary


class CrawlSourceBase(BaseModel):
    """Base fields for crawl source."""

    name: str
    source_url: str
    extra_urls: list[str] | None = None
    strategy: str
    priority: int = 50
    enabled: bool = True
    crawl_frequency_minutes: int = 10080
    page_limit: int | None = None
    config_json: dict[str, Any] | None = None


class CrawlSourceRead(CrawlSourceBase):
    """Full crawl source output, including health."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    needs_review: bool = False
    last_run_at: datetime | None = None
    last_success_at: datetime | None = None
    consecutive_failures: int = 0
    last_error_message: str | None = None
    last_error_at: datetime | None = None
    total_found: int = 0
    total_added: int = 0
    total_updated: int = 0
    created_at: datetime
    updated_at: datetime


class CrawlSourceSummary(BaseModel):
    """Minimal source info for nested responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    strategy: str
    enabled: bool
    status: str


class CrawlSourceWithMetrics(CrawlSourceRead):
    """Source with recent crawl metrics."""

    recent_metrics: list["CrawlMetricSummary"] = []
