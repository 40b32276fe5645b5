"""Schemas for crawl trigger responses."""

from uuid import UUID

from pydantic import BaseModel


class SourceRunOut(BaseModel):
    source_id: UUID
    source_name: str
    status: str
    state: str
    content_unchanged: bool = False
    error_message: str | None = None
    error_stage: str | None = None
    error_type: str | None = None
    duration_ms: int | None = None
    pages_crawled: int = 0
    pages_unchanged: int = 0
    candidates_found: int = 0
    records_added: int = 0
    records_updated: int = 0
    records_skipped: int = 0
    records_rejected: int = 0
    records_needing_review: int = 0


class BatchSummaryOut(BaseModel):
    """Result of a synchronous crawl."""

    aborted: bool = False
    error: str | None = None
    totals: dict[str, int]
    results: list[SourceRunOut]


class QueuedCrawlResponse(BaseModel):
    """Response from queueing a crawl on the worker."""

    message: str
    task_id: str
    source_id: UUID | None = None
