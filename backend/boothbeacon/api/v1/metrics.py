"""Crawl metric API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from boothbeacon.models.base import get_db
from boothbeacon.models.crawl_metric import CrawlMetric
from boothbeacon.schemas.crawl_metric import CrawlMetricRead, CrawlMetricWithSource
from boothbeacon.schemas.crawl_source import CrawlSourceSummary

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("", response_model=list[CrawlMetricWithSource])
async def list_metrics(
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    source_id: UUID | None = Query(None, description="Filter by source"),
    status: str | None = Query(None, description="Filter by status: success, partial, error"),
):
    """List recent crawl runs, newest first."""
    query = select(CrawlMetric).options(selectinload(CrawlMetric.source))

    if source_id:
        query = query.where(CrawlMetric.source_id == source_id)
    if status:
        query = query.where(CrawlMetric.status == status)

    query = query.order_by(CrawlMetric.started_at.desc()).offset(skip).limit(limit)
    result = await db.execute(query)
    metrics = result.scalars().all()

    return [
        CrawlMetricWithSource(
            **CrawlMetricRead.model_validate(metric).model_dump(),
            source=CrawlSourceSummary.model_validate(metric.source) if metric.source else None,
        )
        for metric in metrics
    ]
