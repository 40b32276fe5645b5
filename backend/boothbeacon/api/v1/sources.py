"""Crawl source API endpoints."""

from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boothbeacon.models.base import get_db
from boothbeacon.models.crawl_metric import CrawlMetric
from boothbeacon.models.crawl_source import CrawlSource
from boothbeacon.schemas.crawl_metric import CrawlMetricSummary
from boothbeacon.schemas.crawl_source import CrawlSourceRead, CrawlSourceWithMetrics
from boothbeacon.services import source_registry

router = APIRouter(prefix="/sources", tags=["sources"])


@router.get("", response_model=list[CrawlSourceRead])
async def list_sources(
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    strategy: str | None = Query(None, description="Filter by strategy"),
    enabled: bool | None = Query(None, description="Filter by enabled flag"),
    needs_review: bool | None = Query(None, description="Filter by review flag"),
):
    """List crawl sources, highest priority first."""
    query = select(CrawlSource)

    if strategy:
        query = query.where(CrawlSource.strategy == strategy)
    if enabled is not None:
        query = query.where(CrawlSource.enabled == enabled)
    if needs_review is not None:
        query = query.where(CrawlSource.needs_review == needs_review)

    query = query.order_by(CrawlSource.priority.desc(), CrawlSource.name).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{source_id}", response_model=CrawlSourceWithMetrics)
async def get_source(
    source_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Get a single source with its recent crawl metrics."""
    source = await db.get(CrawlSource, source_id)
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")

    metrics_query = (
        select(CrawlMetric)
        .where(CrawlMetric.source_id == source_id)
        .order_by(CrawlMetric.started_at.desc())
        .limit(10)
    )
    metrics_result = await db.execute(metrics_query)
    metrics = metrics_result.scalars().all()

    return CrawlSourceWithMetrics(
        **CrawlSourceRead.model_validate(source).model_dump(),
        recent_metrics=[CrawlMetricSummary.model_validate(m) for m in metrics],
    )


@router.post("/{source_id}/enable", response_model=CrawlSourceRead)
async def enable_source(
    source_id: UUID,
    db: AsyncSession = Depends(get_db),
):
    """Re-enable a source that was disabled after repeated failures."""
    source = await db.get(CrawlSource, source_id)
    if not source:
        raise HTTPException(status_code=404, detail="Source not found")

    await source_registry.reenable(db, source)
    await db.refresh(source)
    return source
