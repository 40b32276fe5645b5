"""Source registry: crawl source config, cadence and health.

Health is only written here, from the SourceRunResult the coordinator returns
at the end of each run.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boothbeacon.config import get_settings
from boothbeacon.models.base import as_utc, utcnow
from boothbeacon.models.crawl_metric import CrawlMetric
from boothbeacon.models.crawl_source import CrawlSource
from boothbeacon.records import RunState, SourceRunResult, SourceSnapshot

logger = logging.getLogger(__name__)
settings = get_settings()

# Keys a seed config may set on a source
_SEED_FIELDS = (
    "source_url",
    "extra_urls",
    "strategy",
    "priority",
    "enabled",
    "crawl_frequency_minutes",
    "page_limit",
    "config_json",
)


async def seed_sources(db: AsyncSession, configs: Iterable[dict[str, Any]]) -> dict[str, int]:
    """Create or update sources by name. Never deletes."""
    created = updated = 0
    for config in configs:
        name = config["name"]
        result = await db.execute(select(CrawlSource).where(CrawlSource.name == name))
        source = result.scalar_one_or_none()
        if source is None:
            source = CrawlSource(
                id=uuid.uuid4(),
                name=name,
                crawl_frequency_minutes=settings.default_crawl_frequency_minutes,
                extra_urls=[],
                config_json={},
            )
            db.add(source)
            created += 1
        else:
            updated += 1
        for key in _SEED_FIELDS:
            if key in config:
                setattr(source, key, config[key])
    await db.flush()
    logger.info(f"Seeded sources: {created} created, {updated} updated")
    return {"created": created, "updated": updated}


def is_due(source: CrawlSource, now: datetime) -> bool:
    last_run = as_utc(source.last_run_at)
    if last_run is None:
        return True
    return last_run + timedelta(minutes=source.crawl_frequency_minutes) <= now


async def due_sources(db: AsyncSession, now: datetime | None = None, force: bool = False) -> list[CrawlSource]:
    """Enabled sources whose cadence has elapsed, highest priority first."""
    now = now or utcnow()
    result = await db.execute(
        select(CrawlSource)
        .where(CrawlSource.enabled == True)  # noqa: E712
        .order_by(CrawlSource.priority.desc(), CrawlSource.name)
    )
    sources = result.scalars().all()
    if force:
        return list(sources)
    return [s for s in sources if is_due(s, now)]


async def get_source(db: AsyncSession, id_or_name: str | uuid.UUID) -> CrawlSource | None:
    """Look up by UUID or by name. Ignores cadence and the enabled flag."""
    if isinstance(id_or_name, uuid.UUID):
        return await db.get(CrawlSource, id_or_name)
    try:
        source_id = uuid.UUID(str(id_or_name))
    except ValueError:
        result = await db.execute(select(CrawlSource).where(CrawlSource.name == id_or_name))
        return result.scalar_one_or_none()
    return await db.get(CrawlSource, source_id)


def load_snapshot(source: CrawlSource) -> SourceSnapshot:
    return SourceSnapshot(
        id=source.id,
        name=source.name,
        urls=tuple(source.urls),
        strategy=source.strategy,
        priority=source.priority,
        page_limit=source.page_limit,
        config=dict(source.config_json or {}),
        consecutive_failures=source.consecutive_failures or 0,
    )


async def record_run(db: AsyncSession, result: SourceRunResult, failure_threshold: int | None = None) -> CrawlSource | None:
    """Append the run's metric row and persist the source health it implies."""
    threshold = failure_threshold or settings.failure_threshold
    counts = result.counts

    db.add(
        CrawlMetric(
            id=uuid.uuid4(),
            source_id=result.source_id,
            started_at=result.started_at or utcnow(),
            completed_at=result.completed_at or utcnow(),
            status=result.state.metric_status,
            stage=result.error_stage,
            content_unchanged=result.content_unchanged,
            pages_crawled=counts.pages_crawled,
            candidates_found=counts.candidates_found,
            records_added=counts.records_added,
            records_updated=counts.records_updated,
            records_skipped=counts.records_skipped,
            records_rejected=counts.records_rejected,
            records_needing_review=counts.records_needing_review,
            duration_ms=result.duration_ms,
            error_message=(result.error_message or "")[:2000] or None,
        )
    )

    source = await db.get(CrawlSource, result.source_id)
    if source is None:
        logger.error(f"Source {result.source_id} disappeared before its run was recorded")
        await db.flush()
        return None

    now = result.completed_at or utcnow()
    source.last_run_at = now
    source.total_found = (source.total_found or 0) + counts.candidates_found
    source.total_added = (source.total_added or 0) + counts.records_added
    source.total_updated = (source.total_updated or 0) + counts.records_updated

    if result.state == RunState.FAILED:
        source.consecutive_failures = (source.consecutive_failures or 0) + 1
        source.last_error_message = (result.error_message or "")[:2000]
        source.last_error_at = now
        source.status = "error"
        if result.disable_source or source.consecutive_failures >= threshold:
            source.enabled = False
            source.needs_review = True
            source.status = "needs_review"
            logger.error(
                f"[{source.name}] Disabled after {source.consecutive_failures} consecutive failure(s): "
                f"{result.error_message}"
            )
    elif result.state in (RunState.SUCCEEDED, RunState.PARTIALLY_SUCCEEDED):
        source.consecutive_failures = 0
        source.last_success_at = now
        source.status = "active"

    await db.flush()
    return source


async def reenable(db: AsyncSession, source: CrawlSource) -> CrawlSource:
    """Operator action: put a disabled source back into rotation."""
    source.enabled = True
    source.needs_review = False
    source.status = "active"
    source.consecutive_failures = 0
    await db.flush()
    logger.info(f"[{source.name}] Re-enabled")
    return source
