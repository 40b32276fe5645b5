"""Crawl orchestration tasks.

Each task runs the async coordinator in its own event loop with a NullPool
engine, so no connection outlives the loop that opened it.
"""

import asyncio
import logging

from boothbeacon.errors import CrawlerError
from boothbeacon.models.base import make_session_factory
from boothbeacon.records import BatchSummary
from boothbeacon.services.coordinator import CrawlCoordinator, build_coordinator
from boothbeacon.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


async def _run_with_coordinator(action) -> BatchSummary:
    engine, session_factory = make_session_factory()
    try:
        coordinator: CrawlCoordinator = build_coordinator(session_factory)
        return await action(coordinator)
    finally:
        await engine.dispose()


@celery_app.task(name="boothbeacon.tasks.crawl_tasks.dispatch_due_crawls")
def dispatch_due_crawls(force: bool = False):
    """Crawl every source whose cadence has elapsed."""
    try:
        summary = asyncio.run(_run_with_coordinator(lambda c: c.run_due(force=force)))
    except CrawlerError as e:
        logger.error(f"Due crawl batch could not start: {e}")
        return {"error": str(e)}

    totals = summary.totals()
    if summary.aborted:
        logger.error(f"Due crawl batch aborted: {summary.error}")
    logger.info(f"Due crawl batch finished: {totals}")
    return summary.to_dict()


@celery_app.task(name="boothbeacon.tasks.crawl_tasks.crawl_source")
def crawl_source(source_id: str, force: bool = False):
    """Crawl a single source (by id or name) regardless of cadence."""
    try:
        summary = asyncio.run(_run_with_coordinator(lambda c: c.run_source(source_id, force=force)))
    except CrawlerError as e:
        logger.error(f"Crawl of {source_id} could not start: {e}")
        return {"error": str(e)}

    logger.info(f"Crawled {source_id}: {summary.totals()}")
    return summary.to_dict()
