"""Crawl trigger endpoints.

Each trigger runs inline by default and returns the batch summary. With
?stream=true the response is a text/event-stream of progress events whose
last event carries the summary. With ?background=true the crawl is queued on
the Celery worker instead.
"""

import asyncio
import json
import logging
from typing import Awaitable, Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from boothbeacon.errors import ConfigurationError, SourceNotFoundError, StoreUnavailableError
from boothbeacon.models.base import AsyncSessionLocal
from boothbeacon.records import BatchSummary
from boothbeacon.schemas.crawl import BatchSummaryOut, QueuedCrawlResponse
from boothbeacon.services.coordinator import CrawlCoordinator, ProgressCallback, build_coordinator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/crawl", tags=["crawl"])

CoordinatorFactory = Callable[[ProgressCallback | None], CrawlCoordinator]
CrawlAction = Callable[[CrawlCoordinator], Awaitable[BatchSummary]]


def get_coordinator_factory() -> CoordinatorFactory:
    """Builds coordinators wired to the app's database and external services."""
    return lambda on_event=None: build_coordinator(AsyncSessionLocal, on_event)


def _build(factory: CoordinatorFactory, on_event: ProgressCallback | None = None) -> CrawlCoordinator:
    try:
        return factory(on_event)
    except ConfigurationError as e:
        raise HTTPException(status_code=503, detail=str(e))


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, default=str)}\n\n"


def _stream(factory: CoordinatorFactory, action: CrawlAction) -> StreamingResponse:
    queue: asyncio.Queue[dict | None] = asyncio.Queue()
    coordinator = _build(factory, queue.put)

    async def run() -> None:
        try:
            await action(coordinator)
        except (SourceNotFoundError, StoreUnavailableError, ConfigurationError) as e:
            await queue.put({"type": "error", "message": str(e)})
        except Exception as e:
            logger.exception("Streamed crawl failed")
            await queue.put({"type": "error", "message": f"{type(e).__name__}: {e}"})
        finally:
            await queue.put(None)

    async def events():
        task = asyncio.create_task(run())
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield _sse(event)
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def _run(factory: CoordinatorFactory, action: CrawlAction) -> BatchSummaryOut:
    coordinator = _build(factory)
    try:
        summary = await action(coordinator)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except StoreUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return BatchSummaryOut(**summary.to_dict())


@router.post("/sources/{source_ref}", response_model=BatchSummaryOut | QueuedCrawlResponse)
async def crawl_source(
    source_ref: str,
    force: bool = Query(False, description="Re-extract even when content is unchanged"),
    stream: bool = Query(False, description="Stream progress as server-sent events"),
    background: bool = Query(False, description="Queue on the worker instead of running inline"),
    factory: CoordinatorFactory = Depends(get_coordinator_factory),
):
    """Crawl one source (by id or name) now, ignoring its cadence."""
    if background:
        from boothbeacon.tasks.crawl_tasks import crawl_source as crawl_source_task

        task = crawl_source_task.delay(source_ref, force)
        return QueuedCrawlResponse(message=f"Crawl queued for {source_ref}", task_id=task.id)

    action: CrawlAction = lambda c: c.run_source(source_ref, force=force)
    if stream:
        return _stream(factory, action)
    return await _run(factory, action)


@router.post("/sources/{source_ref}/reextract", response_model=BatchSummaryOut)
async def reextract_source(
    source_ref: str,
    stream: bool = Query(False, description="Stream progress as server-sent events"),
    factory: CoordinatorFactory = Depends(get_coordinator_factory),
):
    """Re-run extraction over the latest stored content without fetching."""
    action: CrawlAction = lambda c: c.reextract_source(source_ref)
    if stream:
        return _stream(factory, action)
    return await _run(factory, action)


@router.post("/due", response_model=BatchSummaryOut | QueuedCrawlResponse)
async def crawl_due(
    force: bool = Query(False, description="Crawl every enabled source regardless of cadence"),
    stream: bool = Query(False, description="Stream progress as server-sent events"),
    background: bool = Query(False, description="Queue on the worker instead of running inline"),
    factory: CoordinatorFactory = Depends(get_coordinator_factory),
):
    """Crawl every source whose cadence has elapsed."""
    if background:
        from boothbeacon.tasks.crawl_tasks import dispatch_due_crawls

        task = dispatch_due_crawls.delay()
        return QueuedCrawlResponse(message="Due crawls queued", task_id=task.id)

    action: CrawlAction = lambda c: c.run_due(force=force)
    if stream:
        return _stream(factory, action)
    return await _run(factory, action)
