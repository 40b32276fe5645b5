"""Crawl coordinator: drives each source through the pipeline.

    PENDING -> FETCHING -> EXTRACTING -> VALIDATING -> RESOLVING -> COMMITTING
            -> SUCCEEDED | PARTIALLY_SUCCEEDED | FAILED

Sources run in parallel up to max_concurrent_sources; stages within a source
run in sequence. A failing source never affects the others. Systemic errors
(store down, missing credentials) stop the queue and the remaining sources
are reported as aborted.
"""

import asyncio
import inspect
import logging
import uuid
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception, stop_after_attempt, wait_exponential

from boothbeacon.config import Settings, get_settings
from boothbeacon.errors import (
    ConfigurationError,
    CrawlerError,
    FetchError,
    PersistenceConflict,
    RunTimeoutError,
    SourceNotFoundError,
    StoreUnavailableError,
)
from boothbeacon.fetchers.base import ContentFetcher
from boothbeacon.models.base import utcnow
from boothbeacon.records import (
    BatchSummary,
    CandidateRecord,
    FetchedPage,
    RunState,
    SourceRunResult,
    SourceSnapshot,
    ValidationOutcome,
)
from boothbeacon.services import raw_content_store, source_registry
from boothbeacon.services.deduplication import MatchPolicy
from boothbeacon.services.extraction import ExtractionContext, ExtractionEngine, dedupe_candidates
from boothbeacon.services.persistence import ADDED, SKIPPED, UPDATED, save_record
from boothbeacon.services.raw_content_store import PutResult
from boothbeacon.services.strategies import get_strategy
from boothbeacon.services.validation import validate

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict[str, Any]], Awaitable[None] | None]


@contextmanager
def store_errors() -> Iterator[None]:
    """Translate driver-level connection failures into StoreUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        raise StoreUnavailableError(f"Database unavailable: {e}") from e


def _is_retryable_fetch(exc: BaseException) -> bool:
    return isinstance(exc, FetchError) and exc.retryable


class CrawlCoordinator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: ContentFetcher,
        engine: ExtractionEngine,
        settings: Settings | None = None,
        on_event: ProgressCallback | None = None,
    ):
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.engine = engine
        self.settings = settings or get_settings()
        self.on_event = on_event
        self.policy = MatchPolicy.from_settings(self.settings)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run_source(self, source_id_or_name: str, force: bool = False) -> BatchSummary:
        """Run one source now, ignoring its cadence."""
        snapshot = await self._snapshot_for(source_id_or_name)
        return await self.run_batch([snapshot], force=force)

    async def run_due(self, force: bool = False) -> BatchSummary:
        """Run every enabled source whose cadence has elapsed (all enabled sources with force)."""
        with store_errors():
            async with self.session_factory() as db:
                sources = await source_registry.due_sources(db, force=force)
                snapshots = [source_registry.load_snapshot(s) for s in sources]
        logger.info(f"{len(snapshots)} source(s) due for crawling")
        return await self.run_batch(snapshots, force=force)

    async def reextract_source(self, source_id_or_name: str) -> BatchSummary:
        """Re-run extraction over the latest stored content without fetching."""
        snapshot = await self._snapshot_for(source_id_or_name)
        return await self.run_batch([snapshot], force=True, reextract=True)

    async def _snapshot_for(self, source_id_or_name: str) -> SourceSnapshot:
        with store_errors():
            async with self.session_factory() as db:
                source = await source_registry.get_source(db, source_id_or_name)
                if source is None:
                    raise SourceNotFoundError(f"Source not found: {source_id_or_name}")
                return source_registry.load_snapshot(source)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def _emit(self, event: str, **data: Any) -> None:
        if self.on_event is None:
            return
        outcome = self.on_event({"type": event, **data})
        if inspect.isawaitable(outcome):
            await outcome

    async def run_batch(self, snapshots: list[SourceSnapshot], force: bool = False, reextract: bool = False) -> BatchSummary:
        summary = BatchSummary()
        results: dict[Any, SourceRunResult] = {}
        queue: asyncio.Queue[SourceSnapshot] = asyncio.Queue()
        for snapshot in snapshots:
            queue.put_nowait(snapshot)
        abort = asyncio.Event()

        await self._emit("start", total=len(snapshots), sources=[s.name for s in snapshots])

        async def worker() -> None:
            while not abort.is_set():
                try:
                    snapshot = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    results[snapshot.id] = await self._run_one(snapshot, force, reextract)
                except CrawlerError as e:
                    # Only systemic errors escape _run_one
                    logger.error(f"[{snapshot.name}] Systemic failure, aborting batch: {e}")
                    results[snapshot.id] = SourceRunResult(
                        source_id=snapshot.id,
                        source_name=snapshot.name,
                        state=RunState.ABORTED,
                        error_message=str(e),
                        error_stage=e.stage,
                        error_type=type(e).__name__,
                    )
                    if not abort.is_set():
                        summary.aborted = True
                        summary.error = str(e)
                        abort.set()
                        await self._emit("error", message=str(e), source=snapshot.name)

        concurrency = max(1, min(self.settings.max_concurrent_sources, len(snapshots)))
        await asyncio.gather(*(worker() for _ in range(concurrency)))

        for snapshot in snapshots:
            result = results.get(snapshot.id)
            if result is None:
                result = SourceRunResult(
                    source_id=snapshot.id,
                    source_name=snapshot.name,
                    state=RunState.ABORTED,
                    error_message=f"Batch aborted: {summary.error}",
                )
            summary.results.append(result)

        totals = summary.totals()
        logger.info(f"Crawl batch complete: {totals}")
        await self._emit("complete", summary=summary.to_dict())
        return summary

    # ------------------------------------------------------------------
    # Single source
    # ------------------------------------------------------------------

    async def _advance(self, result: SourceRunResult, state: RunState) -> None:
        result.state = state
        logger.info(f"[{result.source_name}] {state.value}")
        await self._emit("stage", source=result.source_name, source_id=str(result.source_id), stage=state.value)

    async def _run_one(self, snapshot: SourceSnapshot, force: bool, reextract: bool) -> SourceRunResult:
        result = SourceRunResult(source_id=snapshot.id, source_name=snapshot.name, started_at=utcnow())
        await self._emit("source_start", source=snapshot.name, source_id=str(snapshot.id))

        deadline = self.settings.source_run_deadline
        try:
            try:
                await asyncio.wait_for(self._pipeline(snapshot, result, force, reextract), timeout=deadline)
            except asyncio.TimeoutError as e:
                raise RunTimeoutError(f"Timed out after {deadline:g}s while {result.state.value}") from e
        except CrawlerError as e:
            if e.systemic:
                raise
            result.error_stage = result.state.value if not result.state.terminal else e.stage
            result.error_message = str(e)
            result.error_type = type(e).__name__
            result.state = RunState.FAILED
            if isinstance(e, ConfigurationError):
                result.disable_source = True
            logger.error(f"[{snapshot.name}] Failed while {result.error_stage}: {e}")
        except Exception as e:
            # Contain unexpected bugs to this source
            logger.exception(f"[{snapshot.name}] Unexpected error while {result.state.value}")
            result.error_stage = result.state.value
            result.error_message = f"{type(e).__name__}: {e}"
            result.error_type = type(e).__name__
            result.state = RunState.FAILED

        result.completed_at = utcnow()
        with store_errors():
            async with self.session_factory() as db:
                async with db.begin():
                    await source_registry.record_run(db, result, self.settings.failure_threshold)

        await self._emit("source_complete", result=result.to_dict())
        return result

    async def _fetch(self, snapshot: SourceSnapshot) -> list[FetchedPage]:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.settings.fetch_max_attempts),
            wait=wait_exponential(multiplier=self.settings.retry_backoff_base, max=self.settings.retry_backoff_max),
            retry=retry_if_exception(_is_retryable_fetch),
            reraise=True,
            before_sleep=lambda state: logger.warning(
                f"[{snapshot.name}] Fetch attempt {state.attempt_number} failed, retrying: {state.outcome.exception()}"
            ),
        ):
            with attempt:
                return await self.fetcher.fetch(snapshot)
        raise FetchError(f"Fetch for {snapshot.name} did not run")

    async def _stored_pages(self, snapshot: SourceSnapshot) -> list[tuple[FetchedPage, uuid.UUID]]:
        with store_errors():
            async with self.session_factory() as db:
                rows = await raw_content_store.latest_for_source(db, snapshot.id)
        if not rows:
            raise FetchError(f"No stored content to re-extract for {snapshot.name}", retryable=False)
        return [(raw_content_store.as_page(row), row.id) for row in rows]

    async def _store_pages(self, snapshot: SourceSnapshot, pages: list[FetchedPage]) -> list[tuple[FetchedPage, PutResult]]:
        """Persist pages and report, per page, whether it still needs extraction."""
        stored: list[tuple[FetchedPage, PutResult]] = []
        with store_errors():
            async with self.session_factory() as db:
                async with db.begin():
                    for page in pages:
                        stored.append((page, await raw_content_store.put(db, snapshot.id, page)))
        return stored

    async def _mark_extracted(self, raw_content_ids: list[uuid.UUID]) -> None:
        with store_errors():
            async with self.session_factory() as db:
                async with db.begin():
                    await raw_content_store.mark_extracted(db, raw_content_ids)

    async def _pipeline(self, snapshot: SourceSnapshot, result: SourceRunResult, force: bool, reextract: bool) -> None:
        counts = result.counts
        strategy = get_strategy(snapshot.strategy)
        if strategy is None:
            raise ConfigurationError(f"Unknown strategy: {snapshot.strategy}")

        await self._advance(result, RunState.FETCHING)
        if reextract:
            to_extract = await self._stored_pages(snapshot)
            counts.pages_crawled = len(to_extract)
        else:
            pages = await self._fetch(snapshot)
            counts.pages_crawled = len(pages)
            stored = await self._store_pages(snapshot, pages)
            counts.pages_unchanged = sum(1 for _, put in stored if put.unchanged)
            to_extract = [(page, put.raw_content_id) for page, put in stored if force or not put.unchanged]

        if not to_extract:
            result.content_unchanged = True
            result.state = RunState.SUCCEEDED
            logger.info(f"[{snapshot.name}] Content unchanged; skipping extraction")
            return

        await self._advance(result, RunState.EXTRACTING)
        candidates: list[CandidateRecord] = []
        extracted_ids: list[uuid.UUID] = []
        context = ExtractionContext(source_id=snapshot.id, source_name=snapshot.name, source_url=snapshot.urls[0])
        for page, raw_content_id in to_extract:
            extraction = await self.engine.extract(page, strategy, context)
            candidates.extend(extraction.candidates)
            result.extraction_errors.extend(extraction.errors)
            # Pages with a failed chunk are extracted again on the next run
            if not extraction.transport_failures:
                extracted_ids.append(raw_content_id)
        candidates = dedupe_candidates(candidates)
        counts.candidates_found = len(candidates)

        await self._advance(result, RunState.VALIDATING)
        validated = [validate(candidate) for candidate in candidates]
        accepted = [record for record in validated if record.accepted]
        counts.records_rejected = len(validated) - len(accepted)
        counts.records_needing_review = sum(1 for r in accepted if r.outcome == ValidationOutcome.NEEDS_REVIEW)

        await self._advance(result, RunState.RESOLVING)
        await self._advance(result, RunState.COMMITTING)
        conflicts = 0
        for record in accepted:
            try:
                _, outcome = await save_record(self.session_factory, record, self.policy)
            except PersistenceConflict as e:
                conflicts += 1
                logger.error(f"[{snapshot.name}] Could not commit '{record.name}': {e}")
                continue
            if outcome.action == ADDED:
                counts.records_added += 1
            elif outcome.action == UPDATED:
                counts.records_updated += 1
            elif outcome.action == SKIPPED:
                counts.records_skipped += 1

        await self._mark_extracted(extracted_ids)

        committed = counts.records_added + counts.records_updated
        not_committed = counts.records_rejected + counts.records_skipped + conflicts
        if committed and not_committed:
            result.state = RunState.PARTIALLY_SUCCEEDED
        else:
            result.state = RunState.SUCCEEDED
        if result.extraction_errors and not candidates:
            result.error_message = "; ".join(result.extraction_errors)[:2000]

        logger.info(
            f"[{snapshot.name}] {result.state.value}: {counts.candidates_found} found, "
            f"{counts.records_added} added, {counts.records_updated} updated, "
            f"{counts.records_skipped} skipped, {counts.records_rejected} rejected"
        )


def build_coordinator(
    session_factory: async_sessionmaker[AsyncSession],
    on_event: ProgressCallback | None = None,
    settings: Settings | None = None,
) -> CrawlCoordinator:
    """Coordinator wired to the real scrape service and LLM.

    Raises a systemic ConfigurationError when service credentials are missing.
    """
    from boothbeacon.fetchers.firecrawl import FirecrawlFetcher
    from boothbeacon.services.llm_client import AnthropicLLMClient

    settings = settings or get_settings()
    if not settings.firecrawl_api_key:
        raise ConfigurationError("FIRECRAWL_API_KEY is not configured", systemic=True)
    engine = ExtractionEngine(AnthropicLLMClient(settings), settings)
    return CrawlCoordinator(session_factory, FirecrawlFetcher(settings), engine, settings, on_event)
