import uuid
from datetime import timedelta

from sqlalchemy import select

from conftest import add_source
from boothbeacon.models.base import utcnow
from boothbeacon.models.crawl_metric import CrawlMetric
from boothbeacon.models.crawl_source import CrawlSource
from boothbeacon.records import RunCounts, RunState, SourceRunResult
from boothbeacon.services import source_registry


async def load(session_factory, source_id) -> CrawlSource:
    async with session_factory() as db:
        return await db.get(CrawlSource, source_id)


async def record(session_factory, source, state, threshold=3, **kwargs):
    now = utcnow()
    result = SourceRunResult(
        source_id=source.id,
        source_name=source.name,
        state=state,
        started_at=now - timedelta(seconds=2),
        completed_at=now,
        **kwargs,
    )
    async with session_factory() as db:
        async with db.begin():
            await source_registry.record_run(db, result, threshold)
    return result


async def test_seed_creates_then_updates_without_deleting(session_factory):
    configs = [
        {"name": "photobooth.net", "source_url": "https://www.photobooth.net/locations/", "strategy": "directory", "priority": 100},
        {"name": "Time Out LA", "source_url": "https://www.timeout.com/los-angeles/photo-booths", "strategy": "city_guide"},
    ]
    async with session_factory() as db:
        async with db.begin():
            assert await source_registry.seed_sources(db, configs) == {"created": 2, "updated": 0}

    async with session_factory() as db:
        async with db.begin():
            result = await source_registry.seed_sources(db, [{**configs[0], "priority": 95}])
    assert result == {"created": 0, "updated": 1}

    async with session_factory() as db:
        sources = (await db.execute(select(CrawlSource).order_by(CrawlSource.name))).scalars().all()
    assert [s.name for s in sources] == ["Time Out LA", "photobooth.net"]
    assert sources[1].priority == 95
    assert sources[0].crawl_frequency_minutes == 10080


async def test_due_sources_respects_cadence_enabled_and_priority(session_factory):
    now = utcnow()
    never = await add_source(session_factory, name="never run", priority=10)
    stale = await add_source(session_factory, name="stale", priority=90, last_run_at=now - timedelta(days=8))
    fresh = await add_source(session_factory, name="fresh", priority=100, last_run_at=now - timedelta(hours=1))
    await add_source(session_factory, name="disabled", enabled=False)

    async with session_factory() as db:
        due = await source_registry.due_sources(db, now=now)
        forced = await source_registry.due_sources(db, now=now, force=True)

    assert [s.id for s in due] == [stale.id, never.id]
    assert [s.id for s in forced] == [fresh.id, stale.id, never.id]


async def test_get_source_by_id_or_name(session_factory):
    source = await add_source(session_factory)
    async with session_factory() as db:
        assert (await source_registry.get_source(db, str(source.id))).name == source.name
        assert (await source_registry.get_source(db, source.id)).name == source.name
        assert (await source_registry.get_source(db, source.name)).id == source.id
        assert await source_registry.get_source(db, str(uuid.uuid4())) is None
        assert await source_registry.get_source(db, "no such source") is None


async def test_load_snapshot_includes_extra_urls(session_factory):
    source = await add_source(
        session_factory,
        extra_urls=["https://www.photomatica.com/la", "http://www.photoautomat.de/standorte.html"],
        page_limit=2,
    )
    snapshot = source_registry.load_snapshot(await load(session_factory, source.id))
    assert snapshot.urls == ("http://www.photoautomat.de/standorte.html", "https://www.photomatica.com/la")
    assert snapshot.page_limit == 2


async def test_record_run_success_writes_metric_and_health(session_factory):
    source = await add_source(session_factory, consecutive_failures=2, status="error")
    counts = RunCounts(pages_crawled=1, candidates_found=4, records_added=3, records_rejected=1)
    await record(session_factory, source, RunState.PARTIALLY_SUCCEEDED, counts=counts)

    source = await load(session_factory, source.id)
    assert source.consecutive_failures == 0
    assert source.status == "active"
    assert source.last_success_at is not None
    assert source.total_found == 4
    assert source.total_added == 3

    async with session_factory() as db:
        [metric] = (await db.execute(select(CrawlMetric))).scalars().all()
    assert metric.status == "partial"
    assert metric.records_added == 3
    assert metric.duration_ms == 2000


async def test_failures_disable_source_at_threshold(session_factory):
    source = await add_source(session_factory)
    for expected in (1, 2):
        await record(session_factory, source, RunState.FAILED, error_message="boom", error_stage="fetching")
        current = await load(session_factory, source.id)
        assert current.consecutive_failures == expected
        assert current.enabled
        assert current.status == "error"

    await record(session_factory, source, RunState.FAILED, error_message="boom", error_stage="fetching")
    current = await load(session_factory, source.id)
    assert current.consecutive_failures == 3
    assert not current.enabled
    assert current.needs_review
    assert current.status == "needs_review"
    assert current.last_error_message == "boom"

    async with session_factory() as db:
        metrics = (await db.execute(select(CrawlMetric))).scalars().all()
    assert {m.status for m in metrics} == {"error"}
    assert {m.stage for m in metrics} == {"fetching"}


async def test_configuration_failure_disables_immediately(session_factory):
    source = await add_source(session_factory)
    await record(session_factory, source, RunState.FAILED, error_message="Invalid source URL", disable_source=True)
    current = await load(session_factory, source.id)
    assert current.consecutive_failures == 1
    assert not current.enabled
    assert current.needs_review


async def test_reenable_clears_flags(session_factory):
    source = await add_source(session_factory, enabled=False, needs_review=True, status="needs_review", consecutive_failures=3)
    async with session_factory() as db:
        async with db.begin():
            await source_registry.reenable(db, await db.get(CrawlSource, source.id))

    current = await load(session_factory, source.id)
    assert current.enabled
    assert not current.needs_review
    assert current.status == "active"
    assert current.consecutive_failures == 0
