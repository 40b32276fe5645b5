"""
Pytest configuration and shared fixtures.

Database tests run against a throwaway SQLite file per test; the scrape
service and LLM are replaced by in-memory fakes.
"""

import json
import uuid
from typing import Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from boothbeacon.config import Settings
from boothbeacon.models import Base
from boothbeacon.models.crawl_source import CrawlSource
from boothbeacon.records import FetchedPage, SourceSnapshot
from boothbeacon.services.extraction import ExtractionEngine

BERLIN_PAGE = """# Photoautomat Berlin

Our analog photo booths in Berlin. Four black and white strips for 2 euros.

## Locations

Photoautomat Kastanienallee, Kastanienallee 55, 10119 Berlin
Photoautomat Warschauer, Warschauer Strasse 70, 10243 Berlin
"""


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        database_url="sqlite+aiosqlite://",
        firecrawl_api_url="https://firecrawl.test",
        firecrawl_api_key="fc-test",
        anthropic_api_key="sk-test",
        crawl_poll_interval=0,
        crawl_max_wait=5,
        retry_backoff_base=0,
        retry_backoff_max=0,
        max_concurrent_sources=1,
        source_run_deadline=10,
    )


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'booths.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def add_source(session_factory, **overrides) -> CrawlSource:
    values = {
        "id": uuid.uuid4(),
        "name": "Photoautomat Berlin",
        "source_url": "http://www.photoautomat.de/standorte.html",
        "extra_urls": [],
        "strategy": "city_guide",
        "priority": 50,
        "config_json": {},
    }
    values.update(overrides)
    async with session_factory() as db:
        async with db.begin():
            source = CrawlSource(**values)
            db.add(source)
    return source


def snapshot(**overrides) -> SourceSnapshot:
    values = {
        "id": uuid.uuid4(),
        "name": "Photoautomat Berlin",
        "urls": ("http://www.photoautomat.de/standorte.html",),
        "strategy": "city_guide",
    }
    values.update(overrides)
    return SourceSnapshot(**values)


def page(url: str = "http://www.photoautomat.de/standorte.html", markdown: str = BERLIN_PAGE) -> FetchedPage:
    return FetchedPage(url=url, markdown=markdown, status_code=200)


def booths_json(*booths: dict) -> str:
    return json.dumps(list(booths))


KASTANIENALLEE = {
    "name": "Photoautomat Kastanienallee",
    "address": "Kastanienallee 55",
    "city": "Berlin",
    "country": "Germany",
    "postal_code": "10119",
    "latitude": 52.5390,
    "longitude": 13.4095,
    "booth_type": "analog",
    "cost": "2 EUR",
}

WARSCHAUER = {
    "name": "Photoautomat Warschauer",
    "address": "Warschauer Strasse 70",
    "city": "Berlin",
    "country": "Germany",
    "latitude": 52.5058,
    "longitude": 13.4490,
}


class FakeFetcher:
    """ContentFetcher returning canned pages per source name.

    A response may be a list of pages, an exception (raised on every call) or
    a list of those consumed one per call.
    """

    def __init__(self, responses: dict | None = None):
        self.responses = responses or {}
        self.calls: list[str] = []

    async def fetch(self, snapshot: SourceSnapshot) -> list[FetchedPage]:
        self.calls.append(snapshot.name)
        response = self.responses.get(snapshot.name, [])
        if isinstance(response, BaseException):
            raise response
        if response and isinstance(response[0], (BaseException, list)):
            current = response.pop(0) if len(response) > 1 else response[0]
            if isinstance(current, BaseException):
                raise current
            return list(current)
        return list(response)


class FakeLLM:
    """LLMClient returning canned replies.

    reply is a string, an exception, a list of those consumed in order, or a
    callable taking the prompt.
    """

    def __init__(self, reply: str | BaseException | list | Callable[[str], str] = "[]"):
        self.reply = reply
        self.prompts: list[str] = []

    async def complete(self, system: str, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.reply
        if isinstance(reply, list):
            reply = reply.pop(0) if len(reply) > 1 else reply[0]
        if callable(reply) and not isinstance(reply, BaseException):
            reply = reply(prompt)
        if isinstance(reply, BaseException):
            raise reply
        return reply


@pytest.fixture
def fake_llm() -> FakeLLM:
    return FakeLLM(booths_json(KASTANIENALLEE, WARSCHAUER))


@pytest.fixture
def engine(fake_llm, settings) -> ExtractionEngine:
    return ExtractionEngine(fake_llm, settings)
