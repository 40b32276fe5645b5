"""Seed the built-in crawl sources.

Creates missing sources and updates the config of existing ones (matched by
name). Health fields are left alone and no source is ever deleted.

Usage:
    docker compose exec backend python -m scripts.seed_sources
    docker compose exec backend python -m scripts.seed_sources --dry-run
"""

import argparse
import asyncio
import logging

from boothbeacon.models.base import make_session_factory
from boothbeacon.services.source_registry import seed_sources
from boothbeacon.services.strategies import list_strategies

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

# Directories and operators: crawled as multi-page jobs, highest priority
DIRECTORY_SOURCES = [
    {
        "name": "photobooth.net",
        "source_url": "https://www.photobooth.net/locations/",
        "strategy": "directory",
        "priority": 100,
        "page_limit": 1,
    },
    {
        "name": "Autophoto",
        "source_url": "https://autophoto.org/booth-locator",
        "strategy": "operator",
        "priority": 90,
        "page_limit": 2,
    },
    {
        "name": "Photomatica",
        "source_url": "https://photomatica.com/locations",
        "extra_urls": ["https://www.photomatica.com/photo-booth-museum/los-angeles"],
        "strategy": "operator",
        "priority": 90,
    },
    {
        "name": "Photoautomat Berlin",
        "source_url": "http://www.photoautomat.de/standorte.html",
        "strategy": "operator",
        "priority": 85,
    },
    {
        "name": "Lomography Locations",
        "source_url": "https://www.lomography.com/magazine/334637-a-guide-to-analog-photo-booths-in-new-york-city",
        "strategy": "community",
        "priority": 60,
        "page_limit": 2,
    },
]

# City guides: single articles, scraped once per URL
CITY_GUIDE_SOURCES = [
    {"name": "Digital Cosmonaut Berlin", "source_url": "https://digitalcosmonaut.com/berlin-photoautomat-locations/"},
    {"name": "Phelt Magazine Berlin", "source_url": "https://pheltmagazine.co/photo-booths-of-berlin/"},
    {
        "name": "Design My Night London",
        "source_url": "https://www.designmynight.com/london/whats-on/unusual-things-to-do/best-photo-booths-in-london",
    },
    {
        "name": "London World",
        "source_url": "https://londonworld.com/lifestyle/things-to-do/where-to-find-photo-booths-in-london",
    },
    {
        "name": "Time Out LA",
        "source_url": "https://www.timeout.com/los-angeles/things-to-do/photo-booths-in-los-angeles",
    },
    {"name": "Locale Magazine LA", "source_url": "https://localemagazine.com/photo-booth-los-angeles/"},
    {
        "name": "Time Out Chicago",
        "source_url": "https://www.timeout.com/chicago/things-to-do/photo-booths-in-chicago",
    },
    {"name": "Block Club Chicago", "source_url": "https://blockclubchicago.org/2023/08/14/chicago-photo-booths/"},
    {
        "name": "Design My Night NYC",
        "source_url": "https://www.designmynight.com/new-york/whats-on/unusual-things-to-do/best-photo-booths-in-new-york",
    },
    {"name": "Roxy Hotel NYC", "source_url": "https://www.roxyhotelnyc.com/blog/photo-booths-nyc"},
]


def all_sources() -> list[dict]:
    sources = list(DIRECTORY_SOURCES)
    for entry in CITY_GUIDE_SOURCES:
        sources.append({"strategy": "city_guide", "priority": 50, "page_limit": 1, **entry})
    return sources


async def seed(dry_run: bool = False) -> dict[str, int]:
    configs = all_sources()
    known = set(list_strategies())
    for config in configs:
        if config["strategy"] not in known:
            raise ValueError(f"{config['name']}: unknown strategy {config['strategy']}")

    if dry_run:
        for config in configs:
            print(f"  {config['name']:<32} {config['strategy']:<12} {config['source_url']}")
        return {"created": 0, "updated": 0}

    engine, session_factory = make_session_factory()
    try:
        async with session_factory() as db:
            async with db.begin():
                return await seed_sources(db, configs)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed built-in crawl sources")
    parser.add_argument("--dry-run", action="store_true", help="List sources without writing")
    args = parser.parse_args()

    result = asyncio.run(seed(dry_run=args.dry_run))
    print(f"\nDone: {result['created']} created, {result['updated']} updated")
