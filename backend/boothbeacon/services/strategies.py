"""Extraction strategy registry: maps a source's strategy tag to fetch and prompt behavior."""

import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

SCRAPE = "scrape"  # one POST /v1/scrape per URL
CRAWL = "crawl"  # async crawl job, polled until done


@dataclass(frozen=True)
class Strategy:
    name: str
    fetch_mode: str
    chunked: bool
    guidance: str


# Strategy name -> Strategy
_REGISTRY: dict[str, Strategy] = {}


def register_strategy(name: str, *, fetch_mode: str = SCRAPE, chunked: bool = False):
    """Decorator registering a guidance function under a strategy tag.

    The decorated function returns the strategy-specific prompt guidance.
    """
    def decorator(func):
        _REGISTRY[name] = Strategy(name=name, fetch_mode=fetch_mode, chunked=chunked, guidance=func())
        logger.debug(f"Registered extraction strategy: {name}")
        return func
    return decorator


def get_strategy(name: str) -> Strategy | None:
    return _REGISTRY.get(name)


def list_strategies() -> list[str]:
    return list(_REGISTRY.keys())


@register_strategy("directory", fetch_mode=CRAWL, chunked=True)
def _directory() -> str:
    return (
        "This is a directory/database of photo booths. Extract every listing with complete details. "
        "Listings are often tables or line-per-booth lists; treat each line with an address as a booth."
    )


@register_strategy("city_guide")
def _city_guide() -> str:
    return "This is a city guide article. Look for recommendations, venue names, and addresses mentioned in the text."


@register_strategy("blog")
def _blog() -> str:
    return "This is a blog post. Extract any photo booth locations mentioned, including personal experiences and details."


@register_strategy("community")
def _community() -> str:
    return "This is community content (forum, reddit, social). Extract user-reported locations with context."


@register_strategy("operator", fetch_mode=CRAWL, chunked=True)
def _operator() -> str:
    return "This is a photo booth operator site. Extract all their booth locations and details."
