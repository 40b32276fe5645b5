"""Content fetchers."""

from boothbeacon.fetchers.base import ContentFetcher  # noqa: F401
from boothbeacon.fetchers.firecrawl import FirecrawlFetcher  # noqa: F401
