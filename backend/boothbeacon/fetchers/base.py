"""Fetcher interface."""

from typing import Protocol

from boothbeacon.records import FetchedPage, SourceSnapshot


class ContentFetcher(Protocol):
    """Retrieves page content for a source. No persistence side effects."""

    async def fetch(self, snapshot: SourceSnapshot) -> list[FetchedPage]:
        """Raise FetchError on failure, ConfigurationError on unusable source config."""
        ...
