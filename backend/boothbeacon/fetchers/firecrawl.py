"""Firecrawl-compatible scrape service client.

Two modes:
    scrape  POST /v1/scrape once per URL
    crawl   POST /v1/crawl, then poll GET /v1/crawl/{id} (following `next`)

The page budget is a hard ceiling. Pages beyond it are discarded even when
the service returns more.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from boothbeacon.config import Settings, get_settings
from boothbeacon.errors import ConfigurationError, FetchError
from boothbeacon.records import FetchedPage, SourceSnapshot
from boothbeacon.services.strategies import CRAWL, get_strategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DomainConfig:
    page_limit: int
    timeout_ms: int
    wait_for_ms: int


# Slow or heavy hosts that need smaller batches and longer waits
DOMAIN_OVERRIDES: dict[str, DomainConfig] = {
    "photobooth.net": DomainConfig(page_limit=1, timeout_ms=60000, wait_for_ms=8000),
    "fotoautomat-wien.at": DomainConfig(page_limit=1, timeout_ms=60000, wait_for_ms=8000),
    "autophoto.org": DomainConfig(page_limit=2, timeout_ms=45000, wait_for_ms=5000),
    "lomography.com": DomainConfig(page_limit=2, timeout_ms=45000, wait_for_ms=5000),
}


def validate_url(url: str) -> str:
    parsed = urlparse(url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigurationError(f"Invalid source URL: {url!r}")
    return url


class FirecrawlFetcher:
    """ContentFetcher backed by a Firecrawl-compatible REST API."""

    def __init__(self, settings: Settings | None = None, client: httpx.AsyncClient | None = None):
        self.settings = settings or get_settings()
        self.base_url = self.settings.firecrawl_api_url.rstrip("/")
        self._client = client

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.firecrawl_api_key}",
            "Content-Type": "application/json",
        }

    def domain_config(self, url: str) -> DomainConfig:
        hostname = (urlparse(url).hostname or "").lower()
        for domain, config in DOMAIN_OVERRIDES.items():
            if hostname == domain or hostname.endswith("." + domain):
                return config
        return DomainConfig(
            page_limit=self.settings.default_page_limit,
            timeout_ms=self.settings.scrape_timeout * 1000,
            wait_for_ms=self.settings.scrape_wait_for_ms,
        )

    def page_budget(self, snapshot: SourceSnapshot) -> int:
        """min(source limit or domain default, global ceiling), at least 1."""
        limit = snapshot.page_limit or self.domain_config(snapshot.urls[0]).page_limit
        return max(1, min(limit, self.settings.max_page_limit))

    async def _request(self, client: httpx.AsyncClient, method: str, url: str, timeout: float, **kwargs) -> dict:
        try:
            response = await client.request(method, url, headers=self._headers(), timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out calling {url}: {e}") from e
        except httpx.RequestError as e:
            raise FetchError(f"Request to {url} failed: {e}") from e

        if response.status_code >= 400:
            raise FetchError(
                f"Scrape service returned {response.status_code}: {response.text[:300]}",
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise FetchError(f"Scrape service returned non-JSON body: {e}") from e
        if not isinstance(payload, dict):
            raise FetchError("Scrape service returned an unexpected payload")
        return payload

    @staticmethod
    def _to_page(item: dict, fallback_url: str, elapsed_ms: int = 0) -> FetchedPage:
        metadata = item.get("metadata") or {}
        return FetchedPage(
            url=metadata.get("sourceURL") or metadata.get("url") or fallback_url,
            markdown=item.get("markdown") or "",
            html=item.get("html") or item.get("rawHtml") or "",
            status_code=metadata.get("statusCode"),
            elapsed_ms=elapsed_ms,
        )

    def _scrape_options(self, config: DomainConfig) -> dict:
        return {
            "formats": ["markdown", "html"],
            "onlyMainContent": True,
            "waitFor": config.wait_for_ms,
            "timeout": config.timeout_ms,
        }

    async def scrape(self, client: httpx.AsyncClient, url: str) -> FetchedPage:
        config = self.domain_config(url)
        started = time.monotonic()
        payload = await self._request(
            client,
            "POST",
            f"{self.base_url}/v1/scrape",
            timeout=config.timeout_ms / 1000 + 15,
            json={"url": url, **self._scrape_options(config)},
        )
        if not payload.get("success", True):
            raise FetchError(f"Scrape of {url} failed: {payload.get('error') or 'unknown error'}")

        page = self._to_page(payload.get("data") or {}, url, int((time.monotonic() - started) * 1000))
        if page.status_code and page.status_code >= 400:
            raise FetchError(f"{url} returned {page.status_code}", status_code=page.status_code)
        if not page.body.strip():
            raise FetchError(f"Empty body for {url}")
        return page

    async def crawl(self, client: httpx.AsyncClient, url: str, limit: int) -> list[FetchedPage]:
        config = self.domain_config(url)
        request_timeout = config.timeout_ms / 1000 + 15
        started = time.monotonic()

        job = await self._request(
            client,
            "POST",
            f"{self.base_url}/v1/crawl",
            timeout=request_timeout,
            json={"url": url, "limit": limit, "scrapeOptions": self._scrape_options(config)},
        )
        job_id = job.get("id")
        if not job.get("success", True) or not job_id:
            raise FetchError(f"Crawl of {url} was not accepted: {job.get('error') or job}")
        logger.info(f"Crawl job {job_id} started for {url} (limit {limit})")

        deadline = started + self.settings.crawl_max_wait
        status_url = f"{self.base_url}/v1/crawl/{job_id}"
        while True:
            status = await self._request(client, "GET", status_url, timeout=request_timeout)
            state = status.get("status")
            if state == "completed":
                break
            if state in ("failed", "cancelled"):
                raise FetchError(f"Crawl job {job_id} {state}: {status.get('error') or ''}".strip())
            if time.monotonic() >= deadline:
                raise FetchError(f"Crawl job {job_id} did not finish within {self.settings.crawl_max_wait}s")
            logger.debug(f"Crawl job {job_id} is {state} ({status.get('completed', 0)}/{status.get('total', '?')})")
            await asyncio.sleep(self.settings.crawl_poll_interval)

        items = list(status.get("data") or [])
        next_url = status.get("next")
        while next_url and len(items) < limit:
            more = await self._request(client, "GET", next_url, timeout=request_timeout)
            items.extend(more.get("data") or [])
            next_url = more.get("next")

        elapsed_ms = int((time.monotonic() - started) * 1000)
        pages = [self._to_page(item, url, elapsed_ms) for item in items if isinstance(item, dict)]
        pages = [p for p in pages if p.body.strip()]
        if not pages:
            raise FetchError(f"Crawl job {job_id} returned no content")
        return pages[:limit]

    async def fetch(self, snapshot: SourceSnapshot) -> list[FetchedPage]:
        if not self.settings.firecrawl_api_key:
            raise ConfigurationError("FIRECRAWL_API_KEY is not configured", systemic=True)
        if not snapshot.urls:
            raise ConfigurationError(f"Source {snapshot.name} has no URLs")
        for url in snapshot.urls:
            validate_url(url)
        strategy = get_strategy(snapshot.strategy)
        if strategy is None:
            raise ConfigurationError(f"Unknown strategy: {snapshot.strategy}")

        budget = self.page_budget(snapshot)
        pages: list[FetchedPage] = []

        client = self._client or httpx.AsyncClient()
        try:
            for url in snapshot.urls:
                remaining = budget - len(pages)
                if remaining <= 0:
                    break
                if strategy.fetch_mode == CRAWL:
                    pages.extend(await self.crawl(client, url, remaining))
                else:
                    pages.append(await self.scrape(client, url))
        finally:
            if self._client is None:
                await client.aclose()

        if len(pages) > budget:
            logger.warning(f"[{snapshot.name}] Discarding {len(pages) - budget} pages over budget {budget}")
        return pages[:budget]
