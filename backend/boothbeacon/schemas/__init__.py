"""Pydantic schemas package."""

from boothbeacon.schemas.crawl_source import (
    CrawlSourceBase,
    CrawlSourceRead,
    CrawlSourceSummary,
    CrawlSourceWithMetrics,
)
from boothbeacon.schemas.crawl_metric import CrawlMetricRead, CrawlMetricSummary, CrawlMetricWithSource
from boothbeacon.schemas.booth import BoothRead, BoothSummary
from boothbeacon.schemas.crawl import BatchSummaryOut, QueuedCrawlResponse, SourceRunOut

# Rebuild models to resolve forward references
CrawlSourceWithMetrics.model_rebuild()

__all__ = [
    # CrawlSource
    "CrawlSourceBase",
    "CrawlSourceRead",
    "CrawlSourceSummary",
    "CrawlSourceWithMetrics",
    # CrawlMetric
    "CrawlMetricRead",
    "CrawlMetricSummary",
    "CrawlMetricWithSource",
    # Booth
    "BoothRead",
    "BoothSummary",
    # Crawl
    "BatchSummaryOut",
    "QueuedCrawlResponse",
    "SourceRunOut",
]
