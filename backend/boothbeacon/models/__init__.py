"""SQLAlchemy models. Import all so relationship strings resolve."""

from boothbeacon.models.base import Base  # noqa: F401
from boothbeacon.models.crawl_source import CrawlSource  # noqa: F401
from boothbeacon.models.raw_content import RawContent  # noqa: F401
from boothbeacon.models.booth import Booth  # noqa: F401
from boothbeacon.models.crawl_metric import CrawlMetric  # noqa: F401
