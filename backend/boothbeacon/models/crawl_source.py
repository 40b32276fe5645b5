"""Crawl source model: per-source crawl config and health state."""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, Index
from sqlalchemy.orm import relationship

from boothbeacon.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class CrawlSource(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "crawl_sources"

    # Identity
    name = Column(String(255), unique=True, nullable=False, index=True)
    source_url = Column(String(1000), nullable=False)
    extra_urls = Column(JSONType, default=list)

    # Crawl config
    strategy = Column(String(50), nullable=False, index=True)  # directory, city_guide, blog, community, operator
    priority = Column(Integer, default=50, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    crawl_frequency_minutes = Column(Integer, default=10080, nullable=False)
    page_limit = Column(Integer)
    config_json = Column(JSONType, default=dict)

    # Health
    status = Column(String(20), default="active", nullable=False, index=True)  # active, error, needs_review
    needs_review = Column(Boolean, default=False, nullable=False)
    last_run_at = Column(DateTime(timezone=True))
    last_success_at = Column(DateTime(timezone=True))
    consecutive_failures = Column(Integer, default=0, nullable=False)
    last_error_message = Column(Text)
    last_error_at = Column(DateTime(timezone=True))

    # Cumulative counts
    total_found = Column(Integer, default=0, nullable=False)
    total_added = Column(Integer, default=0, nullable=False)
    total_updated = Column(Integer, default=0, nullable=False)

    # Relationships
    raw_contents = relationship("RawContent", back_populates="source")
    metrics = relationship("CrawlMetric", back_populates="source")

    __table_args__ = (
        Index("idx_source_due", "enabled", "last_run_at", "crawl_frequency_minutes"),
    )

    @property
    def urls(self) -> list[str]:
        """Primary URL followed by any extra target URLs."""
        extra = [u for u in (self.extra_urls or []) if u and u != self.source_url]
        return [self.source_url, *extra]
