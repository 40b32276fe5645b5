"""Crawl metric model: append-only audit log per source run."""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, Text, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from boothbeacon.models.base import Base, UUIDMixin


class CrawlMetric(UUIDMixin, Base):
    __tablename__ = "crawl_metrics"

    source_id = Column(Uuid(as_uuid=True), ForeignKey("crawl_sources.id"), nullable=False, index=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default="running")  # running, success, partial, error
    stage = Column(String(20))  # stage where a failed run stopped
    content_unchanged = Column(Boolean, default=False, nullable=False)

    pages_crawled = Column(Integer, default=0)
    candidates_found = Column(Integer, default=0)
    records_added = Column(Integer, default=0)
    records_updated = Column(Integer, default=0)
    records_skipped = Column(Integer, default=0)
    records_rejected = Column(Integer, default=0)
    records_needing_review = Column(Integer, default=0)
    duration_ms = Column(Integer)
    error_message = Column(Text)

    source = relationship("CrawlSource", back_populates="metrics")

    __table_args__ = (
        Index("idx_metrics_source_started", "source_id", "started_at"),
    )
