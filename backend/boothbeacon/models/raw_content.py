"""Raw content model: fetched page bodies keyed by content hash."""

from sqlalchemy import Column, String, Integer, DateTime, Text, ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from boothbeacon.models.base import Base, UUIDMixin, utcnow


class RawContent(UUIDMixin, Base):
    __tablename__ = "raw_content"

    source_id = Column(Uuid(as_uuid=True), ForeignKey("crawl_sources.id"), nullable=False, index=True)
    url = Column(String(1000), nullable=False)
    content_hash = Column(String(64), nullable=False)

    markdown = Column(Text)
    html = Column(Text)
    status_code = Column(Integer)
    size_bytes = Column(Integer, default=0, nullable=False)
    fetched_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    # Set once the body has been through extraction without transport failures
    extracted_at = Column(DateTime(timezone=True))

    source = relationship("CrawlSource", back_populates="raw_contents")

    __table_args__ = (
        UniqueConstraint("source_id", "url", "content_hash", name="uq_raw_content_source_url_hash"),
        Index("idx_raw_content_latest", "source_id", "url", "fetched_at"),
    )
