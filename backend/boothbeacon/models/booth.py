"""Booth model: the durable, deduplicated photo booth record."""

from sqlalchemy import Column, String, Float, Boolean, DateTime, Text, ForeignKey, Index, Integer, Uuid

from boothbeacon.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Booth(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "booths"

    # Identity
    slug = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=False)

    # Dedup keys (normalized copies of name/city)
    normalized_name = Column(String(255), nullable=False, index=True)
    normalized_city = Column(String(100), index=True)

    # Location
    address = Column(String(300))
    city = Column(String(100), index=True)
    state = Column(String(100))
    country = Column(String(100), index=True)
    postal_code = Column(String(20))
    latitude = Column(Float)
    longitude = Column(Float)

    # Contact
    phone = Column(String(50))
    website = Column(String(1000))

    # Operational metadata
    hours = Column(Text)
    cost = Column(String(255))
    machine_model = Column(String(255))
    machine_manufacturer = Column(String(255))
    booth_type = Column(String(20))  # analog, chemical, instant, digital
    description = Column(Text)
    is_operational = Column(Boolean)
    status = Column(String(20), default="active", nullable=False, index=True)  # active, inactive, closed, unverified

    # Review
    needs_review = Column(Boolean, default=False, nullable=False, index=True)
    review_notes = Column(JSONType, default=list)

    # Provenance
    primary_source_id = Column(Uuid(as_uuid=True), ForeignKey("crawl_sources.id"), index=True)
    source_names = Column(JSONType, default=list)
    source_urls = Column(JSONType, default=list)
    confidence = Column(Float, default=0.0, nullable=False)
    completeness_score = Column(Integer, default=0, nullable=False)
    last_verified_at = Column(DateTime(timezone=True))

    # Optimistic lock, bumped by every flush that updates the row
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_booth_name_city", "normalized_name", "normalized_city"),
        Index("idx_booth_geo", "latitude", "longitude"),
    )
