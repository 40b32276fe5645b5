"""Pydantic schemas for Booth model."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class BoothSummary(BaseModel):
    """Booth fields for list views."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    slug: str
    name: str
    city: str | None = None
    country: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    status: str
    needs_review: bool = False
    completeness_score: int = 0


class BoothRead(BoothSummary):
    """Full booth output with provenance."""

    address: str | None = None
    state: str | None = None
    postal_code: str | None = None
    phone: str | None = None
    website: str | None = None
    hours: str | None = None
    cost: str | None = None
    machine_model: str | None = None
    machine_manufacturer: str | None = None
    booth_type: str | None = None
    description: str | None = None
    is_operational: bool | None = None
    review_notes: list[str] = []
    source_names: list[str] = []
    source_urls: list[str] = []
    confidence: float = 0.0
    last_verified_at: datetime | None = None
    version: int
    created_at: datetime
    updated_at: datetime
