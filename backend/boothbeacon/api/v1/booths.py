"""Booth API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from boothbeacon.models.base import get_db
from boothbeacon.models.booth import Booth
from boothbeacon.schemas.booth import BoothRead, BoothSummary
from boothbeacon.services.normalization import normalize_text

router = APIRouter(prefix="/booths", tags=["booths"])


@router.get("", response_model=list[BoothSummary])
async def list_booths(
    db: AsyncSession = Depends(get_db),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    city: str | None = Query(None, description="Filter by city"),
    country: str | None = Query(None, description="Filter by country"),
    status: str | None = Query(None, description="Filter by status"),
    needs_review: bool | None = Query(None, description="Filter by review flag"),
):
    """List booths, most complete first."""
    query = select(Booth)

    if city:
        query = query.where(Booth.normalized_city == normalize_text(city))
    if country:
        query = query.where(Booth.country == country)
    if status:
        query = query.where(Booth.status == status)
    if needs_review is not None:
        query = query.where(Booth.needs_review == needs_review)

    query = query.order_by(Booth.completeness_score.desc(), Booth.name).offset(skip).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/{slug}", response_model=BoothRead)
async def get_booth(
    slug: str,
    db: AsyncSession = Depends(get_db),
):
    """Get a single booth by slug."""
    result = await db.execute(select(Booth).where(Booth.slug == slug))
    booth = result.scalar_one_or_none()

    if not booth:
        raise HTTPException(status_code=404, detail="Booth not found")

    return booth
