"""Booth identity resolution.

One matching policy for every caller: normalized name + city, or proximity.

    strong      normalized names equal AND (same normalized address OR within radius)
    proximity   within radius AND names similar (token containment or ratio)
    name_city   names equal, cities equal, addresses compatible, not known to be far apart

The best match wins by tier, then by how many fields it already has, then by
age. A match that would gain nothing from a source already in its provenance
is skipped.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from boothbeacon.config import Settings, get_settings
from boothbeacon.models.base import as_utc
from boothbeacon.models.booth import Booth
from boothbeacon.records import BOOTH_FIELDS, Insert, MergeInto, Resolution, Skip, ValidatedRecord
from boothbeacon.services.normalization import (
    bounding_box,
    haversine_meters,
    names_similar,
    normalize_text,
    similarity,
)

logger = logging.getLogger(__name__)

# May overwrite a non-null stored value whenever the incoming value differs
REFRESHABLE_FIELDS = (
    "hours",
    "cost",
    "status",
    "is_operational",
    "website",
    "phone",
    "description",
    "machine_model",
    "machine_manufacturer",
    "booth_type",
)

# Overwrite a non-null stored value only with strictly higher confidence
DURABLE_FIELDS = ("name", "address", "city", "state", "country", "postal_code")

TIER_RANK = {"strong": 3, "proximity": 2, "name_city": 1}

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class MatchPolicy:
    radius_meters: float = 50.0
    far_meters: float = 500.0
    name_threshold: float = 0.8
    address_threshold: float = 0.9

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "MatchPolicy":
        settings = settings or get_settings()
        return cls(
            radius_meters=settings.dedup_radius_meters,
            far_meters=settings.dedup_far_meters,
            name_threshold=settings.name_similarity_threshold,
            address_threshold=settings.address_similarity_threshold,
        )


@dataclass
class Match:
    booth: Any
    tier: str
    distance: float | None


def _distance(record: ValidatedRecord, booth) -> float | None:
    if not record.has_coordinates or booth.latitude is None or booth.longitude is None:
        return None
    return haversine_meters(record.latitude, record.longitude, booth.latitude, booth.longitude)


def _stored_name(booth) -> str:
    return getattr(booth, "normalized_name", None) or normalize_text(booth.name)


def _stored_city(booth) -> str:
    return getattr(booth, "normalized_city", None) or normalize_text(booth.city)


def _addresses_compatible(a: str | None, b: str | None, threshold: float) -> bool:
    if not a or not b:
        return True
    return similarity(a, b) >= threshold


def classify(record: ValidatedRecord, booth, policy: MatchPolicy) -> Match | None:
    """Match tier between an incoming record and one stored booth, or None."""
    distance = _distance(record, booth)
    within_radius = distance is not None and distance <= policy.radius_meters
    same_name = bool(normalize_text(record.name)) and normalize_text(record.name) == _stored_name(booth)

    if same_name:
        in_addr, st_addr = normalize_text(record.address), normalize_text(booth.address)
        if within_radius or (in_addr and in_addr == st_addr):
            return Match(booth, "strong", distance)

    if within_radius and names_similar(record.name, booth.name, policy.name_threshold):
        return Match(booth, "proximity", distance)

    if same_name:
        in_city = normalize_text(record.city)
        known_far = distance is not None and distance > policy.far_meters
        if (
            in_city
            and in_city == _stored_city(booth)
            and _addresses_compatible(record.address, booth.address, policy.address_threshold)
            and not known_far
        ):
            return Match(booth, "name_city", distance)
    return None


def _filled_fields(booth) -> int:
    return sum(1 for name in BOOTH_FIELDS if getattr(booth, name, None) not in (None, ""))


def _sort_key(match: Match):
    created = as_utc(getattr(match.booth, "created_at", None)) or _EPOCH
    return (-TIER_RANK[match.tier], -_filled_fields(match.booth), created)


def best_match(record: ValidatedRecord, existing: Sequence[Any], policy: MatchPolicy | None = None) -> Match | None:
    policy = policy or MatchPolicy.from_settings()
    matches = [m for m in (classify(record, booth, policy) for booth in existing) if m is not None]
    if not matches:
        return None
    matches.sort(key=_sort_key)
    return matches[0]


def _same_text(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return normalize_text(a) == normalize_text(b)
    return a == b


def plan_merge(record: ValidatedRecord, booth) -> dict[str, Any]:
    """Field changes to apply to booth. Null never overwrites."""
    changes: dict[str, Any] = {}
    stronger = record.confidence > (booth.confidence or 0.0)

    for field_name in REFRESHABLE_FIELDS:
        incoming = getattr(record, field_name)
        if incoming is None:
            continue
        if getattr(booth, field_name) != incoming:
            changes[field_name] = incoming

    for field_name in DURABLE_FIELDS:
        incoming = getattr(record, field_name)
        if incoming is None:
            continue
        current = getattr(booth, field_name)
        if current in (None, ""):
            changes[field_name] = incoming
        elif stronger and not _same_text(current, incoming):
            changes[field_name] = incoming

    # Coordinates move as a pair
    if record.has_coordinates:
        if booth.latitude is None or booth.longitude is None:
            changes["latitude"], changes["longitude"] = record.latitude, record.longitude
        elif stronger and (booth.latitude, booth.longitude) != (record.latitude, record.longitude):
            changes["latitude"], changes["longitude"] = record.latitude, record.longitude

    return changes


def _in_provenance(record: ValidatedRecord, booth) -> bool:
    names = booth.source_names or []
    return bool(record.source_name) and record.source_name in names


def resolve(record: ValidatedRecord, existing: Sequence[Any], policy: MatchPolicy | None = None) -> Resolution:
    """Decide Insert, MergeInto or Skip for one validated record."""
    if not record.accepted:
        return Skip(reason="rejected")

    match = best_match(record, existing, policy)
    if match is None:
        return Insert()

    changes = plan_merge(record, match.booth)
    if not changes and _in_provenance(record, match.booth):
        return Skip(reason="no new information", target_id=match.booth.id)

    logger.debug(
        f"[{record.source_name}] '{record.name}' matches booth {match.booth.id} "
        f"({match.tier}, {len(changes)} changes)"
    )
    return MergeInto(target_id=match.booth.id, changes=changes)


async def find_candidates(
    session: AsyncSession,
    record: ValidatedRecord,
    policy: MatchPolicy | None = None,
) -> list[Booth]:
    """Stored booths that could be the same venue as record."""
    policy = policy or MatchPolicy.from_settings()
    norm_name = normalize_text(record.name)
    norm_city = normalize_text(record.city)

    conditions = []
    if norm_name:
        if norm_city:
            conditions.append(and_(Booth.normalized_name == norm_name, Booth.normalized_city == norm_city))
        else:
            conditions.append(Booth.normalized_name == norm_name)
    if record.has_coordinates:
        min_lat, max_lat, min_lng, max_lng = bounding_box(record.latitude, record.longitude, policy.radius_meters)
        conditions.append(
            and_(
                Booth.latitude.between(min_lat, max_lat),
                Booth.longitude.between(min_lng, max_lng),
            )
        )
    if not conditions:
        return []

    result = await session.execute(select(Booth).where(or_(*conditions)))
    booths = result.scalars().all()

    candidates = []
    for booth in booths:
        name_hit = booth.normalized_name == norm_name
        distance = _distance(record, booth)
        if name_hit or (distance is not None and distance <= policy.radius_meters):
            candidates.append(booth)
    return candidates
