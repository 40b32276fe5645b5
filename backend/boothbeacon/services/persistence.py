"""Booth persistence: apply a Resolution inside one transaction.

Merges re-read their target with SELECT ... FOR UPDATE and re-plan against
that fresh state; the version column catches writers that slipped past the
lock (SQLite has no row locks). Slug collisions and stale versions are
retried once before surfacing as PersistenceConflict.
"""

import logging
import re
import uuid

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from boothbeacon.errors import PersistenceConflict, StoreUnavailableError
from boothbeacon.models.base import utcnow
from boothbeacon.models.booth import Booth
from boothbeacon.records import (
    CommitOutcome,
    Insert,
    MergeInto,
    Resolution,
    Skip,
    ValidatedRecord,
    ValidationOutcome,
)
from boothbeacon.services.completeness import booth_values, completeness_score
from boothbeacon.services.deduplication import MatchPolicy, find_candidates, plan_merge, resolve
from boothbeacon.services.normalization import make_slug, normalize_text

logger = logging.getLogger(__name__)

ADDED = "added"
UPDATED = "updated"
SKIPPED = "skipped"

COMMIT_ATTEMPTS = 2


async def unique_slug(db: AsyncSession, name: str, city: str | None) -> str:
    """make_slug(name, city), suffixed -2, -3, ... past any existing slug."""
    base = make_slug(name, city)
    result = await db.execute(
        select(Booth.slug).where(or_(Booth.slug == base, Booth.slug.like(f"{base}-%")))
    )
    taken = set(result.scalars().all())
    if base not in taken:
        return base

    suffix_re = re.compile(rf"^{re.escape(base)}-(\d+)$")
    used = [int(m.group(1)) for m in (suffix_re.match(s) for s in taken) if m]
    n = max(used, default=1) + 1
    while f"{base}-{n}" in taken:
        n += 1
    return f"{base}-{n}"


def _append_unique(values: list | None, item: str | None) -> list:
    # New list so the JSON column registers the change
    items = list(values or [])
    if item and item not in items:
        items.append(item)
    return items


def _apply_review(booth: Booth, record: ValidatedRecord) -> None:
    notes = record.review_notes()
    if record.outcome == ValidationOutcome.NEEDS_REVIEW:
        booth.needs_review = True
    if notes:
        existing = list(booth.review_notes or [])
        booth.review_notes = existing + [n for n in notes if n not in existing]


async def _insert(db: AsyncSession, record: ValidatedRecord) -> CommitOutcome:
    slug = await unique_slug(db, record.name, record.city)
    fields = record.booth_fields()
    fields.setdefault("status", "active")

    booth = Booth(
        id=uuid.uuid4(),
        slug=slug,
        normalized_name=normalize_text(record.name),
        normalized_city=normalize_text(record.city) or None,
        primary_source_id=record.source_id,
        source_names=_append_unique([], record.source_name),
        source_urls=_append_unique([], record.source_url),
        confidence=record.confidence,
        needs_review=False,
        review_notes=[],
        last_verified_at=utcnow(),
        **fields,
    )
    _apply_review(booth, record)
    booth.completeness_score = completeness_score(fields)
    db.add(booth)
    await db.flush()

    logger.info(f"[{record.source_name}] Added booth '{booth.name}' ({slug})")
    return CommitOutcome(action=ADDED, booth_id=booth.id, slug=slug)


async def _merge(db: AsyncSession, target_id: uuid.UUID, record: ValidatedRecord) -> CommitOutcome:
    result = await db.execute(
        select(Booth)
        .where(Booth.id == target_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    booth = result.scalar_one_or_none()
    if booth is None:
        raise PersistenceConflict(f"Merge target {target_id} disappeared")

    # Re-plan against the locked row; the caller's plan may be stale
    changes = plan_merge(record, booth)
    for field_name, value in changes.items():
        setattr(booth, field_name, value)
    if "name" in changes:
        booth.normalized_name = normalize_text(booth.name)
    if "city" in changes:
        booth.normalized_city = normalize_text(booth.city) or None

    booth.source_names = _append_unique(booth.source_names, record.source_name)
    booth.source_urls = _append_unique(booth.source_urls, record.source_url)
    booth.confidence = max(booth.confidence or 0.0, record.confidence)
    booth.last_verified_at = utcnow()
    _apply_review(booth, record)
    booth.completeness_score = completeness_score(booth_values(booth))
    await db.flush()

    logger.info(f"[{record.source_name}] Merged into '{booth.name}' ({booth.slug}): {sorted(changes)}")
    return CommitOutcome(action=UPDATED, booth_id=booth.id, slug=booth.slug)


async def commit(db: AsyncSession, resolution: Resolution, record: ValidatedRecord) -> CommitOutcome:
    """Apply resolution in the caller's transaction."""
    if isinstance(resolution, Skip):
        return CommitOutcome(action=SKIPPED, booth_id=resolution.target_id)
    if isinstance(resolution, Insert):
        return await _insert(db, record)
    if isinstance(resolution, MergeInto):
        return await _merge(db, resolution.target_id, record)
    raise TypeError(f"Unknown resolution: {resolution!r}")


async def save_record(
    session_factory: async_sessionmaker[AsyncSession],
    record: ValidatedRecord,
    policy: MatchPolicy | None = None,
) -> tuple[Resolution, CommitOutcome]:
    """Resolve and commit one record in its own transaction, retrying one conflict."""
    policy = policy or MatchPolicy.from_settings()
    for attempt in range(1, COMMIT_ATTEMPTS + 1):
        try:
            async with session_factory() as db:
                async with db.begin():
                    existing = await find_candidates(db, record, policy)
                    resolution = resolve(record, existing, policy)
                    outcome = await commit(db, resolution, record)
            return resolution, outcome
        except (IntegrityError, StaleDataError, PersistenceConflict) as exc:
            if attempt == COMMIT_ATTEMPTS:
                raise PersistenceConflict(f"Could not commit '{record.name}': {exc}") from exc
            logger.warning(f"[{record.source_name}] Commit conflict for '{record.name}', retrying: {exc}")
        except (OperationalError, InterfaceError) as exc:
            raise StoreUnavailableError(f"Database unavailable: {exc}") from exc
    raise PersistenceConflict(f"Could not commit '{record.name}'")

