"""Raw content store: fetched page bodies, deduplicated by content hash.

Page bodies are immutable. A page whose normalized body hashes to the same
value as the latest stored row for (source, url) is reported unchanged, and
the extraction stage can be skipped, only once that row has been extracted.
A stored body that was never extracted is reported pending.
"""

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from boothbeacon.models.base import utcnow
from boothbeacon.models.raw_content import RawContent
from boothbeacon.records import FetchedPage

logger = logging.getLogger(__name__)

UNCHANGED = "unchanged"
PENDING = "pending"
STORED = "stored"


@dataclass
class PutResult:
    status: str
    content_hash: str
    raw_content_id: uuid.UUID

    @property
    def unchanged(self) -> bool:
        return self.status == UNCHANGED


async def latest_for_url(db: AsyncSession, source_id: uuid.UUID, url: str) -> RawContent | None:
    result = await db.execute(
        select(RawContent)
        .where(RawContent.source_id == source_id, RawContent.url == url)
        .order_by(RawContent.fetched_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def put(db: AsyncSession, source_id: uuid.UUID, page: FetchedPage) -> PutResult:
    """Store page unless its content matches the latest row for (source, url).

    The caller owns the transaction.
    """
    digest = page.content_hash
    latest = await latest_for_url(db, source_id, page.url)
    if latest is not None and latest.content_hash == digest:
        status = UNCHANGED if latest.extracted_at is not None else PENDING
        return PutResult(status=status, content_hash=digest, raw_content_id=latest.id)

    # Content reverted to an earlier version: make that row the latest again
    result = await db.execute(
        select(RawContent).where(
            RawContent.source_id == source_id,
            RawContent.url == page.url,
            RawContent.content_hash == digest,
        )
    )
    previous = result.scalar_one_or_none()
    if previous is not None:
        previous.fetched_at = utcnow()
        await db.flush()
        logger.info(f"Content for {page.url} reverted to {digest[:12]}")
        return PutResult(status=STORED, content_hash=digest, raw_content_id=previous.id)

    row = RawContent(
        id=uuid.uuid4(),
        source_id=source_id,
        url=page.url,
        content_hash=digest,
        markdown=page.markdown or None,
        html=page.html or None,
        status_code=page.status_code,
        size_bytes=len(page.body.encode("utf-8")),
        fetched_at=utcnow(),
    )
    db.add(row)
    await db.flush()
    return PutResult(status=STORED, content_hash=digest, raw_content_id=row.id)


async def latest_for_source(db: AsyncSession, source_id: uuid.UUID) -> list[RawContent]:
    """Newest stored row per URL for a source."""
    newest = (
        select(RawContent.url, func.max(RawContent.fetched_at).label("fetched_at"))
        .where(RawContent.source_id == source_id)
        .group_by(RawContent.url)
        .subquery()
    )
    result = await db.execute(
        select(RawContent)
        .join(
            newest,
            (RawContent.url == newest.c.url) & (RawContent.fetched_at == newest.c.fetched_at),
        )
        .where(RawContent.source_id == source_id)
        .order_by(RawContent.url)
    )
    return list(result.scalars().all())


def as_page(row: RawContent) -> FetchedPage:
    return FetchedPage(url=row.url, markdown=row.markdown or "", html=row.html or "", status_code=row.status_code)


async def mark_extracted(db: AsyncSession, raw_content_ids: list[uuid.UUID]) -> None:
    """Record that these rows went through extraction; later identical fetches are unchanged."""
    if not raw_content_ids:
        return
    await db.execute(
        update(RawContent).where(RawContent.id.in_(raw_content_ids)).values(extracted_at=utcnow())
    )
