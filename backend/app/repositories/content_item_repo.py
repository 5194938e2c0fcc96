"""Content item repositories (read side and write side)."""

from __future__ import annotations

import asyncio
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.content_item import ContentItemRecord
from app.repositories.base import BaseRepository
from ingestion.core.content_item import ContentItem
from ingestion.core.errors import ContentHashConflict
from ingestion.core.time_common import to_utc
from ingestion.core.value_objects import AssetTag, ContentHash, ContentMetadata


def to_record(item: ContentItem) -> ContentItemRecord:
    meta = item.metadata
    return ContentItemRecord(
        content_id=item.content_id,
        source_id=item.source_id,
        content_hash=item.content_hash.value,
        raw_content=item.raw_content,
        normalized_content=item.normalized_content,
        title=meta.title,
        author=meta.author,
        published_at=meta.published_at,
        language=meta.language,
        source_url=meta.source_url,
        asset_tags=[t.to_dict() for t in item.asset_tags],
        collected_at=item.collected_at,
    )


def to_domain(row: ContentItemRecord) -> ContentItem:
    return ContentItem.reconstitute(
        content_id=row.content_id,
        source_id=row.source_id,
        content_hash=ContentHash.create(row.content_hash),
        raw_content=row.raw_content,
        normalized_content=row.normalized_content,
        metadata=ContentMetadata(
            title=row.title,
            author=row.author,
            published_at=to_utc(row.published_at) if row.published_at else None,
            language=row.language,
            source_url=row.source_url,
        ),
        collected_at=to_utc(row.collected_at),
        asset_tags=[AssetTag.create(t["symbol"], t["confidence"]) for t in (row.asset_tags or [])],
    )


class ContentItemReadRepository(BaseRepository[ContentItemRecord]):
    """Read-only lookups used by the dedup stage and by queries."""

    async def find_by_hash(self, content_hash: ContentHash) -> Optional[ContentItem]:
        row = await self._first(select(ContentItemRecord).where(ContentItemRecord.content_hash == content_hash.value))
        return to_domain(row) if row is not None else None

    async def find_by_id(self, content_id: str) -> Optional[ContentItem]:
        row = await self._first(select(ContentItemRecord).where(ContentItemRecord.content_id == content_id))
        return to_domain(row) if row is not None else None

    async def list_by_source(self, source_id: str, *, limit: int = 100) -> list[ContentItem]:
        stmt = (
            select(ContentItemRecord)
            .where(ContentItemRecord.source_id == source_id)
            .order_by(ContentItemRecord.collected_at.desc())
            .limit(limit)
        )
        return [to_domain(r) for r in await self._all(stmt)]


class ContentItemWriteRepository:
    """Inserts one item per transaction; the unique hash index arbitrates races."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def save(self, item: ContentItem) -> None:
        await asyncio.to_thread(self._save, to_record(item))

    def _save(self, record: ContentItemRecord) -> None:
        with self._session_factory() as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise ContentHashConflict(record.content_hash) from exc
