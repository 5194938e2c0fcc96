from __future__ import annotations

"""ContentItem aggregate.

A ContentItem is the unit the pipeline persists: normalized text, its hash, its
metadata and the assets it mentions. Construction checks every invariant and
reports all violations at once so a rejected item can be diagnosed in one pass.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional

from ingestion.core.errors import InvalidContentItem
from ingestion.core.time_common import to_utc, utc_now
from ingestion.core.value_objects import AssetTag, ContentHash, ContentMetadata


MIN_NORMALIZED_LENGTH = 10


@dataclass(eq=False)
class ContentItem:
    content_id: str
    source_id: str
    content_hash: ContentHash
    raw_content: str
    normalized_content: str
    metadata: ContentMetadata
    collected_at: datetime
    _asset_tags: dict[str, AssetTag] = field(default_factory=dict, repr=False)

    @classmethod
    def create(
        cls,
        *,
        content_id: str,
        source_id: str,
        content_hash: Optional[ContentHash],
        raw_content: str,
        normalized_content: str,
        metadata: ContentMetadata,
        collected_at: datetime,
        asset_tags: Iterable[AssetTag] = (),
    ) -> "ContentItem":
        errors: list[str] = []
        if not (content_id or "").strip():
            errors.append("Content id cannot be empty")
        if not (source_id or "").strip():
            errors.append("Source id cannot be empty")
        if content_hash is None:
            errors.append("Content hash is required")
        if len((normalized_content or "").strip()) < MIN_NORMALIZED_LENGTH:
            errors.append(
                f"Normalized content must be at least {MIN_NORMALIZED_LENGTH} characters"
            )
        if metadata is None or not metadata.has_required_fields():
            errors.append("Metadata must include a title or a source URL")
        if collected_at is None:
            errors.append("Collection time is required")
        elif to_utc(collected_at) > utc_now():
            errors.append("Collection time cannot be in the future")

        if errors:
            raise InvalidContentItem(errors)

        item = cls(
            content_id=content_id,
            source_id=source_id,
            content_hash=content_hash,
            raw_content=raw_content,
            normalized_content=normalized_content,
            metadata=metadata,
            collected_at=to_utc(collected_at),
        )
        for tag in asset_tags:
            item.add_asset_tag(tag)
        return item

    @classmethod
    def reconstitute(
        cls,
        *,
        content_id: str,
        source_id: str,
        content_hash: ContentHash,
        raw_content: str,
        normalized_content: str,
        metadata: ContentMetadata,
        collected_at: datetime,
        asset_tags: Iterable[AssetTag] = (),
    ) -> "ContentItem":
        """Rebuild from storage without re-running construction checks."""
        return cls(
            content_id=content_id,
            source_id=source_id,
            content_hash=content_hash,
            raw_content=raw_content,
            normalized_content=normalized_content,
            metadata=metadata,
            collected_at=collected_at,
            _asset_tags={t.symbol: t for t in asset_tags},
        )

    @property
    def asset_tags(self) -> list[AssetTag]:
        return list(self._asset_tags.values())

    def add_asset_tag(self, tag: AssetTag) -> None:
        # First tag per symbol wins.
        self._asset_tags.setdefault(tag.symbol, tag)

    def remove_asset_tag(self, symbol: str) -> None:
        self._asset_tags.pop((symbol or "").upper(), None)

    def has_asset_tag(self, symbol: str) -> bool:
        return (symbol or "").upper() in self._asset_tags

    def high_confidence_tags(self) -> list[AssetTag]:
        return [t for t in self._asset_tags.values() if t.is_high_confidence()]

    def is_duplicate(self, other_hash: ContentHash) -> bool:
        return self.content_hash == other_hash

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ContentItem):
            return NotImplemented
        return self.content_id == other.content_id

    def __hash__(self) -> int:
        return hash(self.content_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content_id": self.content_id,
            "source_id": self.source_id,
            "content_hash": str(self.content_hash),
            "normalized_content": self.normalized_content,
            "metadata": self.metadata.to_dict(),
            "asset_tags": [t.to_dict() for t in self.asset_tags],
            "collected_at": self.collected_at.isoformat(),
        }
