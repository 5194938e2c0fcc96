"""ContentItem model.

One row per accepted piece of content. ``content_hash`` is unique: it is the
durable duplicate check, and a concurrent insert of the same content fails on
this constraint rather than producing a second row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import CheckConstraint, DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, JsonDocument


class ContentItemRecord(CreatedAtMixin, Base):
    __tablename__ = "content_items"

    content_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_id: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    raw_content: Mapped[str] = mapped_column(Text, nullable=False)
    normalized_content: Mapped[str] = mapped_column(Text, nullable=False)

    title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    author: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    language: Mapped[Optional[str]] = mapped_column(String(5), nullable=True)
    source_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # [{"symbol": "BTC", "confidence": 0.9}, ...]
    asset_tags: Mapped[list[Any]] = mapped_column(JsonDocument, nullable=False, default=list)

    collected_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("length(content_hash) = 64", name="ck_content_items_hash_len"),
        Index("uq_content_items_content_hash", "content_hash", unique=True),
        Index("ix_content_items_source_collected", "source_id", "collected_at"),
    )
