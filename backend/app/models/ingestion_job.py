"""IngestionJob model.

``version`` mirrors the aggregate's optimistic-concurrency counter. Writers
update with ``WHERE version = :expected`` and treat zero affected rows as a
conflict.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.base import Base, CreatedAtMixin, JsonDocument, UpdatedAtMixin


class IngestionJobRecord(CreatedAtMixin, UpdatedAtMixin, Base):
    __tablename__ = "ingestion_jobs"

    job_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    source_id: Mapped[str] = mapped_column(Text, nullable=False)
    # Credentials are never stored here.
    source_config: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    metrics: Mapped[dict[str, Any]] = mapped_column(JsonDocument, nullable=False, default=dict)
    errors: Mapped[list[Any]] = mapped_column(JsonDocument, nullable=False, default=list)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("ix_ingestion_jobs_status_scheduled", "status", "scheduled_at"),
    )
