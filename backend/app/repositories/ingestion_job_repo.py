"""Ingestion job repository with optimistic version checks."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.ingestion_job import IngestionJobRecord
from ingestion.core.error_record import ErrorRecord
from ingestion.core.errors import ConcurrencyConflict
from ingestion.core.ingestion_job import IngestionJob
from ingestion.core.ingestion_status import IngestionStatus
from ingestion.core.metrics import JobMetrics
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.time_common import to_utc


def _values(job: IngestionJob) -> dict[str, Any]:
    return {
        "source_id": job.source_config.source_id,
        "source_config": job.source_config.to_dict(),
        "status": job.status.value,
        "scheduled_at": job.scheduled_at,
        "executed_at": job.executed_at,
        "completed_at": job.completed_at,
        "metrics": job.metrics.to_dict(),
        "errors": [e.to_dict() for e in job.errors],
        "version": job.version,
    }


def to_domain(row: IngestionJobRecord) -> IngestionJob:
    return IngestionJob.reconstitute(
        job_id=row.job_id,
        source_config=SourceConfiguration.from_dict(row.source_config),
        status=IngestionStatus(row.status),
        scheduled_at=to_utc(row.scheduled_at),
        executed_at=to_utc(row.executed_at) if row.executed_at else None,
        completed_at=to_utc(row.completed_at) if row.completed_at else None,
        metrics=JobMetrics.from_dict(row.metrics),
        errors=[ErrorRecord.from_dict(e) for e in (row.errors or [])],
        version=row.version,
    )


class IngestionJobRepository:
    """Versioned job store. Each call runs on its own Session in a worker thread."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    async def get(self, job_id: str) -> Optional[IngestionJob]:
        return await asyncio.to_thread(self._get, job_id)

    async def save(self, job: IngestionJob, expected_version: Optional[int]) -> None:
        await asyncio.to_thread(self._save, job.job_id, _values(job), expected_version)

    async def list_by_status(self, status: IngestionStatus, *, limit: int = 100) -> list[IngestionJob]:
        stmt = (
            select(IngestionJobRecord)
            .where(IngestionJobRecord.status == status.value)
            .order_by(IngestionJobRecord.scheduled_at)
            .limit(limit)
        )
        return await asyncio.to_thread(self._list, stmt)

    async def list_recent_by_source(self, source_id: str, *, limit: int = 20) -> list[IngestionJob]:
        """Newest first."""
        stmt = (
            select(IngestionJobRecord)
            .where(IngestionJobRecord.source_id == source_id)
            .order_by(IngestionJobRecord.scheduled_at.desc())
            .limit(limit)
        )
        return await asyncio.to_thread(self._list, stmt)

    def _get(self, job_id: str) -> Optional[IngestionJob]:
        with self._session_factory() as session:
            row = session.get(IngestionJobRecord, job_id)
            return to_domain(row) if row is not None else None

    def _list(self, stmt) -> list[IngestionJob]:
        with self._session_factory() as session:
            return [to_domain(r) for r in session.scalars(stmt).all()]

    def _save(self, job_id: str, values: dict[str, Any], expected_version: Optional[int]) -> None:
        with self._session_factory() as session:
            if expected_version is None:
                session.add(IngestionJobRecord(job_id=job_id, **values))
                try:
                    session.commit()
                except IntegrityError as exc:
                    session.rollback()
                    raise ConcurrencyConflict(job_id, 0, self._current_version(session, job_id)) from exc
                return

            stmt = (
                update(IngestionJobRecord)
                .where(IngestionJobRecord.job_id == job_id)
                .where(IngestionJobRecord.version == expected_version)
                .values(**values)
            )
            result = session.execute(stmt)
            if result.rowcount != 1:
                session.rollback()
                raise ConcurrencyConflict(job_id, expected_version, self._current_version(session, job_id))
            session.commit()

    @staticmethod
    def _current_version(session: Session, job_id: str) -> Optional[int]:
        return session.scalar(select(IngestionJobRecord.version).where(IngestionJobRecord.job_id == job_id))
