from __future__ import annotations

"""Repository contracts plus in-memory implementations.

Reads and writes go through separate interfaces. The durable SQLAlchemy
versions live in ``app.repositories``; the in-memory ones here back tests and
dry runs, and follow the same conflict rules.
"""

import copy
import threading
from typing import Optional, Protocol

from ingestion.core.content_item import ContentItem
from ingestion.core.errors import ConcurrencyConflict, ContentHashConflict
from ingestion.core.ingestion_job import IngestionJob
from ingestion.core.ingestion_status import IngestionStatus
from ingestion.core.value_objects import ContentHash


class ContentReadRepository(Protocol):
    async def find_by_hash(self, content_hash: ContentHash) -> Optional[ContentItem]:
        ...

    async def find_by_id(self, content_id: str) -> Optional[ContentItem]:
        ...


class ContentWriteRepository(Protocol):
    async def save(self, item: ContentItem) -> None:
        """Persist a new item. Raises ContentHashConflict if the hash is taken."""
        ...


class JobRepository(Protocol):
    async def get(self, job_id: str) -> Optional[IngestionJob]:
        ...

    async def save(self, job: IngestionJob, expected_version: Optional[int]) -> None:
        """Insert (expected_version=None) or compare-and-swap on version."""
        ...

    async def list_recent_by_source(self, source_id: str, *, limit: int = 20) -> list[IngestionJob]:
        """Newest first, by scheduled time."""
        ...


class InMemoryContentRepository:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_id: dict[str, ContentItem] = {}
        self._by_hash: dict[str, str] = {}

    async def find_by_hash(self, content_hash: ContentHash) -> Optional[ContentItem]:
        content_id = self._by_hash.get(content_hash.value)
        return self._by_id.get(content_id) if content_id else None

    async def find_by_id(self, content_id: str) -> Optional[ContentItem]:
        return self._by_id.get(content_id)

    async def save(self, item: ContentItem) -> None:
        with self._lock:
            existing = self._by_hash.get(item.content_hash.value)
            if existing is not None and existing != item.content_id:
                raise ContentHashConflict(item.content_hash.value)
            self._by_id[item.content_id] = item
            self._by_hash[item.content_hash.value] = item.content_id

    def __len__(self) -> int:
        return len(self._by_id)


class InMemoryJobRepository:
    """Stores copies so that callers holding stale aggregates cannot leak writes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._jobs: dict[str, IngestionJob] = {}

    async def get(self, job_id: str) -> Optional[IngestionJob]:
        job = self._jobs.get(job_id)
        return copy.deepcopy(job) if job is not None else None

    async def save(self, job: IngestionJob, expected_version: Optional[int]) -> None:
        with self._lock:
            stored = self._jobs.get(job.job_id)
            if expected_version is None:
                if stored is not None:
                    raise ConcurrencyConflict(job.job_id, 0, stored.version)
            else:
                actual = stored.version if stored is not None else None
                if actual != expected_version:
                    raise ConcurrencyConflict(job.job_id, expected_version, actual)
            self._jobs[job.job_id] = copy.deepcopy(job)

    async def list_by_status(self, status: IngestionStatus, *, limit: int = 100) -> list[IngestionJob]:
        matching = sorted(
            (j for j in self._jobs.values() if j.status == status),
            key=lambda j: j.scheduled_at,
        )
        return [copy.deepcopy(j) for j in matching[:limit]]

    async def list_recent_by_source(self, source_id: str, *, limit: int = 20) -> list[IngestionJob]:
        matching = sorted(
            (j for j in self._jobs.values() if j.source_config.source_id == source_id),
            key=lambda j: j.scheduled_at,
            reverse=True,
        )
        return [copy.deepcopy(j) for j in matching[:limit]]
