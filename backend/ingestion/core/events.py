from __future__ import annotations

"""Pipeline facts.

Events are immutable and carry the state their consumers need, so a handler
never has to reload the aggregate that produced them.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from ingestion.core.metrics import JobMetrics
from ingestion.core.time_common import utc_now
from ingestion.core.value_objects import AssetTag, ContentMetadata, SourceType


MAX_FAILED_CONTENT_PREVIEW = 200


def _event_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True, slots=True)
class ContentCollected:
    """Emitted by a source adapter for each raw item it fetched."""

    source_id: str
    job_id: str
    raw_content: str
    source_type: SourceType
    collected_at: datetime
    metadata: ContentMetadata = field(default_factory=ContentMetadata.empty)
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True, slots=True)
class ContentValidationFailed:
    job_id: str
    source_id: str
    content: str
    errors: list[str]
    timestamp: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=_event_id)

    @classmethod
    def for_content(cls, *, job_id: str, source_id: str, content: str, errors: list[str]) -> "ContentValidationFailed":
        return cls(
            job_id=job_id,
            source_id=source_id,
            content=(content or "")[:MAX_FAILED_CONTENT_PREVIEW],
            errors=list(errors),
        )


@dataclass(frozen=True, slots=True)
class ContentIngested:
    content_id: str
    source_id: str
    job_id: str
    content_hash: str
    normalized_content: str
    metadata: ContentMetadata
    asset_tags: tuple[AssetTag, ...]
    collected_at: datetime
    occurred_at: datetime = field(default_factory=utc_now)
    event_id: str = field(default_factory=_event_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": "content_ingested",
            "event_id": self.event_id,
            "content_id": self.content_id,
            "source_id": self.source_id,
            "job_id": self.job_id,
            "content_hash": self.content_hash,
            "metadata": self.metadata.to_dict(),
            "asset_tags": [t.to_dict() for t in self.asset_tags],
            "collected_at": self.collected_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class JobScheduled:
    job_id: str
    source_id: str
    scheduled_at: datetime
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True, slots=True)
class JobStarted:
    job_id: str
    source_id: str
    started_at: datetime
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True, slots=True)
class JobCompleted:
    job_id: str
    source_id: str
    metrics: JobMetrics
    completed_at: datetime
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True, slots=True)
class JobFailed:
    job_id: str
    source_id: str
    error_type: str
    message: str
    can_retry: bool
    failed_at: datetime
    retry_count: Optional[int] = None
    event_id: str = field(default_factory=_event_id)


@dataclass(frozen=True, slots=True)
class SourceUnhealthy:
    """A source crossed a health threshold; it is skipped until it recovers or is forced."""

    source_id: str
    consecutive_failures: int
    success_rate: float
    detected_at: datetime
    event_id: str = field(default_factory=_event_id)
