"""
Source health.

Tracks how each source's jobs end and decides whether the source is still fit
to be scheduled.

Rules:
- A completed job is a success; it resets the failure streak.
- A failed job (every failed execution, retries included) is a failure.
- Unhealthy: 3+ consecutive failures, or a success rate below 50% once at
  least 5 jobs have finished.
- Unhealthy sources are skipped by the registry until they recover or the
  operator forces them back on.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field

from ingestion.core.event_bus import EventPublisher, InProcessEventBus
from ingestion.core.events import JobCompleted, JobFailed, SourceUnhealthy
from ingestion.core.ingestion_job import IngestionJob
from ingestion.core.ingestion_status import IngestionStatus
from ingestion.core.time_common import utc_now

logger = logging.getLogger("coinlens.ingestion.health")


class HealthThresholds(BaseModel):
    max_consecutive_failures: int = Field(default=3, ge=1)
    min_success_rate: float = Field(default=50.0, ge=0.0, le=100.0)
    min_jobs_for_rate: int = Field(default=5, ge=1)

    model_config = ConfigDict(frozen=True)


class SourceHealth(BaseModel):
    """Point-in-time health of one source."""

    source_id: str
    consecutive_failures: int = Field(default=0, ge=0)
    total_jobs: int = Field(default=0, ge=0)
    successful_jobs: int = Field(default=0, ge=0)
    last_success_at: Optional[datetime] = None
    last_failure_at: Optional[datetime] = None
    last_error_type: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def success_rate(self) -> float:
        """Percentage of finished jobs that completed (100.0 before any job)."""
        if self.total_jobs == 0:
            return 100.0
        return self.successful_jobs / self.total_jobs * 100.0

    def is_unhealthy(self, thresholds: Optional[HealthThresholds] = None) -> bool:
        t = thresholds or HealthThresholds()
        if self.consecutive_failures >= t.max_consecutive_failures:
            return True
        return self.total_jobs >= t.min_jobs_for_rate and self.success_rate < t.min_success_rate

    def record_success(self, at: Optional[datetime] = None) -> "SourceHealth":
        return self.model_copy(
            update={
                "consecutive_failures": 0,
                "total_jobs": self.total_jobs + 1,
                "successful_jobs": self.successful_jobs + 1,
                "last_success_at": at or utc_now(),
            }
        )

    def record_failure(self, at: Optional[datetime] = None, error_type: Optional[str] = None) -> "SourceHealth":
        return self.model_copy(
            update={
                "consecutive_failures": self.consecutive_failures + 1,
                "total_jobs": self.total_jobs + 1,
                "last_failure_at": at or utc_now(),
                "last_error_type": error_type,
            }
        )


class SourceHealthMonitor:
    """
    Per-source health for the lifetime of the process.

    Fed by JobCompleted / JobFailed. Publishes SourceUnhealthy once, on the
    transition from healthy to unhealthy.
    """

    def __init__(
        self,
        thresholds: Optional[HealthThresholds] = None,
        *,
        publisher: Optional[EventPublisher] = None,
    ):
        self.thresholds = thresholds or HealthThresholds()
        self._publisher = publisher
        self._lock = threading.Lock()
        self._health: dict[str, SourceHealth] = {}

    def attach(self, bus: InProcessEventBus) -> None:
        """Subscribe to job outcomes and announce transitions on the same bus."""
        self._publisher = bus
        bus.subscribe(JobCompleted, self.on_job_completed)
        bus.subscribe(JobFailed, self.on_job_failed)

    def get(self, source_id: str) -> SourceHealth:
        with self._lock:
            return self._health.get(source_id) or SourceHealth(source_id=source_id)

    def is_unhealthy(self, source_id: str) -> bool:
        return self.get(source_id).is_unhealthy(self.thresholds)

    def snapshot(self) -> list[SourceHealth]:
        with self._lock:
            return [self._health[k] for k in sorted(self._health)]

    def seed(self, jobs: Iterable[IngestionJob]) -> None:
        """Replay finished jobs (any order) without publishing events."""
        finished = [j for j in jobs if j.status in (IngestionStatus.COMPLETED, IngestionStatus.FAILED)]
        for job in sorted(finished, key=lambda j: j.completed_at or j.scheduled_at):
            at = job.completed_at or job.scheduled_at
            if job.status == IngestionStatus.COMPLETED:
                self._apply(job.source_config.source_id, lambda h: h.record_success(at))
            else:
                last = job.last_error()
                error_type = last.error_type.value if last is not None else None
                self._apply(job.source_config.source_id, lambda h: h.record_failure(at, error_type))

    async def on_job_completed(self, event: JobCompleted) -> None:
        self._apply(event.source_id, lambda h: h.record_success(event.completed_at))

    async def on_job_failed(self, event: JobFailed) -> None:
        before, after = self._apply(
            event.source_id, lambda h: h.record_failure(event.failed_at, event.error_type)
        )
        if after.is_unhealthy(self.thresholds) and not before.is_unhealthy(self.thresholds):
            logger.warning(
                f"Source {event.source_id} is unhealthy: "
                f"{after.consecutive_failures} consecutive failures, success rate {after.success_rate:.1f}%"
            )
            if self._publisher is not None:
                await self._publisher.publish(
                    SourceUnhealthy(
                        source_id=event.source_id,
                        consecutive_failures=after.consecutive_failures,
                        success_rate=after.success_rate,
                        detected_at=event.failed_at,
                    )
                )

    def _apply(self, source_id: str, change) -> tuple[SourceHealth, SourceHealth]:
        with self._lock:
            before = self._health.get(source_id) or SourceHealth(source_id=source_id)
            after = change(before)
            self._health[source_id] = after
        return before, after
