from __future__ import annotations

"""IngestionJob aggregate.

The job is a small state machine (see ``IngestionStatus``) with an explicit
integer ``version``. Every state-changing call bumps the version; repositories
compare it on save and reject writers holding a stale copy.

The aggregate is not shared across threads: load it, mutate it, save it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from ingestion.core.error_record import DEFAULT_MAX_RETRIES, ErrorRecord, ErrorType
from ingestion.core.errors import InvalidSourceConfiguration, InvalidStateTransition
from ingestion.core.ingestion_status import IngestionStatus
from ingestion.core.metrics import JobMetrics
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.time_common import elapsed_ms, to_utc, utc_now


@dataclass(eq=False)
class IngestionJob:
    job_id: str
    source_config: SourceConfiguration
    status: IngestionStatus
    scheduled_at: datetime
    executed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    metrics: JobMetrics = field(default_factory=JobMetrics.empty)
    errors: list[ErrorRecord] = field(default_factory=list)
    version: int = 0

    @classmethod
    def create(cls, job_id: str, source_config: SourceConfiguration, scheduled_at: datetime) -> "IngestionJob":
        validation = source_config.validate_config()
        if not validation.is_valid:
            raise InvalidSourceConfiguration(validation.errors)
        return cls(
            job_id=job_id,
            source_config=source_config,
            status=IngestionStatus.PENDING,
            scheduled_at=to_utc(scheduled_at),
        )

    @classmethod
    def reconstitute(
        cls,
        *,
        job_id: str,
        source_config: SourceConfiguration,
        status: IngestionStatus,
        scheduled_at: datetime,
        executed_at: Optional[datetime],
        completed_at: Optional[datetime],
        metrics: JobMetrics,
        errors: list[ErrorRecord],
        version: int,
    ) -> "IngestionJob":
        return cls(
            job_id=job_id,
            source_config=source_config,
            status=status,
            scheduled_at=scheduled_at,
            executed_at=executed_at,
            completed_at=completed_at,
            metrics=metrics,
            errors=list(errors),
            version=version,
        )

    # -- transitions ---------------------------------------------------------

    def _transition(self, target: IngestionStatus, action: Optional[str] = None) -> None:
        if not self.status.can_transition_to(target):
            raise InvalidStateTransition(self.status.value, target.value, action)
        self.status = target
        self.version += 1

    def transition_to(self, target: IngestionStatus) -> None:
        """Move to ``target`` if the transition table allows it."""
        self._transition(target)

    def start(self) -> None:
        self._transition(IngestionStatus.RUNNING, "start")
        self.executed_at = utc_now()

    def complete(self, metrics: JobMetrics) -> None:
        self._transition(IngestionStatus.COMPLETED, "complete")
        self.metrics = metrics
        self.completed_at = utc_now()

    def fail(self, error: ErrorRecord) -> None:
        self._transition(IngestionStatus.FAILED, "fail")
        self.errors.append(error)
        self.completed_at = utc_now()

    def retry(self) -> None:
        """FAILED -> RETRYING; counts one retry against the most recent error."""
        if self.status != IngestionStatus.FAILED:
            raise InvalidStateTransition(self.status.value, IngestionStatus.RETRYING.value, "retry")
        self._transition(IngestionStatus.RETRYING, "retry")
        if self.errors:
            self.errors[-1] = self.errors[-1].with_incremented_retry()
        self.completed_at = None

    def reschedule(self, scheduled_at: datetime) -> None:
        """FAILED -> PENDING with a new schedule time."""
        self._transition(IngestionStatus.PENDING, "reschedule")
        self.scheduled_at = to_utc(scheduled_at)
        self.executed_at = None
        self.completed_at = None

    def add_error(self, error: ErrorRecord) -> None:
        self.errors.append(error)
        self.version += 1

    def record_metrics(self, metrics: JobMetrics) -> None:
        self.metrics = metrics
        self.version += 1

    # -- queries -------------------------------------------------------------

    def total_retry_count(self) -> int:
        return sum(e.retry_count for e in self.errors)

    def can_retry(self, max_retries: int = DEFAULT_MAX_RETRIES) -> bool:
        if self.status not in (IngestionStatus.FAILED, IngestionStatus.RETRYING):
            return False
        last = self.last_error()
        if last is None or not last.is_retryable():
            return False
        return self.total_retry_count() < max_retries

    def is_overdue(self, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        return self.status == IngestionStatus.PENDING and self.scheduled_at < now

    def duration_ms(self) -> Optional[int]:
        if self.executed_at is None:
            return None
        return elapsed_ms(self.executed_at, self.completed_at or utc_now())

    def last_error(self) -> Optional[ErrorRecord]:
        return self.errors[-1] if self.errors else None

    def errors_by_type(self, error_type: ErrorType) -> list[ErrorRecord]:
        return [e for e in self.errors if e.error_type == error_type]

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, IngestionJob):
            return NotImplemented
        return self.job_id == other.job_id

    def __hash__(self) -> int:
        return hash(self.job_id)
