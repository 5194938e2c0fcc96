"""
Job Runner.

Drives an IngestionJob through its lifecycle:
1. Schedule (PENDING)
2. Start (RUNNING), persisted with a version check
3. Collect via the source adapter, behind retry + the adapter type's circuit breaker
4. Push every collected item through the pipeline
5. Complete with aggregated metrics, or Fail with a classified ErrorRecord

Only collection is retried. Items already pushed through the pipeline are never
replayed by a retry of the same execution.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Optional

from ingestion.core.adapter import AdapterRegistry
from ingestion.core.circuit_breaker import CircuitBreakerRegistry
from ingestion.core.error_record import ErrorRecord
from ingestion.core.errors import InvalidContentItem, JobNotFound, UnsupportedSourceType
from ingestion.core.event_bus import EventPublisher
from ingestion.core.events import ContentCollected, JobCompleted, JobFailed, JobScheduled, JobStarted
from ingestion.core.ingestion_job import IngestionJob
from ingestion.core.metrics import JobMetricsCalculator
from ingestion.core.pipeline import IngestionPipeline
from ingestion.core.repositories import JobRepository
from ingestion.core.retry import RetryOptions, RetryPolicy
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.time_common import utc_now

logger = logging.getLogger("coinlens.ingestion.job_runner")

# Collection retry defaults: fewer, slower attempts than the generic policy.
COLLECT_RETRY = RetryOptions(max_attempts=3, initial_delay_ms=2000, max_delay_ms=30_000)


def breaker_name(source: SourceConfiguration) -> str:
    return f"adapter:{source.source_type.value}"


class JobRunner:
    """
    Orchestration layer for ingestion jobs.
    Every aggregate mutation is followed by a versioned save.
    """

    def __init__(
        self,
        *,
        jobs: JobRepository,
        pipeline: IngestionPipeline,
        adapters: AdapterRegistry,
        breakers: CircuitBreakerRegistry,
        publisher: EventPublisher,
        retry_policy: Optional[RetryPolicy] = None,
        credentials: Optional[Callable[[str], Optional[dict[str, Any]]]] = None,
    ):
        self.jobs = jobs
        self.pipeline = pipeline
        self.adapters = adapters
        self.breakers = breakers
        self.publisher = publisher
        self.retry_policy = retry_policy or RetryPolicy(COLLECT_RETRY)
        # Persisted jobs carry no credentials; they are looked up per execution.
        self.credentials = credentials

    async def schedule_job(
        self,
        source: SourceConfiguration,
        scheduled_at: Optional[datetime] = None,
        *,
        job_id: Optional[str] = None,
    ) -> IngestionJob:
        job = IngestionJob.create(job_id or str(uuid.uuid4()), source, scheduled_at or utc_now())
        await self.jobs.save(job, expected_version=None)
        await self.publisher.publish(
            JobScheduled(job_id=job.job_id, source_id=source.source_id, scheduled_at=job.scheduled_at)
        )
        logger.info(f"Job {job.job_id} scheduled for {source.source_id} at {job.scheduled_at.isoformat()}")
        return job

    async def execute_job(self, job_id: str) -> IngestionJob:
        job = await self._load(job_id)
        source = job.source_config

        await self._mutate(job, job.start)
        await self.publisher.publish(
            JobStarted(job_id=job.job_id, source_id=source.source_id, started_at=job.executed_at or utc_now())
        )

        try:
            collected = await self._collect(job)
            results = await self.pipeline.process_many(collected)
        except Exception as exc:  # noqa: BLE001
            return await self._fail(job, exc)

        executed_at = job.executed_at or utc_now()
        metrics = JobMetricsCalculator.aggregate(
            (r.to_metric_update() for r in results),
            duration_ms=JobMetricsCalculator.duration_between(executed_at, utc_now()),
        )
        await self._mutate(job, lambda: job.complete(metrics))
        await self.publisher.publish(
            JobCompleted(
                job_id=job.job_id,
                source_id=source.source_id,
                metrics=metrics,
                completed_at=job.completed_at or utc_now(),
            )
        )
        logger.info(
            f"Job {job.job_id} completed: {metrics.items_collected} collected, "
            f"{JobMetricsCalculator.items_persisted(metrics)} persisted, "
            f"{metrics.duplicates_detected} duplicates, {metrics.errors_encountered} errors"
        )
        return job

    async def retry_job(self, job_id: str) -> IngestionJob:
        """Re-run a failed job if its last error is transient and retries remain."""
        job = await self._load(job_id)
        if not job.can_retry():
            logger.info(f"Job {job_id} not retryable (status={job.status.value}, retries={job.total_retry_count()})")
            return job
        await self._mutate(job, job.retry)
        return await self.execute_job(job_id)

    async def _collect(self, job: IngestionJob) -> list[ContentCollected]:
        source = job.source_config
        if source.credentials is None and self.credentials is not None:
            source = replace(source, credentials=self.credentials(source.source_id))
        adapter = self.adapters.get(source.source_type)
        if adapter is None:
            raise UnsupportedSourceType(source.source_type.value, kind="adapter")
        breaker = self.breakers.get(breaker_name(source))

        async def _guarded() -> list[ContentCollected]:
            return await breaker.execute(lambda: adapter.collect(source, job.job_id))

        return await self.retry_policy.execute_or_raise(_guarded)

    async def _fail(self, job: IngestionJob, exc: BaseException) -> IngestionJob:
        if isinstance(exc, InvalidContentItem):
            logger.error(f"Job {job.job_id} aborted on invariant violation: {exc}")
        else:
            logger.warning(f"Job {job.job_id} failed: {type(exc).__name__}: {exc}")
        error = ErrorRecord.from_exception(exc)
        await self._mutate(job, lambda: job.fail(error))
        await self.publisher.publish(
            JobFailed(
                job_id=job.job_id,
                source_id=job.source_config.source_id,
                error_type=error.error_type.value,
                message=error.message,
                can_retry=job.can_retry(),
                failed_at=job.completed_at or utc_now(),
                retry_count=job.total_retry_count(),
            )
        )
        return job

    async def _load(self, job_id: str) -> IngestionJob:
        job = await self.jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    async def _mutate(self, job: IngestionJob, change) -> None:
        loaded_version = job.version
        change()
        await self.jobs.save(job, expected_version=loaded_version)
