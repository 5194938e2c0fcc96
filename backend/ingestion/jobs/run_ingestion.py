from __future__ import annotations

"""Ingestion entry point: schedule one job per enabled source and run it.

collect -> normalize -> validate -> dedup -> persist -> announce

STRICT:
- Failure is isolated per source; partial ingestion is success.
- Structured logs only; never log raw content.
- Without DATABASE_URL the run uses in-memory repositories (dry run).

Run:
  python ingestion/jobs/run_ingestion.py
"""

import asyncio
import json
import logging
import sys
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import httpx

# Ensure `backend/` is on sys.path so `import app...` works when run from repo root.
BASE_DIR = Path(__file__).resolve().parents[2]
if str(BASE_DIR) not in sys.path:
    sys.path.insert(0, str(BASE_DIR))

from ingestion.adapters.html_strategy import HtmlParsingStrategy  # noqa: E402
from ingestion.adapters.rendering_strategy import RichRenderingStrategy  # noqa: E402
from ingestion.adapters.rss_adapter import RssAdapter  # noqa: E402
from ingestion.adapters.rss_strategy import RssParsingStrategy  # noqa: E402
from ingestion.adapters.web_adapter import WebPageAdapter  # noqa: E402
from ingestion.core.adapter import AdapterRegistry  # noqa: E402
from ingestion.core.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry  # noqa: E402
from ingestion.core.dedup import DuplicateDetectionService, Sha256HashService  # noqa: E402
from ingestion.core.event_bus import InProcessEventBus  # noqa: E402
from ingestion.core.events import ContentValidationFailed, JobCompleted, JobFailed, SourceUnhealthy  # noqa: E402
from ingestion.core.health import SourceHealthMonitor  # noqa: E402
from ingestion.core.ingestion_status import IngestionStatus  # noqa: E402
from ingestion.core.job_runner import JobRunner  # noqa: E402
from ingestion.core.js_rendering import JsRenderingDetector  # noqa: E402
from ingestion.core.network_client import NetworkClient  # noqa: E402
from ingestion.core.normalization import ContentNormalizationService  # noqa: E402
from ingestion.core.parsing import ContentParser  # noqa: E402
from ingestion.core.pipeline import IngestionPipeline  # noqa: E402
from ingestion.core.repositories import (  # noqa: E402
    ContentReadRepository,
    ContentWriteRepository,
    InMemoryContentRepository,
    InMemoryJobRepository,
    JobRepository,
)
from ingestion.core.retry import RetryOptions, RetryPolicy  # noqa: E402
from ingestion.core.settings import IngestionSettings  # noqa: E402
from ingestion.core.source_registry import SourceRegistry, load_sources_yaml  # noqa: E402
from ingestion.core.validation import ContentValidationService  # noqa: E402
from ingestion.core.value_objects import SourceType  # noqa: E402


UTC = timezone.utc
logger = logging.getLogger("coinlens.ingestion")
logger.setLevel(logging.INFO)

# Ensure logs are visible when run from a scheduler or console.
if not logging.getLogger().handlers:
    logging.basicConfig(level=logging.INFO, format="%(message)s")


def _log(event: dict) -> None:
    # Structured logs only; never log raw content.
    logger.info(json.dumps(event, ensure_ascii=False, default=str))


@dataclass
class Repositories:
    reader: ContentReadRepository
    writer: ContentWriteRepository
    jobs: JobRepository


def open_repositories(settings: IngestionSettings, stack: ExitStack) -> Repositories:
    if not settings.database_url:
        memory = InMemoryContentRepository()
        return Repositories(reader=memory, writer=memory, jobs=InMemoryJobRepository())

    from app.core.base import Base
    from app.core.db import create_db_engine, make_session_factory
    from app.repositories.content_item_repo import ContentItemReadRepository, ContentItemWriteRepository
    from app.repositories.ingestion_job_repo import IngestionJobRepository
    import app.models  # noqa: F401

    engine = create_db_engine(settings.database_url)
    stack.callback(engine.dispose)
    if engine.dialect.name == "sqlite":
        Base.metadata.create_all(engine)
    factory = make_session_factory(engine)
    return Repositories(
        reader=ContentItemReadRepository(factory),
        writer=ContentItemWriteRepository(factory),
        jobs=IngestionJobRepository(factory),
    )


def build_parser(settings: IngestionSettings, breakers: CircuitBreakerRegistry) -> ContentParser:
    rich = None
    if settings.rendering_service_url:
        rich = RichRenderingStrategy(
            settings.rendering_service_url,
            api_key=settings.rendering_api_key,
            breaker=breakers.get("rendering"),
        )
    return ContentParser(
        HtmlParsingStrategy(),
        RssParsingStrategy(),
        rich_strategy=rich,
        js_detector=JsRenderingDetector(),
    )


def build_runner(
    settings: IngestionSettings,
    *,
    client: NetworkClient,
    repos: Repositories,
    bus: InProcessEventBus,
    registry: Optional[SourceRegistry] = None,
) -> JobRunner:
    breakers = CircuitBreakerRegistry(
        CircuitBreakerConfig(
            failure_threshold=settings.breaker_failure_threshold,
            failure_window_ms=settings.breaker_failure_window_ms,
            reset_timeout_ms=settings.breaker_reset_timeout_ms,
            success_threshold=settings.breaker_success_threshold,
        )
    )
    pipeline = IngestionPipeline(
        normalizer=ContentNormalizationService(),
        validator=ContentValidationService(),
        dedup=DuplicateDetectionService(Sha256HashService()),
        reader=repos.reader,
        writer=repos.writer,
        publisher=bus,
        parser=build_parser(settings, breakers),
        concurrency=settings.pipeline_concurrency,
    )
    adapters = AdapterRegistry(
        [
            RssAdapter(client),
            WebPageAdapter(client),
            WebPageAdapter(client, source_type=SourceType.WIKIPEDIA),
        ]
    )
    retry = RetryPolicy(
        RetryOptions(
            max_attempts=settings.retry_max_attempts,
            initial_delay_ms=settings.retry_initial_delay_ms,
            max_delay_ms=settings.retry_max_delay_ms,
        )
    )

    def _credentials(source_id: str) -> Optional[dict[str, Any]]:
        source = registry.get(source_id) if registry is not None else None
        return source.credentials if source is not None else None

    return JobRunner(
        jobs=repos.jobs,
        pipeline=pipeline,
        adapters=adapters,
        breakers=breakers,
        publisher=bus,
        retry_policy=retry,
        credentials=_credentials,
    )


def _subscribe_logging(bus: InProcessEventBus) -> None:
    bus.subscribe(
        ContentValidationFailed,
        lambda ev: _log(
            {"event": "content_validation_failed", "job_id": ev.job_id, "source_id": ev.source_id, "errors": ev.errors}
        ),
    )
    bus.subscribe(
        JobFailed,
        lambda ev: _log(
            {
                "event": "ingestion_job_failed",
                "job_id": ev.job_id,
                "source_id": ev.source_id,
                "error_type": ev.error_type,
                "can_retry": ev.can_retry,
                "retry_count": ev.retry_count,
            }
        ),
    )
    bus.subscribe(
        JobCompleted,
        lambda ev: _log({"event": "ingestion_job_completed", "job_id": ev.job_id, **ev.metrics.to_dict()}),
    )
    bus.subscribe(
        SourceUnhealthy,
        lambda ev: _log(
            {
                "event": "source_unhealthy",
                "source_id": ev.source_id,
                "consecutive_failures": ev.consecutive_failures,
                "success_rate": round(ev.success_rate, 1),
            }
        ),
    )


async def run(
    settings: IngestionSettings,
    registry: SourceRegistry,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> dict[str, int]:
    started_at = datetime.now(tz=UTC).isoformat()
    run_totals = {"sources": 0, "skipped": 0, "collected": 0, "duplicates": 0, "errors": 0, "failed_jobs": 0}

    with ExitStack() as stack:
        repos = open_repositories(settings, stack)
        bus = InProcessEventBus()
        _subscribe_logging(bus)
        health = SourceHealthMonitor()
        for registered in registry.sources:
            source_id = registered.config.source_id
            health.seed(await repos.jobs.list_recent_by_source(source_id, limit=settings.health_history_jobs))
        health.attach(bus)

        sources = registry.enabled_sources(health if settings.skip_unhealthy_sources else None)
        for skipped in registry.enabled_sources():
            if skipped not in sources:
                h = health.get(skipped.source_id)
                run_totals["skipped"] += 1
                _log(
                    {
                        "event": "ingestion_source_skipped",
                        "source_id": skipped.source_id,
                        "reason": "unhealthy",
                        "consecutive_failures": h.consecutive_failures,
                        "success_rate": round(h.success_rate, 1),
                    }
                )

        async with NetworkClient(timeout=settings.http_timeout_seconds, transport=transport) as client:
            runner = build_runner(settings, client=client, repos=repos, bus=bus, registry=registry)

            for source in sources:
                run_totals["sources"] += 1
                try:
                    job = await runner.schedule_job(source)
                    job = await runner.execute_job(job.job_id)
                except Exception as exc:  # noqa: BLE001
                    run_totals["failed_jobs"] += 1
                    _log(
                        {
                            "event": "ingestion_source_error",
                            "source_id": source.source_id,
                            "error": f"{type(exc).__name__}: {exc}",
                        }
                    )
                    continue

                m = job.metrics
                run_totals["collected"] += m.items_collected
                run_totals["duplicates"] += m.duplicates_detected
                run_totals["errors"] += m.errors_encountered
                if job.status == IngestionStatus.FAILED:
                    run_totals["failed_jobs"] += 1

                _log(
                    {
                        "event": "ingestion_source_summary",
                        "started_at": started_at,
                        "source_id": source.source_id,
                        "source_name": source.name,
                        "source_type": source.source_type.value,
                        "job_id": job.job_id,
                        "status": job.status.value,
                        "collected_count": m.items_collected,
                        "duplicate_count": m.duplicates_detected,
                        "error_count": m.errors_encountered,
                        "duration_ms": m.duration_ms,
                    }
                )

            for stats in runner.breakers.all_stats():
                if stats.state.value != "closed":
                    _log({"event": "circuit_breaker_state", **stats.model_dump(mode="json")})

    _log({"event": "ingestion_run_summary", "started_at": started_at, **run_totals})
    return run_totals


def main() -> int:
    settings = IngestionSettings.from_env()
    try:
        registry = load_sources_yaml(settings.sources_yaml)
    except (OSError, ValueError) as exc:
        _log({"event": "ingestion_config_error", "path": str(settings.sources_yaml), "error": str(exc)})
        return 2

    asyncio.run(run(settings, registry))
    # Partial ingestion is success. Only fail if the registry cannot be loaded.
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
