from __future__ import annotations

"""Content ingestion pipeline.

Fixed chain per collected item:
  normalize -> validate -> deduplicate -> persist -> announce

Items are independent and may run concurrently; stages within an item run in
order. Infrastructure failures are logged and turned into an ERROR outcome for
that item only. Aggregate invariant violations (a ContentItem that cannot be
built after validation passed) are raised to the caller.

Do not log raw content. Hashes and ids are safe for ops.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from ingestion.core.content_item import ContentItem
from ingestion.core.dedup import DuplicateDetectionService
from ingestion.core.errors import ContentHashConflict, InvalidContentItem, InvalidValueError
from ingestion.core.event_bus import EventPublisher
from ingestion.core.events import ContentCollected, ContentIngested, ContentValidationFailed
from ingestion.core.metrics import MetricUpdate
from ingestion.core.normalization import ContentNormalizationService
from ingestion.core.parsing import ContentParser
from ingestion.core.repositories import ContentReadRepository, ContentWriteRepository
from ingestion.core.validation import ContentValidationService
from ingestion.core.value_objects import ContentHash, ContentMetadata

logger = logging.getLogger("coinlens.ingestion.pipeline")

DEFAULT_CONCURRENCY = 8


class IngestOutcome(str, Enum):
    INGESTED = "ingested"
    DUPLICATE = "duplicate"
    VALIDATION_FAILED = "validation_failed"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class PipelineResult:
    outcome: IngestOutcome
    source_id: str
    job_id: str
    bytes_processed: int = 0
    content_id: Optional[str] = None
    content_hash: Optional[str] = None
    errors: tuple[str, ...] = ()

    def to_metric_update(self) -> MetricUpdate:
        return MetricUpdate(
            items_collected=1,
            duplicates_detected=1 if self.outcome == IngestOutcome.DUPLICATE else 0,
            errors_encountered=1
            if self.outcome in (IngestOutcome.VALIDATION_FAILED, IngestOutcome.ERROR)
            else 0,
            bytes_processed=self.bytes_processed,
        )


@dataclass(frozen=True, slots=True)
class NormalizedContent:
    text: str
    metadata: ContentMetadata


def _new_content_id() -> str:
    return str(uuid.uuid4())


class IngestionPipeline:
    def __init__(
        self,
        *,
        normalizer: ContentNormalizationService,
        validator: ContentValidationService,
        dedup: DuplicateDetectionService,
        reader: ContentReadRepository,
        writer: ContentWriteRepository,
        publisher: EventPublisher,
        parser: Optional[ContentParser] = None,
        id_factory: Callable[[], str] = _new_content_id,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self._normalizer = normalizer
        self._validator = validator
        self._dedup = dedup
        self._reader = reader
        self._writer = writer
        self._publisher = publisher
        self._parser = parser
        self._id_factory = id_factory
        self._concurrency = max(1, concurrency)
        # Hashes claimed by an item of this process that has not finished saving.
        self._in_flight: set[str] = set()

    # -- entry points --------------------------------------------------------

    async def handle(self, event: ContentCollected) -> None:
        """Event-bus subscriber: never raises."""
        try:
            await self.process(event)
        except Exception:  # noqa: BLE001
            logger.exception("Pipeline failed for job=%s source=%s", event.job_id, event.source_id)

    async def process(self, event: ContentCollected) -> PipelineResult:
        size = len((event.raw_content or "").encode("utf-8"))
        try:
            return await self._run_stages(event, size)
        except InvalidContentItem:
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception(
                "Pipeline stage error job=%s source=%s event=%s",
                event.job_id,
                event.source_id,
                event.event_id,
            )
            return PipelineResult(
                outcome=IngestOutcome.ERROR,
                source_id=event.source_id,
                job_id=event.job_id,
                bytes_processed=size,
                errors=(f"{type(exc).__name__}: {exc}",),
            )

    async def process_many(self, events: Iterable[ContentCollected]) -> list[PipelineResult]:
        """Process every item, then raise the first invariant violation if any.

        No item is left running when this returns or raises.
        """
        semaphore = asyncio.Semaphore(self._concurrency)

        async def _bounded(ev: ContentCollected) -> PipelineResult:
            async with semaphore:
                return await self.process(ev)

        settled = await asyncio.gather(*(_bounded(ev) for ev in events), return_exceptions=True)
        results: list[PipelineResult] = []
        for outcome in settled:
            if isinstance(outcome, BaseException):
                raise outcome
            results.append(outcome)
        return results

    # -- stages --------------------------------------------------------------

    async def _run_stages(self, event: ContentCollected, size: int) -> PipelineResult:
        normalized = await self.normalize(event)

        validation = self._validator.validate_quality(normalized.text, normalized.metadata)
        if not validation.is_valid:
            await self._announce(
                ContentValidationFailed.for_content(
                    job_id=event.job_id,
                    source_id=event.source_id,
                    content=normalized.text,
                    errors=validation.errors,
                )
            )
            logger.info(
                "Validation failed job=%s source=%s errors=%s",
                event.job_id,
                event.source_id,
                validation.errors,
            )
            return PipelineResult(
                outcome=IngestOutcome.VALIDATION_FAILED,
                source_id=event.source_id,
                job_id=event.job_id,
                bytes_processed=size,
                errors=tuple(validation.errors),
            )

        content_hash = self._dedup.compute_hash(normalized.text)
        if await self._is_duplicate(content_hash):
            return PipelineResult(
                outcome=IngestOutcome.DUPLICATE,
                source_id=event.source_id,
                job_id=event.job_id,
                bytes_processed=size,
                content_hash=content_hash.value,
            )

        try:
            item = ContentItem.create(
                content_id=self._id_factory(),
                source_id=event.source_id,
                content_hash=content_hash,
                raw_content=event.raw_content,
                normalized_content=normalized.text,
                metadata=normalized.metadata,
                collected_at=event.collected_at,
                asset_tags=sorted(self._normalizer.detect_assets(normalized.text), key=lambda t: t.symbol),
            )
            await self._writer.save(item)
        except ContentHashConflict:
            # Lost a race against another writer.
            return PipelineResult(
                outcome=IngestOutcome.DUPLICATE,
                source_id=event.source_id,
                job_id=event.job_id,
                bytes_processed=size,
                content_hash=content_hash.value,
            )
        except Exception:
            self._dedup.forget(content_hash)
            raise
        finally:
            self._in_flight.discard(content_hash.value)

        await self._announce(
            ContentIngested(
                content_id=item.content_id,
                source_id=item.source_id,
                job_id=event.job_id,
                content_hash=item.content_hash.value,
                normalized_content=item.normalized_content,
                metadata=item.metadata,
                asset_tags=tuple(item.asset_tags),
                collected_at=item.collected_at,
            )
        )
        logger.debug("Ingested content=%s hash=%s", item.content_id, item.content_hash.value)
        return PipelineResult(
            outcome=IngestOutcome.INGESTED,
            source_id=event.source_id,
            job_id=event.job_id,
            bytes_processed=size,
            content_id=item.content_id,
            content_hash=item.content_hash.value,
        )

    async def normalize(self, event: ContentCollected) -> NormalizedContent:
        """Markup -> markdown (when a parser is configured), cleanup, metadata merge.

        Metadata precedence: the collected event, then the parser, then text heuristics.
        """
        text = event.raw_content or ""
        parsed_metadata = ContentMetadata.empty()

        if self._parser is not None and event.source_type.is_markup() and self._parser.supports(event.source_type):
            try:
                parsed = await self._parser.parse(text, event.source_type, event.metadata)
            except Exception:  # noqa: BLE001
                logger.warning(
                    "Parser failed for job=%s source=%s; using raw text",
                    event.job_id,
                    event.source_id,
                    exc_info=True,
                )
            else:
                if parsed.markdown.strip():
                    text = parsed.markdown
                try:
                    parsed_metadata = parsed.extracted_metadata.to_content_metadata()
                except InvalidValueError:
                    logger.debug("Discarding parser metadata for source=%s", event.source_id, exc_info=True)

        normalized = self._normalizer.normalize(text, event.source_type)
        heuristic = self._normalizer.extract_metadata(normalized, event.source_type)
        metadata = event.metadata.merged_with(parsed_metadata).merged_with(heuristic)
        return NormalizedContent(text=normalized, metadata=metadata)

    async def _is_duplicate(self, content_hash: ContentHash) -> bool:
        """Durable lookup first, then claim the hash for this process.

        A local claim without a durable row and without an item still saving is
        stale (the stored row went away), so it is released and claimed afresh.
        """
        if await self._reader.find_by_hash(content_hash) is not None:
            self._dedup.record_hash(content_hash)
            return True
        if content_hash.value not in self._in_flight and self._dedup.is_duplicate(content_hash):
            logger.info("Releasing stale claim for hash=%s", content_hash.value)
            self._dedup.forget(content_hash)
        # A concurrent identical item in this process loses here.
        if self._dedup.record_hash(content_hash):
            return True
        self._in_flight.add(content_hash.value)
        return False

    async def _announce(self, event: object) -> None:
        try:
            await self._publisher.publish(event)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to publish %s", type(event).__name__)
