from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from ingestion.adapters.html_strategy import HtmlParsingStrategy
from ingestion.adapters.rss_strategy import RssParsingStrategy
from ingestion.core.content_item import ContentItem
from ingestion.core.dedup import DuplicateDetectionService, Sha256HashService
from ingestion.core.errors import ContentHashConflict, InvalidContentItem
from ingestion.core.events import ContentCollected, ContentIngested, ContentValidationFailed
from ingestion.core.normalization import ContentNormalizationService
from ingestion.core.parsing import ContentParser
from ingestion.core.pipeline import IngestionPipeline, IngestOutcome
from ingestion.core.repositories import InMemoryContentRepository
from ingestion.core.time_common import utc_now
from ingestion.core.validation import ContentValidationService
from ingestion.core.value_objects import ContentMetadata, SourceType

from conftest import RecordingPublisher, minutes_ago


TEXT = "Bitcoin (BTC) and Ethereum (ETH) lead the market."


class CountingWriter:
    def __init__(self, inner: InMemoryContentRepository, error: Exception | None = None) -> None:
        self.inner = inner
        self.error = error
        self.saved: list[ContentItem] = []

    async def save(self, item: ContentItem) -> None:
        self.saved.append(item)
        if self.error is not None:
            raise self.error
        await self.inner.save(item)


class FailingPublisher(RecordingPublisher):
    async def publish(self, event) -> None:
        raise RuntimeError("bus down")


def _event(text: str = TEXT, *, source_type: SourceType = SourceType.OCR, **kwargs) -> ContentCollected:
    return ContentCollected(
        source_id=kwargs.pop("source_id", "coindesk"),
        job_id=kwargs.pop("job_id", "job-1"),
        raw_content=text,
        source_type=source_type,
        collected_at=kwargs.pop("collected_at", minutes_ago(1)),
        metadata=kwargs.pop("metadata", ContentMetadata.create(title="Market wrap")),
    )


def _pipeline(
    publisher,
    *,
    repo: InMemoryContentRepository | None = None,
    writer=None,
    dedup: DuplicateDetectionService | None = None,
    parser: ContentParser | None = None,
) -> IngestionPipeline:
    repo = repo if repo is not None else InMemoryContentRepository()
    return IngestionPipeline(
        normalizer=ContentNormalizationService(),
        validator=ContentValidationService(),
        dedup=dedup or DuplicateDetectionService(Sha256HashService()),
        reader=repo,
        writer=writer or repo,
        publisher=publisher,
        parser=parser,
    )


def test_ingests_and_announces(publisher):
    repo = InMemoryContentRepository()
    result = asyncio.run(_pipeline(publisher, repo=repo).process(_event()))

    assert result.outcome == IngestOutcome.INGESTED
    assert len(repo) == 1
    stored = asyncio.run(repo.find_by_id(result.content_id))
    assert stored.normalized_content == TEXT
    assert stored.content_hash.value == result.content_hash
    assert [t.symbol for t in stored.asset_tags] == ["BTC", "ETH"]

    (ingested,) = publisher.of_type(ContentIngested)
    assert ingested.content_id == result.content_id
    assert ingested.job_id == "job-1"
    assert [t.symbol for t in ingested.asset_tags] == ["BTC", "ETH"]
    assert ingested.to_dict()["event"] == "content_ingested"


def test_identical_content_saved_once(publisher):
    repo = InMemoryContentRepository()
    writer = CountingWriter(repo)
    pipeline = _pipeline(publisher, repo=repo, writer=writer)

    first = asyncio.run(pipeline.process(_event()))
    second = asyncio.run(pipeline.process(_event(job_id="job-2")))

    assert first.outcome == IngestOutcome.INGESTED
    assert second.outcome == IngestOutcome.DUPLICATE
    assert second.content_hash == first.content_hash
    assert len(writer.saved) == 1
    assert len(publisher.of_type(ContentIngested)) == 1


def test_concurrent_identical_items_have_one_winner(publisher):
    repo = InMemoryContentRepository()
    writer = CountingWriter(repo)
    pipeline = _pipeline(publisher, repo=repo, writer=writer)

    results = asyncio.run(pipeline.process_many([_event() for _ in range(10)]))

    outcomes = [r.outcome for r in results]
    assert outcomes.count(IngestOutcome.INGESTED) == 1
    assert outcomes.count(IngestOutcome.DUPLICATE) == 9
    assert len(writer.saved) == 1


def test_durable_duplicate_first_local_sighting_not_logged(publisher):
    repo = InMemoryContentRepository()
    asyncio.run(_pipeline(RecordingPublisher(), repo=repo).process(_event()))

    dedup = DuplicateDetectionService(Sha256HashService())
    result = asyncio.run(_pipeline(publisher, repo=repo, dedup=dedup).process(_event()))

    assert result.outcome == IngestOutcome.DUPLICATE
    assert dedup.duplicate_count() == 0
    assert dedup.unique_hash_count() == 1


def test_short_content_fails_validation(publisher):
    repo = InMemoryContentRepository()
    result = asyncio.run(_pipeline(publisher, repo=repo).process(_event("Short")))

    assert result.outcome == IngestOutcome.VALIDATION_FAILED
    assert "Content is too short (minimum 10 characters)" in result.errors
    assert len(repo) == 0
    (failed,) = publisher.of_type(ContentValidationFailed)
    assert failed.content == "Short"
    assert failed.errors == list(result.errors)


def test_validation_failure_preview_is_truncated(publisher):
    text = "x" * 500
    pipeline = _pipeline(publisher)
    asyncio.run(pipeline.process(_event(text, metadata=ContentMetadata.empty())))
    (failed,) = publisher.of_type(ContentValidationFailed)
    assert len(failed.content) == 200


def test_storage_failure_is_isolated_and_hash_released(publisher):
    repo = InMemoryContentRepository()
    dedup = DuplicateDetectionService(Sha256HashService())
    broken = CountingWriter(repo, error=ConnectionError("db down"))

    result = asyncio.run(_pipeline(publisher, repo=repo, writer=broken, dedup=dedup).process(_event()))
    assert result.outcome == IngestOutcome.ERROR
    assert "ConnectionError" in result.errors[0]
    assert dedup.unique_hash_count() == 0

    retried = asyncio.run(_pipeline(publisher, repo=repo, dedup=dedup).process(_event()))
    assert retried.outcome == IngestOutcome.INGESTED


def test_lost_insert_race_counts_as_duplicate(publisher):
    repo = InMemoryContentRepository()
    racing = CountingWriter(repo, error=ContentHashConflict("a" * 64))
    result = asyncio.run(_pipeline(publisher, repo=repo, writer=racing).process(_event()))
    assert result.outcome == IngestOutcome.DUPLICATE
    assert publisher.of_type(ContentIngested) == []


def test_publish_failure_does_not_fail_item():
    repo = InMemoryContentRepository()
    result = asyncio.run(_pipeline(FailingPublisher(), repo=repo).process(_event()))
    assert result.outcome == IngestOutcome.INGESTED
    assert len(repo) == 1


def test_aggregate_invariant_violation_propagates(publisher):
    future = utc_now() + timedelta(hours=1)
    pipeline = _pipeline(publisher)
    with pytest.raises(InvalidContentItem):
        asyncio.run(pipeline.process(_event(collected_at=future)))


class SlowWriter(CountingWriter):
    async def save(self, item: ContentItem) -> None:
        await asyncio.sleep(0.05)
        await super().save(item)


def test_invariant_violation_in_batch_waits_for_siblings(publisher):
    repo = InMemoryContentRepository()
    writer = SlowWriter(repo)
    pipeline = _pipeline(publisher, repo=repo, writer=writer)
    events = [_event(f"{TEXT} Desk update number {i} for subscribers.") for i in range(5)]
    events.insert(0, _event(f"{TEXT} Scheduled note.", collected_at=utc_now() + timedelta(hours=1)))

    with pytest.raises(InvalidContentItem):
        asyncio.run(pipeline.process_many(events))

    assert len(writer.saved) == 5
    assert len(repo) == 5
    assert len(publisher.of_type(ContentIngested)) == 5


def test_claim_without_stored_row_is_released(publisher):
    dedup = DuplicateDetectionService(Sha256HashService())
    first = asyncio.run(_pipeline(RecordingPublisher(), dedup=dedup).process(_event()))
    assert first.outcome == IngestOutcome.INGESTED

    # Same process, different store: the earlier claim has no durable row behind it.
    repo = InMemoryContentRepository()
    second = asyncio.run(_pipeline(publisher, repo=repo, dedup=dedup).process(_event(job_id="job-2")))

    assert second.outcome == IngestOutcome.INGESTED
    assert len(repo) == 1
    assert dedup.duplicate_count() == 0


def test_handle_never_raises(publisher):
    future = utc_now() + timedelta(hours=1)
    asyncio.run(_pipeline(publisher).handle(_event(collected_at=future)))


def test_metric_update_from_results(publisher):
    pipeline = _pipeline(publisher)
    ok, dup, bad = asyncio.run(pipeline.process_many([_event(), _event(), _event("Short")]))
    assert ok.to_metric_update().items_collected == 1
    assert dup.to_metric_update().duplicates_detected == 1
    assert bad.to_metric_update().errors_encountered == 1
    assert ok.bytes_processed == len(TEXT.encode("utf-8"))


PAGE = """
<html lang="en">
<head><title>Page title</title><meta name="author" content="Jane Doe"></head>
<body><article><h1>Page title</h1><p>Bitcoin and Ethereum funds saw record inflows this week.</p></article></body>
</html>
"""


def test_markup_is_parsed_and_metadata_layered(publisher):
    parser = ContentParser(HtmlParsingStrategy(), RssParsingStrategy())
    repo = InMemoryContentRepository()
    event = _event(
        PAGE,
        source_type=SourceType.WEB,
        metadata=ContentMetadata.create(title="From feed", source_url="https://news.example.com/a"),
    )

    result = asyncio.run(_pipeline(publisher, repo=repo, parser=parser).process(event))

    assert result.outcome == IngestOutcome.INGESTED
    item = asyncio.run(repo.find_by_id(result.content_id))
    assert item.normalized_content.startswith("# Page title")
    assert "<p>" not in item.normalized_content
    assert item.raw_content == PAGE
    assert item.metadata.title == "From feed"
    assert item.metadata.author == "Jane Doe"
    assert item.metadata.language == "en"
    assert item.metadata.source_url == "https://news.example.com/a"
