from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from ingestion.core.errors import InvalidJobMetrics
from ingestion.core.metrics import JobMetrics, JobMetricsCalculator, MetricUpdate


UTC = timezone.utc


def test_duplicates_cannot_exceed_items():
    with pytest.raises(InvalidJobMetrics):
        JobMetrics(items_collected=10, duplicates_detected=15)


@pytest.mark.parametrize("field", ["items_collected", "errors_encountered", "bytes_processed", "duration_ms"])
def test_negative_counters_rejected(field):
    with pytest.raises(InvalidJobMetrics):
        JobMetrics(**{field: -1})


def test_rates_and_throughput():
    m = JobMetrics(items_collected=10, duplicates_detected=2, errors_encountered=1, bytes_processed=5000, duration_ms=2000)
    assert m.success_rate == pytest.approx(0.9)
    assert m.duplicate_rate == pytest.approx(0.2)
    assert m.throughput == pytest.approx(2500.0)


def test_empty_metrics_rates():
    m = JobMetrics.empty()
    assert m.success_rate == 1.0
    assert m.duplicate_rate == 0.0
    assert m.throughput == 0.0


def test_aggregate_sums_updates():
    updates = [
        MetricUpdate(items_collected=1, bytes_processed=100),
        MetricUpdate(items_collected=1, duplicates_detected=1, bytes_processed=50),
        MetricUpdate(items_collected=1, errors_encountered=1, bytes_processed=10),
    ]
    m = JobMetricsCalculator.aggregate(updates, duration_ms=42)
    assert m == JobMetrics(
        items_collected=3, duplicates_detected=1, errors_encountered=1, bytes_processed=160, duration_ms=42
    )
    assert JobMetricsCalculator.items_persisted(m) == 1
    assert JobMetricsCalculator.success_rate_percent(m) == pytest.approx(100 / 3)


def test_duration_between():
    start = datetime(2024, 1, 1, tzinfo=UTC)
    assert JobMetricsCalculator.duration_between(start, start + timedelta(seconds=1.5)) == 1500
    with pytest.raises(InvalidJobMetrics):
        JobMetricsCalculator.duration_between(start, start - timedelta(seconds=1))


def test_dict_shape():
    m = JobMetrics(items_collected=2, duplicates_detected=1)
    assert JobMetrics.from_dict(m.to_dict()) == m
    assert JobMetrics.from_dict(None) == JobMetrics.empty()
