from __future__ import annotations

"""Job metrics value type and the calculator that aggregates per-item updates."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from ingestion.core.errors import InvalidJobMetrics
from ingestion.core.time_common import elapsed_ms


@dataclass(frozen=True, slots=True)
class JobMetrics:
    items_collected: int = 0
    duplicates_detected: int = 0
    errors_encountered: int = 0
    bytes_processed: int = 0
    duration_ms: int = 0

    def __post_init__(self) -> None:
        for name in (
            "items_collected",
            "duplicates_detected",
            "errors_encountered",
            "bytes_processed",
            "duration_ms",
        ):
            value = getattr(self, name)
            if not isinstance(value, int) or value < 0:
                raise InvalidJobMetrics(f"{name} must be a non-negative integer, got {value!r}")
        if self.duplicates_detected > self.items_collected:
            raise InvalidJobMetrics(
                "Duplicates detected cannot exceed items collected "
                f"({self.duplicates_detected} > {self.items_collected})"
            )

    @classmethod
    def empty(cls) -> "JobMetrics":
        return cls()

    @property
    def success_rate(self) -> float:
        if self.items_collected == 0:
            return 1.0
        return max(0.0, (self.items_collected - self.errors_encountered) / self.items_collected)

    @property
    def duplicate_rate(self) -> float:
        if self.items_collected == 0:
            return 0.0
        return self.duplicates_detected / self.items_collected

    @property
    def throughput(self) -> float:
        """Bytes per second."""
        if self.duration_ms == 0:
            return 0.0
        return self.bytes_processed / self.duration_ms * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "items_collected": self.items_collected,
            "duplicates_detected": self.duplicates_detected,
            "errors_encountered": self.errors_encountered,
            "bytes_processed": self.bytes_processed,
            "duration_ms": self.duration_ms,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "JobMetrics":
        if not data:
            return cls.empty()
        return cls(
            items_collected=int(data.get("items_collected", 0)),
            duplicates_detected=int(data.get("duplicates_detected", 0)),
            errors_encountered=int(data.get("errors_encountered", 0)),
            bytes_processed=int(data.get("bytes_processed", 0)),
            duration_ms=int(data.get("duration_ms", 0)),
        )


@dataclass(frozen=True, slots=True)
class MetricUpdate:
    """Incremental contribution of one processed item (or batch) to job metrics."""

    items_collected: int = 0
    duplicates_detected: int = 0
    errors_encountered: int = 0
    bytes_processed: int = 0


class JobMetricsCalculator:
    """Stateless helpers for building ``JobMetrics``."""

    @staticmethod
    def aggregate(updates: Iterable[MetricUpdate], *, duration_ms: int = 0) -> JobMetrics:
        items = duplicates = errors = size = 0
        for u in updates:
            items += u.items_collected
            duplicates += u.duplicates_detected
            errors += u.errors_encountered
            size += u.bytes_processed
        return JobMetrics(
            items_collected=items,
            duplicates_detected=duplicates,
            errors_encountered=errors,
            bytes_processed=size,
            duration_ms=duration_ms,
        )

    @staticmethod
    def duration_between(start: datetime, end: datetime) -> int:
        duration = elapsed_ms(start, end)
        if duration < 0:
            raise InvalidJobMetrics("End time cannot be before start time")
        return duration

    @staticmethod
    def items_persisted(metrics: JobMetrics) -> int:
        return max(0, metrics.items_collected - metrics.duplicates_detected - metrics.errors_encountered)

    @staticmethod
    def success_rate_percent(metrics: JobMetrics) -> float:
        """Share of collected items that were persisted, in [0, 100]."""
        if metrics.items_collected == 0:
            return 0.0
        rate = JobMetricsCalculator.items_persisted(metrics) / metrics.items_collected * 100
        return min(100.0, max(0.0, rate))
