"""Ingestion core: domain types, services and the job runner.

- Collect raw content from configured sources
- Normalize, validate and deduplicate it
- Persist accepted items and announce them as events
"""

from ingestion.core.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState
from ingestion.core.content_item import ContentItem
from ingestion.core.error_record import ErrorRecord, ErrorType
from ingestion.core.ingestion_job import IngestionJob
from ingestion.core.ingestion_status import IngestionStatus
from ingestion.core.metrics import JobMetrics, JobMetricsCalculator
from ingestion.core.network_client import NetworkClient
from ingestion.core.pipeline import IngestionPipeline, IngestOutcome, PipelineResult
from ingestion.core.retry import RetryOptions, RetryPolicy
from ingestion.core.source_config import SourceConfiguration
from ingestion.core.value_objects import AssetTag, ContentHash, ContentMetadata, SourceType

__all__ = [
    "AssetTag",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "ContentHash",
    "ContentItem",
    "ContentMetadata",
    "ErrorRecord",
    "ErrorType",
    "IngestOutcome",
    "IngestionJob",
    "IngestionPipeline",
    "IngestionStatus",
    "JobMetrics",
    "JobMetricsCalculator",
    "NetworkClient",
    "PipelineResult",
    "RetryOptions",
    "RetryPolicy",
    "SourceConfiguration",
    "SourceType",
]
