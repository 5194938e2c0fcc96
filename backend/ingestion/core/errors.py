from __future__ import annotations

"""Controlled ingestion errors.

Two families live here:
- Construction errors (``InvalidValueError`` and subclasses): raised eagerly when a
  value object or aggregate would be built in an invalid state. These propagate.
- Runtime signals (circuit open, retries exhausted, version conflicts): typed so the
  job runner can classify them into ``ErrorRecord`` entries.

Pipeline stages catch everything at their boundary and log; nothing in here is a
reason to crash an ingestion run.
"""

from typing import Optional, Sequence


class IngestionError(RuntimeError):
    """Base error for ingestion; should be caught and logged, not propagated."""


class FetchError(IngestionError):
    """Raised when a source fetch fails (network, HTTP, parse)."""


class InvalidValueError(IngestionError, ValueError):
    """A value object or aggregate rejected its constructor arguments."""


class InvalidHashFormat(InvalidValueError):
    pass


class InvalidAssetTag(InvalidValueError):
    pass


class InvalidContentMetadata(InvalidValueError):
    pass


class InvalidJobMetrics(InvalidValueError):
    pass


class InvalidSourceType(InvalidValueError):
    pass


class InvalidSourceConfiguration(InvalidValueError):
    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("Invalid source configuration: " + "; ".join(self.errors))


class InvalidContentItem(InvalidValueError):
    """Carries every violated invariant, not just the first."""

    def __init__(self, errors: Sequence[str]):
        self.errors = list(errors)
        super().__init__("Invalid content item: " + "; ".join(self.errors))


class InvalidStateTransition(IngestionError):
    def __init__(self, current: str, target: str, action: Optional[str] = None):
        self.current = current
        self.target = target
        if action:
            msg = f"Cannot {action} job in {current} state"
        else:
            msg = f"Invalid state transition: {current} -> {target}"
        super().__init__(msg)


class UnsupportedSourceType(IngestionError):
    def __init__(self, source_type: str, kind: str = "parsing strategy"):
        self.source_type = source_type
        super().__init__(f"No {kind} available for source type: {source_type}")


class ParsingError(IngestionError):
    """Raised by parsing strategies when markup cannot be converted."""


class CircuitOpenError(IngestionError):
    """Call rejected without invoking the protected operation."""

    def __init__(self, name: str, retry_after_ms: Optional[float] = None):
        self.name = name
        self.retry_after_ms = retry_after_ms
        msg = f"Circuit breaker '{name}' is OPEN"
        if retry_after_ms is not None:
            msg += f" (retry in {max(0, int(retry_after_ms))}ms)"
        super().__init__(msg)


class RetryExhaustedError(IngestionError):
    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Operation failed after {attempts} attempt(s): {last_error}")


class ConcurrencyConflict(IngestionError):
    """Stored version differs from the version the writer loaded."""

    def __init__(self, entity_id: str, expected_version: int, actual_version: Optional[int] = None):
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Version conflict on {entity_id}: expected {expected_version}, found {actual_version}"
        )


class JobNotFound(IngestionError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ContentHashConflict(IngestionError):
    """Another item with the same content hash was stored first."""

    def __init__(self, content_hash: str):
        self.content_hash = content_hash
        super().__init__(f"Content with hash {content_hash} already stored")
