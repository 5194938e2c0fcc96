from __future__ import annotations

"""Error records attached to ingestion jobs.

An ``ErrorRecord`` is the durable trace of a failure: what kind of failure it was,
when it happened and how many times the job was retried after it. Retry decisions
are made from ``ErrorType`` alone, so classification lives here too.
"""

import traceback
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import httpx

from ingestion.core.errors import (
    CircuitOpenError,
    FetchError,
    InvalidValueError,
    ParsingError,
    RetryExhaustedError,
)
from ingestion.core.time_common import utc_now


DEFAULT_MAX_RETRIES = 5


class ErrorType(str, Enum):
    NETWORK_ERROR = "network_error"
    PARSING_ERROR = "parsing_error"
    VALIDATION_ERROR = "validation_error"
    AUTHENTICATION_ERROR = "authentication_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    TIMEOUT_ERROR = "timeout_error"
    CIRCUIT_OPEN_ERROR = "circuit_open_error"
    UNKNOWN_ERROR = "unknown_error"


_TRANSIENT = frozenset(
    {
        ErrorType.NETWORK_ERROR,
        ErrorType.RATE_LIMIT_ERROR,
        ErrorType.TIMEOUT_ERROR,
        ErrorType.CIRCUIT_OPEN_ERROR,
    }
)


def classify_exception(exc: BaseException) -> ErrorType:
    if isinstance(exc, RetryExhaustedError) and exc.last_error is not None:
        return classify_exception(exc.last_error)
    if isinstance(exc, CircuitOpenError):
        return ErrorType.CIRCUIT_OPEN_ERROR
    if isinstance(exc, (httpx.TimeoutException, TimeoutError)):
        return ErrorType.TIMEOUT_ERROR
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ErrorType.RATE_LIMIT_ERROR
        if status in (401, 403):
            return ErrorType.AUTHENTICATION_ERROR
        return ErrorType.NETWORK_ERROR
    if isinstance(exc, (httpx.TransportError, ConnectionError, FetchError)):
        return ErrorType.NETWORK_ERROR
    if isinstance(exc, ParsingError):
        return ErrorType.PARSING_ERROR
    if isinstance(exc, InvalidValueError):
        return ErrorType.VALIDATION_ERROR
    if isinstance(exc, PermissionError):
        return ErrorType.AUTHENTICATION_ERROR
    return ErrorType.UNKNOWN_ERROR


@dataclass(frozen=True, slots=True)
class ErrorRecord:
    error_type: ErrorType
    message: str
    error_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    timestamp: datetime = field(default_factory=utc_now)
    stack_trace: Optional[str] = None
    retry_count: int = 0

    @classmethod
    def create(
        cls,
        error_type: ErrorType,
        message: str,
        *,
        stack_trace: Optional[str] = None,
    ) -> "ErrorRecord":
        return cls(error_type=error_type, message=message, stack_trace=stack_trace)

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorRecord":
        trace = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        return cls(
            error_type=classify_exception(exc),
            message=str(exc) or type(exc).__name__,
            stack_trace=trace or None,
        )

    def is_retryable(self) -> bool:
        return self.error_type in _TRANSIENT

    def with_incremented_retry(self) -> "ErrorRecord":
        return replace(self, retry_count=self.retry_count + 1)

    def has_exceeded_max_retries(self, max_retries: int = DEFAULT_MAX_RETRIES) -> bool:
        return self.retry_count >= max_retries

    def to_log_message(self) -> str:
        return (
            f"[{self.error_type.value}] {self.message} "
            f"(retry {self.retry_count}, at {self.timestamp.isoformat()})"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_id": self.error_id,
            "timestamp": self.timestamp.isoformat(),
            "error_type": self.error_type.value,
            "message": self.message,
            "stack_trace": self.stack_trace,
            "retry_count": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ErrorRecord":
        return cls(
            error_id=str(data["error_id"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            error_type=ErrorType(data["error_type"]),
            message=str(data.get("message", "")),
            stack_trace=data.get("stack_trace"),
            retry_count=int(data.get("retry_count", 0)),
        )
