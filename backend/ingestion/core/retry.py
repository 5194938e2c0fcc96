from __future__ import annotations

"""Retry with exponential backoff.

Only wrap operations that are safe to repeat (collection, fetches). Publishing
and persistence are never retried through this policy.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ingestion.core.errors import CircuitOpenError, RetryExhaustedError

logger = logging.getLogger("coinlens.ingestion.retry")

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryOptions:
    max_attempts: int = 5
    initial_delay_ms: int = 1000
    backoff_multiplier: float = 2.0
    max_delay_ms: int = 60_000
    use_jitter: bool = True
    retry_on: tuple[type[BaseException], ...] = (Exception,)
    # A rejected call means "try later", not "try again now".
    no_retry_on: tuple[type[BaseException], ...] = (CircuitOpenError,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("delays must be non-negative")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")


@dataclass(frozen=True, slots=True)
class RetryResult(Generic[T]):
    success: bool
    attempts: int
    total_time_ms: int
    value: Optional[T] = None
    error: Optional[BaseException] = field(default=None)


class RetryPolicy:
    def __init__(
        self,
        options: Optional[RetryOptions] = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.options = options or RetryOptions()
        self._sleep = sleep
        self._rng = rng or random.Random()

    def calculate_delay(self, attempt: int) -> float:
        """Delay in ms before the retry that follows ``attempt`` (0-based)."""
        o = self.options
        delay = min(o.initial_delay_ms * (o.backoff_multiplier ** attempt), o.max_delay_ms)
        if o.use_jitter:
            delay = self._rng.random() * delay
        return delay

    def _should_retry(self, exc: BaseException) -> bool:
        if isinstance(exc, self.options.no_retry_on):
            return False
        return isinstance(exc, self.options.retry_on)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> RetryResult[T]:
        started = time.monotonic()
        last_error: Optional[BaseException] = None
        attempts = 0

        for attempt in range(self.options.max_attempts):
            attempts = attempt + 1
            try:
                value = await operation()
                return RetryResult(
                    success=True,
                    value=value,
                    attempts=attempts,
                    total_time_ms=int((time.monotonic() - started) * 1000),
                )
            except Exception as exc:  # noqa: BLE001
                last_error = exc
                if not self._should_retry(exc) or attempts >= self.options.max_attempts:
                    break
                delay_ms = self.calculate_delay(attempt)
                logger.warning(
                    "Attempt %d/%d failed (%s); retrying in %.0fms",
                    attempts,
                    self.options.max_attempts,
                    type(exc).__name__,
                    delay_ms,
                )
                await self._sleep(delay_ms / 1000)

        return RetryResult(
            success=False,
            error=last_error,
            attempts=attempts,
            total_time_ms=int((time.monotonic() - started) * 1000),
        )

    async def execute_or_raise(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Like ``execute`` but raises instead of returning a failed result.

        Errors that were never retried (e.g. an open circuit) are re-raised as is so
        callers can tell "try later" from "gave up".
        """
        result = await self.execute(operation)
        if result.success:
            return result.value  # type: ignore[return-value]
        if result.error is not None and not self._should_retry(result.error):
            raise result.error
        raise RetryExhaustedError(result.attempts, result.error) from result.error
