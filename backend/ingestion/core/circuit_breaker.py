"""
Circuit Breaker for external calls.

One breaker guards one external dependency (a source adapter type, the
rendering service, ...). Failures inside a sliding window trip it; while it is
open, calls are rejected without touching the dependency.

States:
- CLOSED: Normal operation. Failures are counted inside the window.
- OPEN: Dependency considered down. Calls rejected with CircuitOpenError.
- HALF_OPEN: Probing. Consecutive successes close it, any failure reopens it.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from ingestion.core.errors import CircuitOpenError

logger = logging.getLogger("coinlens.ingestion.circuit_breaker")

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"       # Normal operation
    OPEN = "open"           # Rejecting calls
    HALF_OPEN = "half_open" # Probing


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    failure_window_ms: int = Field(default=60_000, ge=1)
    reset_timeout_ms: int = Field(default=30_000, ge=0)
    success_threshold: int = Field(default=2, ge=1)

    model_config = ConfigDict(frozen=True)


class CircuitBreakerStats(BaseModel):
    """Point-in-time snapshot of a breaker."""
    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    total_rejected: int
    opened_at: Optional[float] = None

    model_config = ConfigDict(frozen=True)


class CircuitBreaker:
    """
    Failure/success state machine around an async operation.

    Counters are guarded by a lock because pipeline workers share one breaker
    per dependency. The operation itself runs outside the lock.
    """

    def __init__(
        self,
        name: str = "default",
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._success_count = 0
        self._opened_at: Optional[float] = None
        self._total_rejected = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` through the breaker.

        - OPEN and reset timeout not elapsed: reject, operation not invoked.
        - OPEN and reset timeout elapsed: move to HALF_OPEN, then run.
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                self._total_rejected += 1
                raise CircuitOpenError(self.name, self._remaining_open_ms())

        try:
            result = await operation()
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    def get_stats(self) -> CircuitBreakerStats:
        with self._lock:
            self._maybe_half_open()
            self._prune(self._clock())
            return CircuitBreakerStats(
                name=self.name,
                state=self._state,
                failure_count=len(self._failures),
                success_count=self._success_count,
                total_rejected=self._total_rejected,
                opened_at=self._opened_at,
            )

    def reset(self) -> None:
        with self._lock:
            self._failures.clear()
            self._success_count = 0
            self._opened_at = None
            self._total_rejected = 0
            self._transition(CircuitState.CLOSED, "Manual reset")

    # Internal helpers; callers hold the lock.

    def _maybe_half_open(self) -> None:
        if self._state != CircuitState.OPEN or self._opened_at is None:
            return
        if (self._clock() - self._opened_at) * 1000 >= self.config.reset_timeout_ms:
            self._success_count = 0
            self._transition(CircuitState.HALF_OPEN, "Reset timeout elapsed. Probing.")

    def _remaining_open_ms(self) -> Optional[float]:
        if self._opened_at is None:
            return None
        return self.config.reset_timeout_ms - (self._clock() - self._opened_at) * 1000

    def _prune(self, now: float) -> None:
        horizon = now - self.config.failure_window_ms / 1000
        while self._failures and self._failures[0] < horizon:
            self._failures.popleft()

    def _on_success(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.config.success_threshold:
                    self._failures.clear()
                    self._success_count = 0
                    self._opened_at = None
                    self._transition(CircuitState.CLOSED, "Probe succeeded. Circuit closed.")

    def _on_failure(self) -> None:
        with self._lock:
            now = self._clock()
            if self._state == CircuitState.HALF_OPEN:
                self._trip(now, "Probe failed")
                return
            if self._state == CircuitState.OPEN:
                return
            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self.config.failure_threshold:
                self._trip(
                    now,
                    f"{len(self._failures)} failures within {self.config.failure_window_ms}ms",
                )

    def _trip(self, now: float, reason: str) -> None:
        self._opened_at = now
        self._success_count = 0
        self._transition(CircuitState.OPEN, reason)

    def _transition(self, new_state: CircuitState, reason: str) -> None:
        if self._state != new_state:
            old_state = self._state
            self._state = new_state
            logger.info(f"Circuit {self.name}: {old_state.value} -> {new_state.value} | {reason}")


class CircuitBreakerRegistry:
    """Hands out one breaker per protected dependency name."""

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(name, self._config, clock=self._clock)
                self._breakers[name] = breaker
            return breaker

    def all_stats(self) -> list[CircuitBreakerStats]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [b.get_stats() for b in breakers]
