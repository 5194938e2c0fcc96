from __future__ import annotations

import asyncio
import random

import pytest

from ingestion.core.errors import CircuitOpenError, RetryExhaustedError
from ingestion.core.retry import RetryOptions, RetryPolicy


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def _flaky(failures: int, exc: Exception):
    state = {"calls": 0}

    async def op() -> str:
        state["calls"] += 1
        if state["calls"] <= failures:
            raise exc
        return "done"

    return op, state


def test_delay_grows_exponentially_and_caps():
    policy = RetryPolicy(RetryOptions(initial_delay_ms=1000, backoff_multiplier=2, max_delay_ms=5000, use_jitter=False))
    assert [policy.calculate_delay(i) for i in range(5)] == [1000, 2000, 4000, 5000, 5000]


def test_jitter_stays_within_bound():
    policy = RetryPolicy(RetryOptions(initial_delay_ms=1000, use_jitter=True), rng=random.Random(7))
    for attempt in range(4):
        assert 0 <= policy.calculate_delay(attempt) <= 1000 * 2**attempt


def test_succeeds_after_transient_failures():
    sleep = FakeSleep()
    policy = RetryPolicy(RetryOptions(max_attempts=3, initial_delay_ms=100, use_jitter=False), sleep=sleep)
    op, state = _flaky(2, ConnectionError("reset"))

    result = asyncio.run(policy.execute(op))

    assert result.success
    assert result.value == "done"
    assert result.attempts == 3
    assert state["calls"] == 3
    assert sleep.delays == [0.1, 0.2]


def test_gives_up_after_max_attempts():
    sleep = FakeSleep()
    policy = RetryPolicy(RetryOptions(max_attempts=2, use_jitter=False), sleep=sleep)
    op, state = _flaky(10, ConnectionError("reset"))

    result = asyncio.run(policy.execute(op))
    assert not result.success
    assert result.attempts == 2
    assert isinstance(result.error, ConnectionError)

    with pytest.raises(RetryExhaustedError) as exc:
        asyncio.run(policy.execute_or_raise(op))
    assert exc.value.attempts == 2
    assert isinstance(exc.value.last_error, ConnectionError)


def test_open_circuit_is_not_retried():
    sleep = FakeSleep()
    policy = RetryPolicy(RetryOptions(max_attempts=5), sleep=sleep)
    op, state = _flaky(10, CircuitOpenError("adapter:rss", 500))

    with pytest.raises(CircuitOpenError):
        asyncio.run(policy.execute_or_raise(op))
    assert state["calls"] == 1
    assert sleep.delays == []


def test_retry_on_filter():
    policy = RetryPolicy(RetryOptions(max_attempts=4, retry_on=(ConnectionError,)), sleep=FakeSleep())
    op, state = _flaky(10, KeyError("nope"))
    with pytest.raises(KeyError):
        asyncio.run(policy.execute_or_raise(op))
    assert state["calls"] == 1


@pytest.mark.parametrize("kwargs", [{"max_attempts": 0}, {"initial_delay_ms": -1}, {"backoff_multiplier": 0.5}])
def test_invalid_options(kwargs):
    with pytest.raises(ValueError):
        RetryOptions(**kwargs)
