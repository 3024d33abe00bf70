from __future__ import annotations

import asyncio
from typing import List

import pytest

from vespa_sync.retry import RequestExecutor


class _Recorder:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def test_always_failing_operation_is_attempted_max_attempts_times(events) -> None:
    sleep = _Recorder()
    executor = RequestExecutor(max_attempts=3, base_delay_ms=1000, sleep=sleep)
    attempts = 0

    async def operation() -> None:
        nonlocal attempts
        attempts += 1
        raise ConnectionError(f"boom {attempts}")

    with pytest.raises(ConnectionError, match="boom 3"):
        asyncio.run(executor.execute(operation, label="GET /records"))

    assert attempts == 3
    assert sleep.delays == [1.0, 2.0]
    assert sleep.delays == sorted(set(sleep.delays))
    names = [event.name for event in events]
    assert names.count("request_attempt_failed") == 3
    assert names[-1] == "request_retries_exhausted"
    assert events[0].payload["error"] == "ConnectionError: boom 1"


def test_success_after_transient_failures_returns_value() -> None:
    sleep = _Recorder()
    executor = RequestExecutor(max_attempts=4, base_delay_ms=250, sleep=sleep)
    outcomes = iter([TimeoutError("slow"), RuntimeError("502"), "payload"])

    async def operation() -> str:
        outcome = next(outcomes)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    assert asyncio.run(executor.execute(operation)) == "payload"
    assert sleep.delays == [0.25, 0.5]


def test_per_call_overrides_take_precedence() -> None:
    sleep = _Recorder()
    executor = RequestExecutor(sleep=sleep)
    attempts = 0

    async def operation() -> None:
        nonlocal attempts
        attempts += 1
        raise ValueError("nope")

    with pytest.raises(ValueError):
        asyncio.run(executor.execute(operation, max_attempts=2, base_delay_ms=10))

    assert attempts == 2
    assert sleep.delays == [0.01]


def test_single_attempt_never_sleeps() -> None:
    sleep = _Recorder()
    executor = RequestExecutor(max_attempts=1, sleep=sleep)

    async def operation() -> None:
        raise OSError("down")

    with pytest.raises(OSError):
        asyncio.run(executor.execute(operation))
    assert sleep.delays == []


def test_invalid_attempt_budget_rejected() -> None:
    with pytest.raises(ValueError):
        RequestExecutor(max_attempts=0)


def test_delay_doubles_per_retry() -> None:
    executor = RequestExecutor(base_delay_ms=1000)
    assert [executor.delay_for(retry) for retry in range(4)] == [1.0, 2.0, 4.0, 8.0]
