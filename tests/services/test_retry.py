"""Tests for the bounded retry combinator."""

import pytest

from comment_sentry.services.retry import (
    RetryPolicy,
    exponential_backoff,
    linear_backoff,
    retry_async,
)


class Flaky(Exception):
    pass


async def _no_sleep(_delay: float) -> None:
    return None


def test_exponential_backoff_is_capped() -> None:
    backoff = exponential_backoff(1.0, 2.0, 5.0)
    assert [backoff(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]


def test_linear_backoff() -> None:
    assert linear_backoff(0.5)(3) == 1.5


@pytest.mark.asyncio
async def test_retry_succeeds_after_transient_failures() -> None:
    calls = 0
    delays: list[float] = []

    async def operation() -> str:
        nonlocal calls
        calls += 1
        if calls < 3:
            raise Flaky("try again")
        return "ok"

    async def record(delay: float) -> None:
        delays.append(delay)

    policy = RetryPolicy(max_attempts=3, backoff=exponential_backoff(1.0, 2.0, 10.0), retry_on=(Flaky,))
    assert await retry_async(operation, policy, sleep=record) == "ok"
    assert calls == 3
    assert delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_raises_last_error_when_exhausted() -> None:
    calls = 0

    async def operation() -> None:
        nonlocal calls
        calls += 1
        raise Flaky(f"attempt {calls}")

    with pytest.raises(Flaky, match="attempt 2"):
        await retry_async(operation, RetryPolicy(max_attempts=2, retry_on=(Flaky,)), sleep=_no_sleep)
    assert calls == 2


@pytest.mark.asyncio
async def test_non_retryable_error_propagates_immediately() -> None:
    calls = 0

    async def operation() -> None:
        nonlocal calls
        calls += 1
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await retry_async(operation, RetryPolicy(max_attempts=5, retry_on=(Flaky,)), sleep=_no_sleep)
    assert calls == 1
