"""Tests for the classification job queue."""

import asyncio

import pytest

from comment_sentry.services.queue import ClassificationQueue


@pytest.mark.asyncio
async def test_jobs_are_processed_with_bounded_concurrency() -> None:
    seen: list[int] = []
    active = 0
    peak = 0

    async def handler(comment_id: int) -> None:
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.01)
        seen.append(comment_id)
        active -= 1

    queue = ClassificationQueue(handler, concurrency=2)
    for comment_id in range(1, 6):
        assert queue.enqueue(comment_id) is True

    await queue.start()
    await queue.join()
    await queue.stop()

    assert sorted(seen) == [1, 2, 3, 4, 5]
    assert peak == 2
    assert queue.processed == 5
    assert queue.running is False


@pytest.mark.asyncio
async def test_pending_duplicates_are_ignored() -> None:
    queue = ClassificationQueue(lambda comment_id: asyncio.sleep(0), concurrency=1)

    assert queue.enqueue(7) is True
    assert queue.enqueue(7) is False
    assert queue.size == 1


@pytest.mark.asyncio
async def test_failing_job_is_retried_then_given_up() -> None:
    attempts: list[int] = []

    async def handler(comment_id: int) -> None:
        attempts.append(comment_id)
        raise RuntimeError("model unavailable")

    queue = ClassificationQueue(handler, concurrency=1, max_attempts=3, retry_delay=0)
    queue.enqueue(1)
    await queue.start()
    await queue.join()
    await queue.stop()

    assert attempts == [1, 1, 1]
    assert queue.failed == 1
    assert queue.processed == 0


@pytest.mark.asyncio
async def test_job_succeeds_on_retry() -> None:
    calls = 0

    async def handler(comment_id: int) -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("transient")

    queue = ClassificationQueue(handler, concurrency=1, max_attempts=3, retry_delay=0)
    queue.enqueue(1)
    await queue.start()
    await queue.join()
    await queue.stop()

    assert calls == 2
    assert queue.processed == 1
    assert queue.failed == 0


@pytest.mark.asyncio
async def test_reenqueue_during_run_waits_for_the_running_job() -> None:
    started = asyncio.Event()
    active = 0
    peak = 0
    runs = 0

    async def handler(comment_id: int) -> None:
        nonlocal active, peak, runs
        active += 1
        runs += 1
        peak = max(peak, active)
        started.set()
        await asyncio.sleep(0.05)
        active -= 1

    queue = ClassificationQueue(handler, concurrency=2)
    await queue.start()
    queue.enqueue(7)
    await started.wait()

    assert queue.enqueue(7) is True
    assert queue.enqueue(7) is False
    await queue.join()
    await queue.stop()

    assert peak == 1
    assert runs == 2
    assert queue.processed == 2
