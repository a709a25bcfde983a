"""Tests for per-account locking, worker pools and supervised tasks."""

import asyncio

import pytest

from comment_sentry.services.coordinator import (
    AccountDispatcher,
    InFlightAccounts,
    SupervisedTaskGroup,
    WorkerPool,
)


def test_in_flight_acquire_is_exclusive() -> None:
    in_flight = InFlightAccounts()

    assert in_flight.acquire(1) is True
    assert in_flight.acquire(1) is False
    assert in_flight.acquire(2) is True

    in_flight.release(1)
    assert in_flight.acquire(1) is True


def test_release_of_unknown_key_is_noop() -> None:
    InFlightAccounts().release("missing")


def test_worker_pool_rejects_zero_size() -> None:
    with pytest.raises(ValueError):
        WorkerPool("heavy", 0)


@pytest.mark.asyncio
async def test_worker_pool_bounds_concurrency() -> None:
    pool = WorkerPool("heavy", 2)
    peak = 0
    release = asyncio.Event()

    async def work() -> None:
        nonlocal peak
        peak = max(peak, pool.active)
        await release.wait()

    tasks = [asyncio.create_task(pool.run(work)) for _ in range(5)]
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    assert pool.active == 2

    release.set()
    await asyncio.gather(*tasks)
    assert peak == 2
    assert pool.active == 0


@pytest.mark.asyncio
async def test_locked_account_is_skipped_and_others_dispatched() -> None:
    in_flight = InFlightAccounts("sync")
    tasks = SupervisedTaskGroup("test")
    dispatcher = AccountDispatcher(in_flight, WorkerPool("poll", 4), tasks)
    ran: list[str] = []

    async def work_for(name: str) -> None:
        ran.append(name)

    in_flight.acquire("A")
    assert dispatcher.dispatch("A", lambda: work_for("A")) is False
    assert dispatcher.dispatch("B", lambda: work_for("B")) is True

    await tasks.wait()
    assert ran == ["B"]
    # A is still held by its original owner; B was released after finishing.
    assert in_flight.acquire("A") is False
    assert in_flight.acquire("B") is True


@pytest.mark.asyncio
async def test_lock_released_when_work_fails() -> None:
    in_flight = InFlightAccounts()
    tasks = SupervisedTaskGroup("test")
    dispatcher = AccountDispatcher(in_flight, WorkerPool("poll", 1), tasks)

    async def boom() -> None:
        raise RuntimeError("sync failed")

    assert dispatcher.dispatch(7, boom) is True
    await tasks.wait()

    assert len(tasks) == 0
    assert in_flight.acquire(7) is True


@pytest.mark.asyncio
async def test_shutdown_cancels_stragglers() -> None:
    tasks = SupervisedTaskGroup("test")
    started = asyncio.Event()

    async def forever() -> None:
        started.set()
        await asyncio.sleep(3600)

    task = tasks.spawn(forever(), name="forever")
    await started.wait()
    await tasks.shutdown(timeout=0.01)

    assert task.cancelled()
    assert len(tasks) == 0
