"""Concurrency coordination for background account work.

Three pieces cooperate here:

- :class:`InFlightAccounts` is the per-account lock set. Acquiring an account
  that is already held fails immediately; callers skip it instead of queuing.
- :class:`WorkerPool` bounds how many units of work run at once. Heavy (full
  sync) and light (counter checks) work get separate pools.
- :class:`SupervisedTaskGroup` owns fire-and-forget tasks so that a failure in
  one is logged with its traceback and never reaches the scheduler.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Awaitable, Callable, Coroutine, Hashable
from typing import Any

logger = logging.getLogger(__name__)


class InFlightAccounts:
    """Process-local set of account keys currently being processed.

    The set is advisory and not durable: after a crash the next tick may
    proceed. Running more than one scheduler instance requires moving this
    state to a shared store.
    """

    def __init__(self, name: str = "accounts") -> None:
        self.name = name
        self._keys: set[Hashable] = set()
        self._lock = threading.Lock()

    def acquire(self, key: Hashable) -> bool:
        """Claim ``key``. Returns False without waiting if it is already held."""
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def release(self, key: Hashable) -> None:
        """Release ``key``. Releasing a key that is not held is a no-op."""
        with self._lock:
            self._keys.discard(key)


class WorkerPool:
    """Bounded pool limiting concurrent units of work."""

    def __init__(self, name: str, size: int) -> None:
        if size < 1:
            raise ValueError("Worker pool size must be at least 1")
        self.name = name
        self.size = size
        self._semaphore = asyncio.Semaphore(size)
        self._active = 0

    @property
    def active(self) -> int:
        return self._active

    async def run(self, func: Callable[[], Awaitable[Any]]) -> Any:
        async with self._semaphore:
            self._active += 1
            try:
                return await func()
            finally:
                self._active -= 1


class SupervisedTaskGroup:
    """Tracks background tasks and logs each one's failure individually."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._tasks: set[asyncio.Task[Any]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Start ``coro`` as a task without awaiting it."""
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task[Any]) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "[%s] task %s failed: %s",
                self.name,
                task.get_name(),
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def wait(self) -> None:
        """Wait for every task spawned so far to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float | None = None) -> None:
        """Give running tasks ``timeout`` seconds to finish, then cancel the rest."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        _done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)


class AccountDispatcher:
    """Dispatches per-account units of work under a lock set and a worker pool."""

    def __init__(
        self,
        in_flight: InFlightAccounts,
        pool: WorkerPool,
        tasks: SupervisedTaskGroup,
    ) -> None:
        self.in_flight = in_flight
        self.pool = pool
        self.tasks = tasks

    def dispatch(
        self,
        key: Hashable,
        work: Callable[[], Awaitable[Any]],
        *,
        label: str | None = None,
    ) -> bool:
        """Spawn ``work`` for ``key`` unless the key is already in flight.

        Returns True when a task was spawned and False when the account was
        skipped because another run still holds it.
        """
        if not self.in_flight.acquire(key):
            logger.info("[%s] %s already processing, skipping", self.pool.name, label or key)
            return False

        async def _guarded() -> Any:
            try:
                return await self.pool.run(work)
            finally:
                self.in_flight.release(key)

        try:
            self.tasks.spawn(_guarded(), name=f"{self.pool.name}:{key}")
        except RuntimeError:
            self.in_flight.release(key)
            raise
        return True
