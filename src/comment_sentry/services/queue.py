"""In-process classification job queue.

The diff engine enqueues comment ids here; a bounded set of worker tasks
feeds each id to the moderation pipeline. A job that raises is re-queued
after a short delay until it has been attempted ``max_attempts`` times.

A comment is never handled by two workers at once. Enqueueing a comment
that is mid-run marks it for a rerun, which is queued once the current run
finishes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from comment_sentry.core.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class ClassificationJob:
    """A pending moderation run for one stored comment."""

    comment_id: int
    attempt: int = 1


class ClassificationQueue:
    """Bounded-concurrency worker queue for moderation jobs."""

    def __init__(
        self,
        handler: Callable[[int], Awaitable[object]],
        *,
        concurrency: int | None = None,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ) -> None:
        self.handler = handler
        self.concurrency = concurrency or settings.effective_queue_concurrency
        self.max_attempts = max_attempts or settings.queue_max_attempts
        self.retry_delay = (
            settings.queue_retry_delay_seconds if retry_delay is None else retry_delay
        )
        self._queue: asyncio.Queue[ClassificationJob] = asyncio.Queue()
        self._pending: set[int] = set()
        self._running: set[int] = set()
        self._rerun: set[int] = set()
        self._workers: list[asyncio.Task[None]] = []
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return any(not worker.done() for worker in self._workers)

    @property
    def size(self) -> int:
        return self._queue.qsize()

    def enqueue(self, comment_id: int) -> bool:
        """Queue ``comment_id`` unless it is already waiting.

        A comment that is being handled right now is queued again after the
        current run completes.
        """
        if comment_id in self._running:
            if comment_id in self._rerun:
                return False
            logger.debug("Comment %s is being classified, rerun scheduled", comment_id)
            self._rerun.add(comment_id)
            return True
        if comment_id in self._pending:
            logger.debug("Comment %s already queued", comment_id)
            return False
        self._pending.add(comment_id)
        self._queue.put_nowait(ClassificationJob(comment_id))
        return True

    async def start(self) -> None:
        """Start the worker tasks."""
        if self.running:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"classification-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("Classification queue started with %d workers", self.concurrency)

    async def stop(self) -> None:
        """Cancel the worker tasks; queued jobs are dropped."""
        for worker in self._workers:
            worker.cancel()
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def join(self) -> None:
        """Wait until every queued job, including retries, has finished."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._process(job)
            finally:
                self._queue.task_done()

    async def _process(self, job: ClassificationJob) -> None:
        comment_id = job.comment_id
        # Running jobs are no longer pending; a fresh edit may queue the comment again.
        self._pending.discard(comment_id)
        if comment_id in self._running:
            self._rerun.add(comment_id)
            return

        self._running.add(comment_id)
        try:
            await self._run(job)
        finally:
            self._running.discard(comment_id)
            # Queued before this job is marked done so join() waits for it.
            if comment_id in self._rerun:
                self._rerun.discard(comment_id)
                if comment_id not in self._pending:
                    self._pending.add(comment_id)
                    self._queue.put_nowait(ClassificationJob(comment_id))

    async def _run(self, job: ClassificationJob) -> None:
        try:
            await self.handler(job.comment_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:  # noqa: BLE001
            if job.attempt >= self.max_attempts:
                self.failed += 1
                logger.error(
                    "Classification of comment %s failed after %d attempts: %s",
                    job.comment_id,
                    job.attempt,
                    e,
                    exc_info=True,
                )
                return
            logger.warning(
                "Classification of comment %s failed (attempt %d/%d): %s",
                job.comment_id,
                job.attempt,
                self.max_attempts,
                e,
            )
            await asyncio.sleep(self.retry_delay * job.attempt)
            if job.comment_id in self._rerun:
                # The rerun queued on completion covers this retry.
                return
            if job.comment_id not in self._pending:
                self._pending.add(job.comment_id)
                self._queue.put_nowait(ClassificationJob(job.comment_id, job.attempt + 1))
            return

        self.processed += 1
