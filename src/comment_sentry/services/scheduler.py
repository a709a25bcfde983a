"""Periodic triggers feeding the diff engine.

Three independent loops run while the scheduler is started:

- poll: hybrid sync of every active account, every ``POLL_INTERVAL_SECONDS``;
- deep sweep: deep sync of every active account once a day at ``DEEP_SYNC_HOUR``;
- followers: hourly follower-count snapshots plus the embedding backfill.

A tick only dispatches work and returns; the per-account runs continue in
the background under the coordinator's locks and pools. Poll and deep sweep
share one lock set so an account is never synced twice at once.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta
from functools import partial
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from comment_sentry.core.enums import SyncMode
from comment_sentry.core.settings import settings
from comment_sentry.db.session import SessionLocal
from comment_sentry.models import FollowerSnapshot, PlatformAccount
from comment_sentry.services.coordinator import (
    AccountDispatcher,
    InFlightAccounts,
    SupervisedTaskGroup,
    WorkerPool,
)
from comment_sentry.services.diff_engine import CommentDiffEngine
from comment_sentry.services.pipeline import ModerationPipeline
from comment_sentry.services.platform import (
    PlatformClient,
    PlatformError,
    PlatformPermissionError,
    get_platform_client,
)
from comment_sentry.services.queue import ClassificationQueue
from comment_sentry.services.similarity import EmbeddingError, SimilarityEngine

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 30.0
BACKFILL_KEY = "embedding-backfill"


def seconds_until_hour(now: datetime, hour: int) -> float:
    """Seconds from ``now`` until the next local ``hour``:00."""
    target = now.replace(hour=hour, minute=0, second=0, microsecond=0)
    if target <= now:
        target += timedelta(days=1)
    return (target - now).total_seconds()


class ModerationScheduler:
    """Owns the periodic loops, the worker pools and the classification queue."""

    def __init__(
        self,
        diff_engine: CommentDiffEngine | None = None,
        queue: ClassificationQueue | None = None,
        client: PlatformClient | None = None,
        similarity: SimilarityEngine | None = None,
        db_session: Session | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Initialize the scheduler.

        Args:
            diff_engine: Engine used for account syncs. Built on ``queue`` if None.
            queue: Classification queue. Built around a ModerationPipeline if None.
            client: Platform client for follower counts. If None, uses the global client.
            similarity: Engine used for the embedding backfill.
            db_session: Optional database session. If None, creates one per tick.
            now: Local clock used to place the daily deep sweep.
        """
        self.client = client or get_platform_client()
        self.similarity = similarity or SimilarityEngine()
        if queue is None:
            pipeline = ModerationPipeline(similarity=self.similarity)
            queue = ClassificationQueue(pipeline.moderate_comment)
        self.queue = queue
        self.diff_engine = diff_engine or CommentDiffEngine(client=self.client, enqueue=queue.enqueue)
        self._db_session = db_session
        self._now = now

        self.tasks = SupervisedTaskGroup("scheduler")
        sync_locks = InFlightAccounts("sync")
        self.poll = AccountDispatcher(
            sync_locks, WorkerPool("poll", settings.heavy_pool_size), self.tasks
        )
        self.deep = AccountDispatcher(
            sync_locks, WorkerPool("deep-sync", settings.deep_pool_size), self.tasks
        )
        self.light = AccountDispatcher(
            InFlightAccounts("followers"),
            WorkerPool("followers", settings.light_pool_size),
            self.tasks,
        )

        self._loops: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()
        self.last_poll_at: datetime | None = None
        self.last_deep_sync_at: datetime | None = None
        self.last_follower_run_at: datetime | None = None

    @property
    def running(self) -> bool:
        return any(not loop.done() for loop in self._loops)

    async def start(self) -> None:
        """Start the queue and every enabled loop; each loop ticks once immediately."""
        if self.running:
            return
        self._stopping.clear()
        await self.queue.start()

        if settings.poll_enabled:
            self._loops.append(
                asyncio.create_task(
                    self._every(settings.effective_poll_interval, self.poll_tick), name="poll-loop"
                )
            )
        if settings.deep_sync_enabled:
            self._loops.append(asyncio.create_task(self._daily_deep_sync(), name="deep-sync-loop"))
        if settings.follower_tracking_enabled:
            self._loops.append(
                asyncio.create_task(
                    self._every(settings.effective_follower_interval, self.follower_tick),
                    name="follower-loop",
                )
            )
        logger.info("Scheduler started with %d loops", len(self._loops))

    async def stop(self) -> None:
        """Stop the loops, let in-flight account runs finish, then stop the queue."""
        self._stopping.set()
        if self._loops:
            await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []
        await self.tasks.shutdown(timeout=SHUTDOWN_GRACE_SECONDS)
        await self.queue.stop()
        logger.info("Scheduler stopped")

    async def _every(self, interval: float, tick: Callable[[], int]) -> None:
        while not self._stopping.is_set():
            try:
                tick()
            except SQLAlchemyError as e:
                logger.error("Scheduler tick %s failed: %s", tick.__name__, e, exc_info=True)
            if await self._sleep(interval):
                return

    async def _daily_deep_sync(self) -> None:
        while not self._stopping.is_set():
            delay = seconds_until_hour(self._now(), settings.deep_sync_hour)
            logger.info("Next deep sync in %.0f seconds", delay)
            if await self._sleep(delay):
                return
            try:
                self.deep_tick()
            except SQLAlchemyError as e:
                logger.error("Deep sync tick failed: %s", e, exc_info=True)

    async def _sleep(self, seconds: float) -> bool:
        """Wait ``seconds`` or until stopped; True when stopping."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    def _active_accounts(self) -> list[tuple[int, str]]:
        if self._db_session is not None:
            return self._load_accounts(self._db_session)
        with SessionLocal() as db:
            return self._load_accounts(db)

    @staticmethod
    def _load_accounts(db: Session) -> list[tuple[int, str]]:
        rows = (
            db.query(PlatformAccount.id, PlatformAccount.username)
            .filter(PlatformAccount.is_active.is_(True), PlatformAccount.access_token.is_not(None))
            .order_by(PlatformAccount.id)
            .all()
        )
        return [(row[0], row[1]) for row in rows]

    def _fan_out(
        self,
        label: str,
        dispatcher: AccountDispatcher,
        work: Callable[[int], Awaitable[Any]],
    ) -> int:
        accounts = self._active_accounts()
        dispatched = 0
        for account_id, username in accounts:
            if dispatcher.dispatch(account_id, partial(work, account_id), label=username):
                dispatched += 1
        skipped = len(accounts) - dispatched
        logger.info(
            "[%s] dispatched %d accounts (%d still processing)", label, dispatched, skipped
        )
        return dispatched

    def poll_tick(self) -> int:
        """Dispatch a hybrid sync for every active account not already in flight."""
        self.last_poll_at = self._now()
        return self._fan_out("poll", self.poll, partial(self._sync, mode=SyncMode.HYBRID))

    def deep_tick(self) -> int:
        """Dispatch a deep sync for every active account not already in flight."""
        self.last_deep_sync_at = self._now()
        return self._fan_out("deep-sync", self.deep, partial(self._sync, mode=SyncMode.DEEP))

    def follower_tick(self) -> int:
        """Dispatch follower snapshots and one embedding backfill run."""
        self.last_follower_run_at = self._now()
        dispatched = self._fan_out("followers", self.light, self._record_followers)
        self.light.dispatch(BACKFILL_KEY, self._backfill_embeddings, label="embedding backfill")
        return dispatched

    async def trigger_sync(self, account_id: int, mode: SyncMode = SyncMode.HYBRID) -> bool:
        """Dispatch one account's sync now; False when it is already in flight."""
        if not self.queue.running:
            await self.queue.start()
        dispatcher = self.deep if mode == SyncMode.DEEP else self.poll
        return dispatcher.dispatch(
            account_id, partial(self._sync, account_id, mode=mode), label=f"account {account_id}"
        )

    async def _sync(self, account_id: int, mode: SyncMode) -> None:
        try:
            await self.diff_engine.sync_account(account_id, mode)
        except PlatformPermissionError as e:
            logger.warning("Account %s credential rejected, run aborted: %s", account_id, e)
        except PlatformError as e:
            logger.warning("Account %s %s sync failed: %s", account_id, mode.value, e)

    async def _record_followers(self, account_id: int) -> None:
        if self._db_session is not None:
            await self._record_followers_with_session(self._db_session, account_id)
            return
        with SessionLocal() as db:
            await self._record_followers_with_session(db, account_id)

    async def _record_followers_with_session(self, db: Session, account_id: int) -> None:
        account = db.get(PlatformAccount, account_id)
        if account is None or not account.access_token:
            return
        try:
            count = await self.client.get_follower_count(account.remote_id, account.access_token)
        except PlatformError as e:
            logger.warning("Follower count for %s failed: %s", account.username, e)
            return
        if count is None:
            return
        account.follower_count = count
        db.add(FollowerSnapshot(account_id=account.id, follower_count=count))
        db.commit()

    async def _backfill_embeddings(self) -> None:
        if not self.similarity.embeddings.enabled:
            return
        try:
            if self._db_session is not None:
                await self.similarity.generate_missing_embeddings(self._db_session)
            else:
                with SessionLocal() as db:
                    await self.similarity.generate_missing_embeddings(db)
        except EmbeddingError as e:
            logger.warning("Embedding backfill failed: %s", e)

    def status(self) -> dict[str, Any]:
        """Snapshot of loop, pool and queue state."""
        return {
            "running": self.running,
            "background_tasks": len(self.tasks),
            "pools": {
                dispatcher.pool.name: {"size": dispatcher.pool.size, "active": dispatcher.pool.active}
                for dispatcher in (self.poll, self.deep, self.light)
            },
            "queue": {
                "running": self.queue.running,
                "size": self.queue.size,
                "processed": self.queue.processed,
                "failed": self.queue.failed,
            },
            "last_poll_at": self.last_poll_at,
            "last_deep_sync_at": self.last_deep_sync_at,
            "last_follower_run_at": self.last_follower_run_at,
        }


class _ModerationSchedulerSingleton:
    """Singleton wrapper for ModerationScheduler."""

    _instance: ModerationScheduler | None = None

    @classmethod
    def get_instance(cls) -> ModerationScheduler:
        if cls._instance is None:
            cls._instance = ModerationScheduler()
        return cls._instance


def get_scheduler() -> ModerationScheduler:
    """Return the process-wide scheduler instance."""
    return _ModerationSchedulerSingleton.get_instance()
