"""Tests for the periodic sync scheduler."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from comment_sentry.core.enums import SyncMode
from comment_sentry.core.settings import settings
from comment_sentry.models import FollowerSnapshot
from comment_sentry.services.diff_engine import CommentDiffEngine, SyncResult
from comment_sentry.services.platform import PlatformPermissionError
from comment_sentry.services.queue import ClassificationQueue
from comment_sentry.services.scheduler import ModerationScheduler, seconds_until_hour
from comment_sentry.services.similarity import SimilarityEngine

FIXED_NOW = datetime(2024, 6, 1, 2, 30)


@pytest.fixture
def diff_engine() -> AsyncMock:
    engine = AsyncMock(spec=CommentDiffEngine)
    engine.sync_account.return_value = SyncResult()
    return engine


@pytest.fixture
def scheduler(diff_engine, mock_platform_client, mock_embeddings, db_session) -> ModerationScheduler:
    return ModerationScheduler(
        diff_engine=diff_engine,
        queue=ClassificationQueue(AsyncMock(), concurrency=1),
        client=mock_platform_client,
        similarity=SimilarityEngine(mock_embeddings),
        db_session=db_session,
        now=lambda: FIXED_NOW,
    )


def test_seconds_until_hour() -> None:
    assert seconds_until_hour(datetime(2024, 6, 1, 2, 30), 3) == 1800
    assert seconds_until_hour(datetime(2024, 6, 1, 3, 0), 3) == 86400
    assert seconds_until_hour(datetime(2024, 6, 1, 4, 0), 3) == 23 * 3600


@pytest.mark.asyncio
async def test_poll_tick_dispatches_active_accounts(scheduler, diff_engine, make_account) -> None:
    first = make_account()
    second = make_account()
    make_account(is_active=False)
    make_account(access_token=None)

    assert scheduler.poll_tick() == 2
    await scheduler.tasks.wait()

    synced = sorted(call.args for call in diff_engine.sync_account.await_args_list)
    assert synced == [(first.id, SyncMode.HYBRID), (second.id, SyncMode.HYBRID)]
    assert scheduler.last_poll_at == FIXED_NOW


@pytest.mark.asyncio
async def test_account_in_flight_is_skipped_by_deep_sweep(scheduler, diff_engine, make_account) -> None:
    busy = make_account()
    idle = make_account()
    scheduler.poll.in_flight.acquire(busy.id)

    assert scheduler.deep_tick() == 1
    await scheduler.tasks.wait()

    diff_engine.sync_account.assert_awaited_once_with(idle.id, SyncMode.DEEP)
    scheduler.poll.in_flight.release(busy.id)


@pytest.mark.asyncio
async def test_overlapping_ticks_do_not_double_dispatch(scheduler, diff_engine, make_account) -> None:
    make_account()
    release = asyncio.Event()

    async def slow_sync(account_id, mode):
        await release.wait()
        return SyncResult()

    diff_engine.sync_account.side_effect = slow_sync

    assert scheduler.poll_tick() == 1
    assert scheduler.poll_tick() == 0
    release.set()
    await scheduler.tasks.wait()

    assert diff_engine.sync_account.await_count == 1


@pytest.mark.asyncio
async def test_trigger_sync_starts_queue_and_reports_in_flight(scheduler, diff_engine, account) -> None:
    release = asyncio.Event()

    async def slow_sync(account_id, mode):
        await release.wait()
        return SyncResult()

    diff_engine.sync_account.side_effect = slow_sync

    assert await scheduler.trigger_sync(account.id, SyncMode.DEEP) is True
    assert scheduler.queue.running is True
    assert await scheduler.trigger_sync(account.id) is False

    release.set()
    await scheduler.stop()
    diff_engine.sync_account.assert_awaited_once_with(account.id, SyncMode.DEEP)


@pytest.mark.asyncio
async def test_permission_error_is_contained(scheduler, diff_engine, account) -> None:
    diff_engine.sync_account.side_effect = PlatformPermissionError("token expired")

    scheduler.poll_tick()
    await scheduler.tasks.wait()

    assert scheduler.poll.in_flight.acquire(account.id) is True


@pytest.mark.asyncio
async def test_follower_tick_records_snapshot_and_backfills(
    scheduler, mock_platform_client, mock_embeddings, db_session, account, make_comment
) -> None:
    mock_platform_client.get_follower_count.return_value = 1500
    comment = make_comment()

    assert scheduler.follower_tick() == 1
    await scheduler.tasks.wait()

    snapshot = db_session.query(FollowerSnapshot).one()
    assert snapshot.account_id == account.id
    assert snapshot.follower_count == 1500
    assert account.follower_count == 1500
    mock_platform_client.get_follower_count.assert_awaited_once_with(account.remote_id, account.access_token)
    assert comment.embedding == [1.0, 0.0, 0.0]


@pytest.mark.asyncio
async def test_status_reports_pools_and_queue(scheduler) -> None:
    status = scheduler.status()

    assert status["running"] is False
    assert set(status["pools"]) == {"poll", "deep-sync", "followers"}
    assert status["pools"]["poll"]["size"] == settings.heavy_pool_size
    assert status["queue"] == {"running": False, "size": 0, "processed": 0, "failed": 0}


@pytest.mark.asyncio
async def test_start_ticks_enabled_loops_then_stops(scheduler, diff_engine, account, monkeypatch) -> None:
    monkeypatch.setattr(settings, "deep_sync_enabled", False)
    monkeypatch.setattr(settings, "follower_tracking_enabled", False)

    await scheduler.start()
    assert scheduler.running is True
    await asyncio.sleep(0)
    await scheduler.tasks.wait()
    await scheduler.stop()

    assert scheduler.running is False
    diff_engine.sync_account.assert_awaited_once_with(account.id, SyncMode.HYBRID)
