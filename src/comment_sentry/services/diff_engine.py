"""Incremental synchronization of remote posts and comments.

This module provides the CommentDiffEngine class that compares what the
platform reports for an account against stored state and persists the
difference. New comments and comments whose text changed are handed to the
classification queue; visibility-only changes are stored without
re-classification.

Two lookup modes exist:

- hybrid: the most recent ``deep_check_limit`` posts are always inspected
  (Deep Check); older posts in the window are inspected only when the
  platform-reported comment count differs from the stored one (Signal Check);
- deep: a much larger window is inspected regardless of counts, catching
  edits that leave the count unchanged. This costs one comment listing per
  post in the window on every run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from comment_sentry.core.enums import ModerationStatus, SyncMode
from comment_sentry.core.settings import settings
from comment_sentry.db.session import SessionLocal
from comment_sentry.db.time import utcnow
from comment_sentry.models import Comment, PlatformAccount, Post
from comment_sentry.services.platform import (
    PlatformClient,
    PlatformError,
    PlatformPermissionError,
    RemoteComment,
    RemotePost,
    get_platform_client,
)

logger = logging.getLogger(__name__)

EnqueueSink = Callable[[int], object]


@dataclass
class SyncResult:
    """Counts produced by one account sync."""

    posts_updated: int = 0
    comments_new: int = 0
    comments_updated: int = 0
    failed_posts: list[str] = field(default_factory=list)


@dataclass
class _PostDiff:
    new: int = 0
    updated: int = 0
    to_classify: list[int] = field(default_factory=list)


class CommentDiffEngine:
    """Computes and stores new or changed comments for one account at a time."""

    def __init__(
        self,
        client: PlatformClient | None = None,
        enqueue: EnqueueSink | None = None,
        db_session: Session | None = None,
    ) -> None:
        """Initialize the diff engine.

        Args:
            client: Optional platform client. If None, uses the global client.
            enqueue: Called with each comment id that needs classification.
            db_session: Optional database session. If None, creates one per sync.
        """
        self.client = client or get_platform_client()
        self.enqueue = enqueue
        self._db_session = db_session

    async def sync_account(self, account_id: int, mode: SyncMode = SyncMode.HYBRID) -> SyncResult:
        """Synchronize one account.

        Raises:
            PlatformPermissionError: the account's credential was rejected.
            PlatformError: the post listing itself failed after retries.
        """
        if self._db_session is not None:
            return await self._sync_with_session(self._db_session, account_id, mode)
        with SessionLocal() as db:
            return await self._sync_with_session(db, account_id, mode)

    async def _sync_with_session(self, db: Session, account_id: int, mode: SyncMode) -> SyncResult:
        result = SyncResult()
        account = db.get(PlatformAccount, account_id)
        if account is None or not account.is_active:
            logger.warning("Account %s missing or inactive, skipping sync", account_id)
            return result
        if not account.access_token:
            logger.warning("Account %s has no access token, skipping sync", account.username)
            return result

        window = settings.deep_sync_post_limit if mode == SyncMode.DEEP else settings.hybrid_fetch_limit
        remote_posts = await self.client.list_recent_posts(account.remote_id, account.access_token, window)

        stored = {
            post.remote_id: post
            for post in db.query(Post).filter(Post.account_id == account.id).all()
        }

        for index, remote in enumerate(remote_posts):
            post = stored.get(remote.remote_id)
            is_new_post = post is None
            if post is None:
                post = self._create_post(db, account, remote)
                stored[remote.remote_id] = post
            else:
                self._refresh_post(post, remote)
            db.commit()

            if not self._should_inspect(mode, index, is_new_post, post, remote):
                continue

            try:
                diff = await self._sync_post_comments(db, post, account.access_token)
            except PlatformPermissionError:
                db.rollback()
                raise
            except PlatformError as e:
                db.rollback()
                logger.warning("Failed to sync comments for post %s: %s", remote.remote_id, e)
                result.failed_posts.append(remote.remote_id)
                continue
            except (SQLAlchemyError, ValueError, KeyError, TypeError) as e:
                db.rollback()
                logger.error(
                    "Data error syncing comments for post %s: %s", remote.remote_id, e, exc_info=True
                )
                result.failed_posts.append(remote.remote_id)
                continue

            post.comments_count = remote.comments_count
            post.last_synced_at = utcnow()
            db.commit()

            result.posts_updated += 1
            result.comments_new += diff.new
            result.comments_updated += diff.updated
            self._enqueue_all(diff.to_classify)

        now = utcnow()
        account.last_sync_at = now
        if mode == SyncMode.DEEP:
            account.last_deep_sync_at = now
        db.commit()

        logger.info(
            "[%s] %s: %d posts inspected, %d new comments, %d updated",
            mode.value,
            account.username,
            result.posts_updated,
            result.comments_new,
            result.comments_updated,
        )
        return result

    @staticmethod
    def _should_inspect(
        mode: SyncMode, index: int, is_new_post: bool, post: Post, remote: RemotePost
    ) -> bool:
        if mode == SyncMode.DEEP or is_new_post:
            return True
        if index < settings.deep_check_limit:
            return True
        return post.comments_count != remote.comments_count

    @staticmethod
    def _create_post(db: Session, account: PlatformAccount, remote: RemotePost) -> Post:
        post = Post(
            account_id=account.id,
            remote_id=remote.remote_id,
            caption=remote.caption,
            like_count=remote.like_count,
            # Stays 0 until the comments are actually inspected.
            comments_count=0,
            posted_at=remote.posted_at,
        )
        db.add(post)
        db.flush()
        return post

    @staticmethod
    def _refresh_post(post: Post, remote: RemotePost) -> None:
        post.caption = remote.caption
        post.like_count = remote.like_count
        if remote.posted_at is not None:
            post.posted_at = remote.posted_at

    async def _sync_post_comments(self, db: Session, post: Post, token: str) -> _PostDiff:
        remote_comments = await self.client.list_comments(post.remote_id, token)
        existing = {
            comment.remote_id: comment
            for comment in db.query(Comment).filter(Comment.post_id == post.id).all()
        }
        created: dict[str, Comment] = {}
        diff = _PostDiff()

        # Parents before replies regardless of delivery order.
        ordered = sorted(remote_comments, key=lambda c: c.parent_remote_id is not None)
        for remote in ordered:
            parent_id = self._resolve_parent(db, remote, existing, created)
            comment = existing.get(remote.remote_id)

            if comment is None:
                comment = Comment(
                    post_id=post.id,
                    parent_id=parent_id,
                    remote_id=remote.remote_id,
                    text=remote.text,
                    commenter_id=remote.commenter_id,
                    commenter_username=remote.commenter_username,
                    commented_at=remote.commented_at,
                    is_hidden=remote.is_hidden,
                    hidden_at=utcnow() if remote.is_hidden else None,
                    moderation_status=ModerationStatus.NEW.value,
                )
                db.add(comment)
                db.flush()
                created[remote.remote_id] = comment
                diff.new += 1
                diff.to_classify.append(comment.id)
                continue

            if parent_id is not None and comment.parent_id is None:
                comment.parent_id = parent_id

            if comment.text != remote.text:
                comment.text = remote.text
                comment.moderation_status = ModerationStatus.NEW.value
                self._apply_visibility(comment, remote)
                diff.updated += 1
                diff.to_classify.append(comment.id)
            elif comment.is_hidden != remote.is_hidden:
                self._apply_visibility(comment, remote)
                diff.updated += 1

        db.flush()
        return diff

    @staticmethod
    def _apply_visibility(comment: Comment, remote: RemoteComment) -> None:
        if comment.is_hidden == remote.is_hidden:
            return
        comment.is_hidden = remote.is_hidden
        comment.hidden_at = utcnow() if remote.is_hidden else None

    @staticmethod
    def _resolve_parent(
        db: Session,
        remote: RemoteComment,
        existing: dict[str, Comment],
        created: dict[str, Comment],
    ) -> int | None:
        parent_remote_id = remote.parent_remote_id
        if not parent_remote_id:
            return None
        parent = existing.get(parent_remote_id) or created.get(parent_remote_id)
        if parent is None:
            parent = db.query(Comment).filter(Comment.remote_id == parent_remote_id).one_or_none()
        if parent is None:
            logger.debug("Parent %s of reply %s not found", parent_remote_id, remote.remote_id)
            return None
        return parent.id

    def _enqueue_all(self, comment_ids: list[int]) -> None:
        if self.enqueue is None:
            return
        for comment_id in comment_ids:
            self.enqueue(comment_id)
