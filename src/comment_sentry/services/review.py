"""Human review of moderated comments.

Reviewers list comments by filter and submit one of six actions. The
"this" actions apply to the single comment. The "similar" actions also
store a Precedent so near-duplicates are decided without the classifier,
and the auto-hide/auto-delete variants additionally mint a CustomFilter
from a generated prompt.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from comment_sentry.core.enums import (
    ActionTaken,
    Category,
    ModerationStatus,
    PrecedentVerdict,
    ReviewActionType,
    ReviewFilter,
    can_transition,
)
from comment_sentry.core.settings import settings
from comment_sentry.db.time import utcnow
from comment_sentry.models import (
    Comment,
    CustomFilter,
    ModerationDecision,
    PlatformAccount,
    Post,
    Precedent,
    ReviewAction,
)
from comment_sentry.services.actions import ActionExecutor, ActionOutcome
from comment_sentry.services.classification import ClassificationEngine, get_classification_engine
from comment_sentry.services.platform import get_platform_client
from comment_sentry.services.similarity import SimilarComment, SimilarityEngine

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
DEFAULT_SIMILAR_LIMIT = 20

_TARGET_STATUS = {
    ReviewActionType.ALLOW_THIS: ModerationStatus.REVIEWED_ALLOWED,
    ReviewActionType.ALLOW_SIMILAR: ModerationStatus.REVIEWED_ALLOWED,
    ReviewActionType.HIDE_THIS: ModerationStatus.REVIEWED_HIDDEN,
    ReviewActionType.AUTO_HIDE_SIMILAR: ModerationStatus.REVIEWED_HIDDEN,
    ReviewActionType.DELETE_THIS: ModerationStatus.REVIEWED_DELETED,
    ReviewActionType.AUTO_DELETE_SIMILAR: ModerationStatus.REVIEWED_DELETED,
}

_SIMILAR_VERDICT = {
    ReviewActionType.ALLOW_SIMILAR: PrecedentVerdict.ALLOW,
    ReviewActionType.AUTO_HIDE_SIMILAR: PrecedentVerdict.HIDE,
    ReviewActionType.AUTO_DELETE_SIMILAR: PrecedentVerdict.DELETE,
}


class ReviewError(RuntimeError):
    """Base exception for review failures."""


class CommentNotFoundError(ReviewError):
    """The reviewed comment does not exist."""


class InvalidTransitionError(ReviewError):
    """The comment's current status does not accept this review."""


class ReviewPlatformError(ReviewError):
    """The platform rejected the call a review required."""


@dataclass(frozen=True)
class ReviewItem:
    """A listed comment with its latest decision and owning account."""

    comment: Comment
    decision: ModerationDecision | None
    post: Post
    account: PlatformAccount


@dataclass(frozen=True)
class ReviewOutcome:
    """What submitting a review changed."""

    review_action_id: int
    comment_id: int
    status: ModerationStatus
    custom_filter_id: int | None = None
    precedent_id: int | None = None


def filter_name(action: str, text: str) -> str:
    """Display name for a filter minted from a review."""
    return f'Auto-{action} similar to: "{text[:50]}..."'


class ReviewService:
    """Lists comments for review and applies reviewer decisions."""

    def __init__(
        self,
        classifier: ClassificationEngine | None = None,
        similarity: SimilarityEngine | None = None,
        executor: ActionExecutor | None = None,
    ) -> None:
        self.classifier = classifier or get_classification_engine()
        self.similarity = similarity or SimilarityEngine()
        self.executor = executor or ActionExecutor(get_platform_client())

    def list_for_review(
        self,
        db: Session,
        review_filter: ReviewFilter = ReviewFilter.ALL,
        *,
        account_id: int | None = None,
        owner_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[ReviewItem]:
        """Comments matching ``review_filter``, newest first.

        ``all`` and ``flagged`` return comments whose latest decision flagged
        them and that are still visible and not allowed. ``unreviewed`` narrows
        that to comments nobody has reviewed yet.
        """
        limit = max(1, min(MAX_PAGE_SIZE, limit))
        latest = (
            select(ModerationDecision.comment_id, func.max(ModerationDecision.id).label("decision_id"))
            .group_by(ModerationDecision.comment_id)
            .subquery()
        )

        query = (
            db.query(Comment, ModerationDecision, Post, PlatformAccount)
            .join(Post, Comment.post_id == Post.id)
            .join(PlatformAccount, Post.account_id == PlatformAccount.id)
            .outerjoin(latest, latest.c.comment_id == Comment.id)
            .outerjoin(ModerationDecision, ModerationDecision.id == latest.c.decision_id)
            .filter(PlatformAccount.is_active.is_(True))
        )
        if account_id is not None:
            query = query.filter(Post.account_id == account_id)
        if owner_id is not None:
            query = query.filter(PlatformAccount.owner_id == owner_id)

        if review_filter == ReviewFilter.HIDDEN:
            query = query.filter(Comment.is_hidden.is_(True), Comment.is_deleted.is_(False))
        elif review_filter == ReviewFilter.DELETED:
            query = query.filter(Comment.is_deleted.is_(True))
        else:
            query = query.filter(
                ModerationDecision.action_taken == ActionTaken.FLAGGED.value,
                Comment.is_deleted.is_(False),
                Comment.is_hidden.is_(False),
                Comment.is_allowed.is_(False),
            )
            if review_filter == ReviewFilter.UNREVIEWED:
                query = query.filter(Comment.reviewed_at.is_(None))

        rows = (
            query.order_by(Comment.commented_at.desc(), Comment.id.desc())
            .offset(max(0, offset))
            .limit(limit)
            .all()
        )
        return [ReviewItem(comment=c, decision=d, post=p, account=a) for c, d, p, a in rows]

    async def find_similar(
        self,
        db: Session,
        comment_id: int,
        *,
        threshold: float | None = None,
        limit: int = DEFAULT_SIMILAR_LIMIT,
    ) -> list[SimilarComment]:
        """Near-duplicates of a comment written by other commenters."""
        comment = db.get(Comment, comment_id)
        if comment is None:
            raise CommentNotFoundError(f"Comment {comment_id} not found")
        if await self.similarity.ensure_embedding(db, comment) is None:
            return []
        db.commit()
        return self.similarity.find_similar_comments(
            db,
            comment_id,
            limit=limit,
            min_similarity=self.similarity_threshold(threshold),
        )

    @staticmethod
    def similarity_threshold(threshold: float | None) -> float:
        return settings.review_similarity_threshold if threshold is None else threshold

    async def submit_review(
        self,
        db: Session,
        comment_id: int,
        action: ReviewActionType,
        reviewer_id: str,
        *,
        similarity_threshold: float | None = None,
        notes: str | None = None,
        category: str | None = None,
    ) -> ReviewOutcome:
        """Apply a reviewer decision.

        Raises:
            CommentNotFoundError: no such comment.
            InvalidTransitionError: the comment's status does not accept review.
            ReviewPlatformError: the platform rejected the hide/unhide/delete.
        """
        comment = db.get(Comment, comment_id)
        if comment is None:
            raise CommentNotFoundError(f"Comment {comment_id} not found")

        target = _TARGET_STATUS[action]
        if not can_transition(comment.moderation_status, target):
            raise InvalidTransitionError(
                f"Comment {comment_id} is {comment.moderation_status}; cannot apply {action.value}"
            )

        post = db.get(Post, comment.post_id)
        account = db.get(PlatformAccount, post.account_id)

        outcome = await self._apply_on_platform(comment, action, account.access_token)
        if outcome is not None and not outcome.success:
            # Keep the recorded *_error, leave the review unapplied.
            db.commit()
            raise ReviewPlatformError(outcome.error or f"Platform rejected {outcome.action}")

        now = utcnow()
        comment.reviewed_at = now
        comment.review_action = action.value
        comment.moderation_status = target.value
        if target == ModerationStatus.REVIEWED_ALLOWED:
            comment.is_allowed = True

        resolved_category = self._resolve_category(db, comment, category)
        custom_filter: CustomFilter | None = None
        if action in (ReviewActionType.AUTO_HIDE_SIMILAR, ReviewActionType.AUTO_DELETE_SIMILAR):
            custom_filter = await self._create_filter(db, comment, account, action, resolved_category)

        review = ReviewAction(
            comment_id=comment.id,
            action=action.value,
            reviewer_id=reviewer_id,
            similarity_threshold=similarity_threshold,
            custom_filter_id=custom_filter.id if custom_filter else None,
            notes=notes,
        )
        db.add(review)
        db.flush()

        precedent: Precedent | None = None
        verdict = _SIMILAR_VERDICT.get(action)
        if verdict is not None:
            precedent = await self._create_precedent(
                db, comment, account, review, verdict, resolved_category, similarity_threshold
            )

        db.commit()
        logger.info(
            "Review %s applied to comment %s by %s", action.value, comment.remote_id, reviewer_id
        )
        return ReviewOutcome(
            review_action_id=review.id,
            comment_id=comment.id,
            status=target,
            custom_filter_id=custom_filter.id if custom_filter else None,
            precedent_id=precedent.id if precedent else None,
        )

    async def _apply_on_platform(
        self, comment: Comment, action: ReviewActionType, token: str | None
    ) -> ActionOutcome | None:
        target = _TARGET_STATUS[action]
        if target == ModerationStatus.REVIEWED_ALLOWED:
            if comment.is_hidden:
                return await self.executor.unhide(comment, token)
            return None
        if target == ModerationStatus.REVIEWED_HIDDEN:
            if comment.is_hidden:
                return None
            return await self.executor.hide(comment, token)
        return await self.executor.delete(comment, token)

    @staticmethod
    def _resolve_category(db: Session, comment: Comment, requested: str | None) -> Category:
        parsed = Category.parse(requested)
        if parsed is not None and parsed is not Category.BENIGN:
            return parsed
        latest = (
            db.query(ModerationDecision.category)
            .filter(ModerationDecision.comment_id == comment.id)
            .order_by(ModerationDecision.id.desc())
            .limit(1)
            .scalar()
        )
        parsed = Category.parse(latest)
        if parsed is not None and parsed is not Category.BENIGN:
            return parsed
        return Category.SPAM

    async def _create_filter(
        self,
        db: Session,
        comment: Comment,
        account: PlatformAccount,
        action: ReviewActionType,
        category: Category,
    ) -> CustomFilter:
        kind = "delete" if action == ReviewActionType.AUTO_DELETE_SIMILAR else "hide"
        prompt = await self.classifier.generate_filter_prompt(comment.text, category.value, kind)
        custom_filter = CustomFilter(
            owner_id=account.owner_id,
            account_id=None,
            name=filter_name(kind, comment.text),
            prompt=prompt,
            description=f"Created from review of comment {comment.id}",
            category=category.value,
            auto_hide=kind == "hide",
            auto_delete=kind == "delete",
            auto_flag=False,
            is_enabled=True,
        )
        db.add(custom_filter)
        db.flush()
        return custom_filter

    async def _create_precedent(
        self,
        db: Session,
        comment: Comment,
        account: PlatformAccount,
        review: ReviewAction,
        verdict: PrecedentVerdict,
        category: Category,
        threshold: float | None,
    ) -> Precedent | None:
        embedding = await self.similarity.ensure_embedding(db, comment)
        if not embedding:
            logger.warning(
                "Comment %s has no embedding; %s precedent not stored", comment.remote_id, verdict.value
            )
            return None
        precedent = Precedent(
            account_id=account.id,
            comment_id=comment.id,
            review_action_id=review.id,
            verdict=verdict.value,
            category=None if verdict == PrecedentVerdict.ALLOW else category.value,
            embedding=list(embedding),
            threshold=threshold,
            text_snapshot=comment.text,
        )
        db.add(precedent)
        db.flush()
        return precedent
