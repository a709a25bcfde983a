"""Review endpoints for the Comment Sentry API."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from comment_sentry.api.v1.dependencies import ReviewServiceDep, SessionDep
from comment_sentry.core.enums import ReviewFilter
from comment_sentry.schemas.review import (
    DecisionSummary,
    ReviewCommentResponse,
    ReviewResult,
    ReviewSubmit,
    SimilarCommentResponse,
)
from comment_sentry.services.review import (
    MAX_PAGE_SIZE,
    CommentNotFoundError,
    InvalidTransitionError,
    ReviewItem,
    ReviewPlatformError,
)

router = APIRouter(prefix="/review", tags=["review"])


def _to_response(item: ReviewItem) -> ReviewCommentResponse:
    comment = item.comment
    return ReviewCommentResponse(
        id=comment.id,
        remote_id=comment.remote_id,
        post_id=item.post.id,
        post_remote_id=item.post.remote_id,
        account_id=item.account.id,
        account_username=item.account.username,
        parent_id=comment.parent_id,
        text=comment.text,
        commenter_id=comment.commenter_id,
        commenter_username=comment.commenter_username,
        commented_at=comment.commented_at,
        moderation_status=comment.moderation_status,
        is_hidden=comment.is_hidden,
        is_deleted=comment.is_deleted,
        is_allowed=comment.is_allowed,
        reviewed_at=comment.reviewed_at,
        review_action=comment.review_action,
        decision=DecisionSummary.model_validate(item.decision) if item.decision else None,
    )


@router.get("/comments", response_model=list[ReviewCommentResponse])
async def list_comments_for_review(
    db: SessionDep,
    service: ReviewServiceDep,
    filter: ReviewFilter = Query(ReviewFilter.ALL),  # noqa: A002
    account_id: int | None = Query(None),
    owner_id: str | None = Query(None),
    limit: int = Query(50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
) -> list[ReviewCommentResponse]:
    """List moderated comments awaiting or having received review."""
    items = service.list_for_review(
        db, filter, account_id=account_id, owner_id=owner_id, limit=limit, offset=offset
    )
    return [_to_response(item) for item in items]


@router.post("/comments/{comment_id}/actions", response_model=ReviewResult)
async def submit_review_action(
    comment_id: int,
    payload: ReviewSubmit,
    db: SessionDep,
    service: ReviewServiceDep,
) -> ReviewResult:
    """Apply a reviewer decision to a comment."""
    try:
        outcome = await service.submit_review(
            db,
            comment_id,
            payload.action,
            payload.reviewer_id,
            similarity_threshold=payload.similarity_threshold,
            notes=payload.notes,
            category=payload.category,
        )
    except CommentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidTransitionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    except ReviewPlatformError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e)) from e

    return ReviewResult(
        review_action_id=outcome.review_action_id,
        comment_id=outcome.comment_id,
        status=outcome.status,
        custom_filter_id=outcome.custom_filter_id,
        precedent_id=outcome.precedent_id,
    )


@router.get("/comments/{comment_id}/similar", response_model=list[SimilarCommentResponse])
async def list_similar_comments(
    comment_id: int,
    db: SessionDep,
    service: ReviewServiceDep,
    threshold: float | None = Query(None, ge=0.0, le=1.0),
    limit: int = Query(20, ge=1, le=MAX_PAGE_SIZE),
) -> list[SimilarCommentResponse]:
    """Near-duplicates of a comment posted by other commenters."""
    try:
        matches = await service.find_similar(db, comment_id, threshold=threshold, limit=limit)
    except CommentNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    return [SimilarCommentResponse.model_validate(match) for match in matches]
