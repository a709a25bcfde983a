# src/comment_sentry/schemas/review.py
"""Review-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from comment_sentry.core.enums import ModerationStatus, ReviewActionType


class DecisionSummary(BaseModel):
    """Latest moderation decision attached to a listed comment."""

    id: int
    category: str
    severity: int
    confidence: float
    rationale: str
    risk_score: int
    action_taken: str
    model_name: str
    is_degraded_mode: bool
    injection_suspected: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewCommentResponse(BaseModel):
    """Schema for a comment returned by the review listing."""

    id: int
    remote_id: str
    post_id: int
    post_remote_id: str
    account_id: int
    account_username: str
    parent_id: int | None
    text: str
    commenter_id: str
    commenter_username: str
    commented_at: datetime | None
    moderation_status: str
    is_hidden: bool
    is_deleted: bool
    is_allowed: bool
    reviewed_at: datetime | None
    review_action: str | None
    decision: DecisionSummary | None = None


class ReviewSubmit(BaseModel):
    """Schema for submitting a review action."""

    action: ReviewActionType
    reviewer_id: str = Field(..., min_length=1, max_length=64)
    similarity_threshold: float | None = Field(
        None,
        ge=0.0,
        le=1.0,
        description="Threshold for the -SIMILAR actions; null resolves the account default",
    )
    notes: str | None = Field(None, max_length=2000)
    category: str | None = Field(None, description="Category for minted filters and precedents")


class ReviewResult(BaseModel):
    """Schema describing what a submitted review changed."""

    review_action_id: int
    comment_id: int
    status: ModerationStatus
    custom_filter_id: int | None = None
    precedent_id: int | None = None


class SimilarCommentResponse(BaseModel):
    """Schema for one near-duplicate comment."""

    comment_id: int
    commenter_id: str
    commenter_username: str
    text: str
    similarity: float

    model_config = ConfigDict(from_attributes=True)
