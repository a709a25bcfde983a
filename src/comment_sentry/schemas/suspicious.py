# src/comment_sentry/schemas/suspicious.py
"""Suspicious-account Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class SuspiciousAccountResponse(BaseModel):
    """Schema for a tracked commenter."""

    id: int
    account_id: int
    commenter_id: str
    commenter_username: str
    total_comments: int
    flagged_comments: int
    deleted_comments: int
    blackmail_count: int
    threat_count: int
    harassment_count: int
    spam_count: int
    defamation_count: int
    average_risk_score: float
    highest_risk_score: int
    comment_velocity: float
    first_seen_at: datetime
    last_seen_at: datetime
    is_blocked: bool
    block_reason: str | None
    blocked_at: datetime | None
    auto_hide_enabled: bool
    auto_delete_enabled: bool
    is_watchlisted: bool

    model_config = ConfigDict(from_attributes=True)


class IdentifierClusterResponse(BaseModel):
    """Schema for a group of commenters sharing identifiers."""

    size: int
    members: list[SuspiciousAccountResponse]
    shared_identifiers: list[str]
