# src/comment_sentry/models/moderation.py
"""Models recording moderation decisions, their evidence and per-account settings."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow


class ModerationDecision(Base):
    """Append-only record of one classification event for a comment.

    The most recent decision for a comment is the active one; re-classification
    appends a new row instead of editing an old one.
    """

    __tablename__ = "moderation_decision"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    comment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("comment.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    rationale: Mapped[str] = mapped_column(Text, nullable=False)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False)
    risk_formula: Mapped[str | None] = mapped_column(Text, nullable=True)
    model_name: Mapped[str] = mapped_column(String(100), nullable=False)
    action_taken: Mapped[str] = mapped_column(String(16), nullable=False)
    # True when classification fell back to the safe default verdict.
    is_degraded_mode: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    injection_suspected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class EvidenceRecord(Base):
    """Immutable snapshot supporting a moderation decision."""

    __tablename__ = "evidence_record"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("moderation_decision.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    # Copied from the comment so the record stays readable after later edits.
    raw_text: Mapped[str] = mapped_column(Text, nullable=False)
    raw_commenter_id: Mapped[str] = mapped_column(String(255), nullable=False)
    raw_commenter_username: Mapped[str] = mapped_column(String(255), nullable=False)
    request_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    response_payload: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    formula_inputs: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    platform_confirmation: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class ModerationSettings(Base):
    """Threshold overrides for one account, or the global row when account_id is null."""

    __tablename__ = "moderation_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        unique=True,
        nullable=True,
    )
    global_threshold: Mapped[int] = mapped_column(Integer, nullable=False, default=70)
    confidence_delete_threshold: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.90
    )
    confidence_hide_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=0.70)
    # Null means derive the threshold from the tenant's embedding distribution.
    similarity_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    # {"spam": {"auto_delete": true, "threshold": 80}, ...}
    category_overrides: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
