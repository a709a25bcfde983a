# src/comment_sentry/models/suspicious_account.py
"""Per-commenter violation aggregates and the identifiers they used."""

from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow


class SuspiciousAccount(Base):
    """Rolling history for one commenter on one platform account."""

    __tablename__ = "suspicious_account"
    __table_args__ = (
        UniqueConstraint("account_id", "commenter_id", name="uq_suspicious_account_commenter"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    commenter_id: Mapped[str] = mapped_column(String(255), nullable=False)
    commenter_username: Mapped[str] = mapped_column(String(255), nullable=False)

    total_comments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    flagged_comments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    deleted_comments: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    blackmail_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    threat_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    harassment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    spam_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    defamation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    average_risk_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    highest_risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Comments per day since first seen.
    comment_velocity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    block_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_hide_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_delete_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_watchlisted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Hidden from listings until the commenter has a real violation.
    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ExtractedIdentifier(Base):
    """Payment handle, contact or URL pulled out of a comment."""

    __tablename__ = "extracted_identifier"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    comment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("comment.id", ondelete="CASCADE"),
        nullable=False,
    )
    suspicious_account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("suspicious_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    identifier: Mapped[str] = mapped_column(String(500), nullable=False)
    identifier_type: Mapped[str] = mapped_column(String(16), nullable=False)
    platform: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Lower-cased with separators stripped; the key used for cross-account matching.
    normalized_identifier: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
