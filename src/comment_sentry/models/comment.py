# src/comment_sentry/models/comment.py
"""Model for comments ingested from the platform."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.core.enums import ModerationStatus
from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow
from comment_sentry.db.vector import Embedding


class Comment(Base):
    """A single remote comment or reply and its moderation state."""

    __tablename__ = "comment"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    post_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("post.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # Null for top-level comments.
    parent_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("comment.id"),
        nullable=True,
    )
    remote_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    commenter_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    commenter_username: Mapped[str] = mapped_column(String(255), nullable=False)
    commented_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Capability state flags, each with a timestamp and the last failure reason.
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delete_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_hidden: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    hidden_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    hide_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blocked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    block_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_restricted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    restricted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    restrict_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_reported: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reported_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    report_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approve_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # pgvector column on PostgreSQL, JSON array on SQLite.
    embedding: Mapped[list[float] | None] = mapped_column(Embedding(), nullable=True)

    moderation_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ModerationStatus.NEW.value
    )

    # Human review metadata.
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    review_action: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_allowed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
