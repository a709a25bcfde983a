# src/comment_sentry/models/review.py
"""Models for human review decisions and the precedents they produce."""

from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow
from comment_sentry.db.vector import Embedding


class ReviewAction(Base):
    """Append-only record of a reviewer's decision on a comment."""

    __tablename__ = "review_action"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    comment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("comment.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    reviewer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    similarity_threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    custom_filter_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("custom_filter.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Precedent(Base):
    """Embedding plus human verdict, replayed onto near-duplicate comments."""

    __tablename__ = "precedent"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    comment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("comment.id", ondelete="CASCADE"),
        nullable=False,
    )
    review_action_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("review_action.id", ondelete="CASCADE"),
        nullable=False,
    )
    verdict: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    embedding: Mapped[list[float]] = mapped_column(Embedding(), nullable=False)
    # Null means resolve the account or tenant threshold at match time.
    threshold: Mapped[float | None] = mapped_column(Float, nullable=True)
    text_snapshot: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
