# src/comment_sentry/models/post.py
"""Model for remote posts mirrored from the platform."""

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow


class Post(Base):
    """A post (media item) belonging to a platform account."""

    __tablename__ = "post"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    remote_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    caption: Mapped[str | None] = mapped_column(Text, nullable=True)
    like_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Last platform-reported count; drives the Signal Check in hybrid sync.
    comments_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
