# src/comment_sentry/models/lists.py
"""Owner-curated whitelist and watchlist of commenters and identifiers."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow


class WhitelistEntry(Base):
    """A commenter or identifier the owner trusts; matches bypass moderation."""

    __tablename__ = "whitelist_entry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    # Null means every account of the owner.
    account_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        nullable=True,
    )
    # Lower-cased; usernames are stored without a leading "@".
    identifier: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    identifier_type: Mapped[str] = mapped_column(String(16), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_auto_added: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class WatchlistEntry(Base):
    """A known bad actor whose comments, or mentions of whom, are removed."""

    __tablename__ = "watchlist_entry"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    account_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        nullable=True,
    )
    username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    remote_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    threat_level: Mapped[str] = mapped_column(String(16), nullable=False, default="MEDIUM")
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    auto_delete_comments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    monitor_mentions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    auto_delete_mentions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    times_detected: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_detected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class WatchlistDetection(Base):
    """One comment caught by a watchlist entry."""

    __tablename__ = "watchlist_detection"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entry_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("watchlist_entry.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    comment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("comment.id", ondelete="CASCADE"),
        nullable=False,
    )
    # DIRECT_COMMENT or USERNAME_MENTION.
    detection_type: Mapped[str] = mapped_column(String(24), nullable=False)
    matched_keyword: Mapped[str | None] = mapped_column(String(500), nullable=True)
    comment_text: Mapped[str] = mapped_column(Text, nullable=False)
    commenter_id: Mapped[str] = mapped_column(String(255), nullable=False)
    commenter_username: Mapped[str] = mapped_column(String(255), nullable=False)
    action_taken: Mapped[str] = mapped_column(String(32), nullable=False)
    action_succeeded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
