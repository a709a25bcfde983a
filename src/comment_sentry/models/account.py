# src/comment_sentry/models/account.py
"""Models describing the platform accounts under moderation."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow


class PlatformAccount(Base):
    """A connected social-media account whose comments are moderated."""

    __tablename__ = "platform_account"
    __table_args__ = (UniqueConstraint("platform", "remote_id", name="uq_platform_account_remote"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Tenant that owns the account (agency, client or creator); scopes custom filters.
    owner_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    platform: Mapped[str] = mapped_column(String(32), nullable=False, default="instagram")
    remote_id: Mapped[str] = mapped_column(String(255), nullable=False)
    username: Mapped[str] = mapped_column(String(255), nullable=False)
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    follower_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_deep_sync_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class FollowerSnapshot(Base):
    """Hourly follower-count sample for an account."""

    __tablename__ = "follower_snapshot"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    follower_count: Mapped[int] = mapped_column(Integer, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
