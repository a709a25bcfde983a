# src/comment_sentry/models/custom_filter.py
"""Owner-authored moderation rules."""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from comment_sentry.db.session import Base
from comment_sentry.db.time import utcnow


class CustomFilter(Base):
    """Natural-language rule that overrides default classification."""

    __tablename__ = "custom_filter"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Null owner means the rule applies everywhere.
    owner_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    # Null account means every account of the owner.
    account_id: Mapped[int | None] = mapped_column(
        Integer,
        ForeignKey("platform_account.id", ondelete="CASCADE"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    auto_hide: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_delete: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_flag: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
