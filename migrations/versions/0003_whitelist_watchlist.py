"""whitelist and watchlist

Revision ID: 0003_whitelist_watchlist
Revises: 0002_pgvector_embeddings
Create Date: 2026-10-21 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0003_whitelist_watchlist"
down_revision: Union[str, Sequence[str], None] = "0002_pgvector_embeddings"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create the whitelist, watchlist and detection tables."""
    op.create_table(
        "whitelist_entry",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("identifier", sa.String(length=500), nullable=False),
        sa.Column("identifier_type", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("is_auto_added", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_whitelist_entry_owner_id", "whitelist_entry", ["owner_id"])
    op.create_index("ix_whitelist_entry_identifier", "whitelist_entry", ["identifier"])

    op.create_table(
        "watchlist_entry",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("username", sa.String(length=255), nullable=True),
        sa.Column("remote_user_id", sa.String(length=255), nullable=True),
        sa.Column("threat_level", sa.String(length=16), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("auto_delete_comments", sa.Boolean(), nullable=False),
        sa.Column("monitor_mentions", sa.Boolean(), nullable=False),
        sa.Column("auto_delete_mentions", sa.Boolean(), nullable=False),
        sa.Column("times_detected", sa.Integer(), nullable=False),
        _timestamp("last_detected_at"),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_watchlist_entry_owner_id", "watchlist_entry", ["owner_id"])

    op.create_table(
        "watchlist_detection",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("entry_id", sa.Integer(), nullable=False),
        sa.Column("comment_id", sa.Integer(), nullable=False),
        sa.Column("detection_type", sa.String(length=24), nullable=False),
        sa.Column("matched_keyword", sa.String(length=500), nullable=True),
        sa.Column("comment_text", sa.Text(), nullable=False),
        sa.Column("commenter_id", sa.String(length=255), nullable=False),
        sa.Column("commenter_username", sa.String(length=255), nullable=False),
        sa.Column("action_taken", sa.String(length=32), nullable=False),
        sa.Column("action_succeeded", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["entry_id"], ["watchlist_entry.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["comment_id"], ["comment.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_watchlist_detection_entry_id", "watchlist_detection", ["entry_id"])


def downgrade() -> None:
    """Drop the whitelist, watchlist and detection tables."""
    for table in ("watchlist_detection", "watchlist_entry", "whitelist_entry"):
        op.drop_table(table)
