"""initial schema

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "0001_initial_schema"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamp(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    """Create the moderation schema."""
    op.create_table(
        "platform_account",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=False),
        sa.Column("platform", sa.String(length=32), nullable=False),
        sa.Column("remote_id", sa.String(length=255), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("access_token", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("follower_count", sa.Integer(), nullable=True),
        _timestamp("last_sync_at"),
        _timestamp("last_deep_sync_at"),
        _timestamp("created_at", nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("platform", "remote_id", name="uq_platform_account_remote"),
    )
    op.create_index("ix_platform_account_owner_id", "platform_account", ["owner_id"])

    op.create_table(
        "follower_snapshot",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("follower_count", sa.Integer(), nullable=False),
        _timestamp("recorded_at", nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_follower_snapshot_account_id", "follower_snapshot", ["account_id"])

    op.create_table(
        "post",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("remote_id", sa.String(length=255), nullable=False),
        sa.Column("caption", sa.Text(), nullable=True),
        sa.Column("like_count", sa.Integer(), nullable=False),
        sa.Column("comments_count", sa.Integer(), nullable=False),
        _timestamp("posted_at"),
        _timestamp("last_synced_at"),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("remote_id"),
    )
    op.create_index("ix_post_account_id", "post", ["account_id"])

    capability_columns = []
    for flag, verb in (
        ("deleted", "delete"),
        ("hidden", "hide"),
        ("blocked", "block"),
        ("restricted", "restrict"),
        ("reported", "report"),
        ("approved", "approve"),
    ):
        capability_columns.extend(
            [
                sa.Column(f"is_{flag}", sa.Boolean(), nullable=False),
                _timestamp(f"{flag}_at"),
                sa.Column(f"{verb}_error", sa.Text(), nullable=True),
            ]
        )

    op.create_table(
        "comment",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("post_id", sa.Integer(), nullable=False),
        sa.Column("parent_id", sa.Integer(), nullable=True),
        sa.Column("remote_id", sa.String(length=255), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("commenter_id", sa.String(length=255), nullable=False),
        sa.Column("commenter_username", sa.String(length=255), nullable=False),
        _timestamp("commented_at"),
        *capability_columns,
        sa.Column("embedding", sa.JSON(), nullable=True),
        sa.Column("moderation_status", sa.String(length=32), nullable=False),
        _timestamp("reviewed_at"),
        sa.Column("review_action", sa.String(length=32), nullable=True),
        sa.Column("is_allowed", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["post_id"], ["post.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["parent_id"], ["comment.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("remote_id"),
    )
    op.create_index("ix_comment_post_id", "comment", ["post_id"])
    op.create_index("ix_comment_commenter_id", "comment", ["commenter_id"])

    op.create_table(
        "custom_filter",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_id", sa.String(length=64), nullable=True),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("prompt", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("auto_hide", sa.Boolean(), nullable=False),
        sa.Column("auto_delete", sa.Boolean(), nullable=False),
        sa.Column("auto_flag", sa.Boolean(), nullable=False),
        sa.Column("is_enabled", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_custom_filter_owner_id", "custom_filter", ["owner_id"])

    op.create_table(
        "moderation_decision",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("comment_id", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=False),
        sa.Column("severity", sa.Integer(), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("rationale", sa.Text(), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("risk_formula", sa.Text(), nullable=True),
        sa.Column("model_name", sa.String(length=100), nullable=False),
        sa.Column("action_taken", sa.String(length=16), nullable=False),
        sa.Column("is_degraded_mode", sa.Boolean(), nullable=False),
        sa.Column("injection_suspected", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["comment_id"], ["comment.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_moderation_decision_comment_id", "moderation_decision", ["comment_id"])

    op.create_table(
        "evidence_record",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("decision_id", sa.Integer(), nullable=False),
        sa.Column("raw_text", sa.Text(), nullable=False),
        sa.Column("raw_commenter_id", sa.String(length=255), nullable=False),
        sa.Column("raw_commenter_username", sa.String(length=255), nullable=False),
        sa.Column("request_payload", sa.JSON(), nullable=True),
        sa.Column("response_payload", sa.JSON(), nullable=True),
        sa.Column("formula_inputs", sa.JSON(), nullable=True),
        sa.Column("platform_confirmation", sa.JSON(), nullable=True),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["decision_id"], ["moderation_decision.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("decision_id"),
    )

    op.create_table(
        "moderation_settings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=True),
        sa.Column("global_threshold", sa.Integer(), nullable=False),
        sa.Column("confidence_delete_threshold", sa.Float(), nullable=False),
        sa.Column("confidence_hide_threshold", sa.Float(), nullable=False),
        sa.Column("similarity_threshold", sa.Float(), nullable=True),
        sa.Column("category_overrides", sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id"),
    )

    op.create_table(
        "review_action",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("comment_id", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("reviewer_id", sa.String(length=64), nullable=False),
        sa.Column("similarity_threshold", sa.Float(), nullable=True),
        sa.Column("custom_filter_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["comment_id"], ["comment.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["custom_filter_id"], ["custom_filter.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_review_action_comment_id", "review_action", ["comment_id"])

    op.create_table(
        "precedent",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("comment_id", sa.Integer(), nullable=False),
        sa.Column("review_action_id", sa.Integer(), nullable=False),
        sa.Column("verdict", sa.String(length=16), nullable=False),
        sa.Column("category", sa.String(length=32), nullable=True),
        sa.Column("embedding", sa.JSON(), nullable=False),
        sa.Column("threshold", sa.Float(), nullable=True),
        sa.Column("text_snapshot", sa.Text(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["comment_id"], ["comment.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["review_action_id"], ["review_action.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_precedent_account_id", "precedent", ["account_id"])

    op.create_table(
        "suspicious_account",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("commenter_id", sa.String(length=255), nullable=False),
        sa.Column("commenter_username", sa.String(length=255), nullable=False),
        sa.Column("total_comments", sa.Integer(), nullable=False),
        sa.Column("flagged_comments", sa.Integer(), nullable=False),
        sa.Column("deleted_comments", sa.Integer(), nullable=False),
        sa.Column("blackmail_count", sa.Integer(), nullable=False),
        sa.Column("threat_count", sa.Integer(), nullable=False),
        sa.Column("harassment_count", sa.Integer(), nullable=False),
        sa.Column("spam_count", sa.Integer(), nullable=False),
        sa.Column("defamation_count", sa.Integer(), nullable=False),
        sa.Column("average_risk_score", sa.Float(), nullable=False),
        sa.Column("highest_risk_score", sa.Integer(), nullable=False),
        sa.Column("comment_velocity", sa.Float(), nullable=False),
        _timestamp("first_seen_at", nullable=False),
        _timestamp("last_seen_at", nullable=False),
        sa.Column("is_blocked", sa.Boolean(), nullable=False),
        sa.Column("block_reason", sa.Text(), nullable=True),
        _timestamp("blocked_at"),
        sa.Column("auto_hide_enabled", sa.Boolean(), nullable=False),
        sa.Column("auto_delete_enabled", sa.Boolean(), nullable=False),
        sa.Column("is_watchlisted", sa.Boolean(), nullable=False),
        sa.Column("is_hidden", sa.Boolean(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["platform_account.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id", "commenter_id", name="uq_suspicious_account_commenter"),
    )
    op.create_index("ix_suspicious_account_account_id", "suspicious_account", ["account_id"])

    op.create_table(
        "extracted_identifier",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("comment_id", sa.Integer(), nullable=False),
        sa.Column("suspicious_account_id", sa.Integer(), nullable=False),
        sa.Column("identifier", sa.String(length=500), nullable=False),
        sa.Column("identifier_type", sa.String(length=16), nullable=False),
        sa.Column("platform", sa.String(length=100), nullable=True),
        sa.Column("normalized_identifier", sa.String(length=500), nullable=False),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        _timestamp("created_at", nullable=False),
        sa.ForeignKeyConstraint(["comment_id"], ["comment.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(
            ["suspicious_account_id"], ["suspicious_account.id"], ondelete="CASCADE"
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_extracted_identifier_suspicious_account_id",
        "extracted_identifier",
        ["suspicious_account_id"],
    )
    op.create_index(
        "ix_extracted_identifier_normalized_identifier",
        "extracted_identifier",
        ["normalized_identifier"],
    )


def downgrade() -> None:
    """Drop the moderation schema."""
    for table in (
        "extracted_identifier",
        "suspicious_account",
        "precedent",
        "review_action",
        "moderation_settings",
        "evidence_record",
        "moderation_decision",
        "custom_filter",
        "comment",
        "post",
        "follower_snapshot",
        "platform_account",
    ):
        op.drop_table(table)
