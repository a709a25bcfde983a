# src/comment_sentry/models/__init__.py
"""SQLAlchemy models for the Comment Sentry application."""

from .account import FollowerSnapshot, PlatformAccount
from .comment import Comment
from .custom_filter import CustomFilter
from .lists import WatchlistDetection, WatchlistEntry, WhitelistEntry
from .moderation import EvidenceRecord, ModerationDecision, ModerationSettings
from .post import Post
from .review import Precedent, ReviewAction
from .suspicious_account import ExtractedIdentifier, SuspiciousAccount

__all__ = [
    "PlatformAccount", "FollowerSnapshot",
    "Comment",
    "CustomFilter",
    "WhitelistEntry", "WatchlistEntry", "WatchlistDetection",
    "ModerationDecision", "EvidenceRecord", "ModerationSettings",
    "Post",
    "ReviewAction", "Precedent",
    "SuspiciousAccount", "ExtractedIdentifier",
]
