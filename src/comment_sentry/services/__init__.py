# src/comment_sentry/services/__init__.py
"""Business logic services for the Comment Sentry application."""

from .classification import ClassificationEngine
from .diff_engine import CommentDiffEngine
from .pipeline import ModerationPipeline
from .review import ReviewService
from .scheduler import ModerationScheduler
from .similarity import SimilarityEngine
from .suspicious_accounts import SuspiciousAccountService

__all__ = [
    "ClassificationEngine",
    "CommentDiffEngine",
    "ModerationPipeline",
    "ModerationScheduler",
    "ReviewService",
    "SimilarityEngine",
    "SuspiciousAccountService",
]
