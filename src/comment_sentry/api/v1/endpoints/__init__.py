# src/comment_sentry/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .review import router as review_router
from .suspicious import router as suspicious_router
from .system import router as system_router

__all__ = [
    "review_router",
    "suspicious_router",
    "system_router",
]
