# src/comment_sentry/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import review_router, suspicious_router, system_router

__all__ = [
    "review_router",
    "suspicious_router",
    "system_router",
]
