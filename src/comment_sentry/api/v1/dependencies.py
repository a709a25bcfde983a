"""Shared API dependencies."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from comment_sentry.db.session import get_db
from comment_sentry.services.platform import PlatformClient, get_platform_client
from comment_sentry.services.review import ReviewService
from comment_sentry.services.scheduler import ModerationScheduler, get_scheduler

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]

_review_service: ReviewService | None = None


def get_review_service() -> ReviewService:
    """Return the shared review service, building it on first use."""
    global _review_service
    if _review_service is None:
        _review_service = ReviewService()
    return _review_service


def get_scheduler_dep() -> ModerationScheduler:
    """Get the scheduler for dependency injection."""
    return get_scheduler()


def get_platform_client_dep() -> PlatformClient:
    """Get the platform client for dependency injection."""
    return get_platform_client()


ReviewServiceDep = Annotated[ReviewService, Depends(get_review_service)]
SchedulerDep = Annotated[ModerationScheduler, Depends(get_scheduler_dep)]
PlatformClientDep = Annotated[PlatformClient, Depends(get_platform_client_dep)]
