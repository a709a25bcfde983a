# src/comment_sentry/main.py
"""Main entry point for the Comment Sentry application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from comment_sentry.api.v1 import review_router, suspicious_router, system_router
from comment_sentry.core.settings import settings
from comment_sentry.services.classification import get_classification_engine
from comment_sentry.services.platform import get_platform_client
from comment_sentry.services.scheduler import get_scheduler

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Comment Sentry API",
    description="Autonomous moderation of social-media comments",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(review_router, prefix="/api/v1")
app.include_router(suspicious_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if settings.scheduler_enabled:
        scheduler = get_scheduler()
        await scheduler.start()
        app.state.scheduler = scheduler
    else:
        logger.info("Scheduler disabled; only the HTTP API is running")
        app.state.scheduler = None


@app.on_event("shutdown")
async def on_shutdown() -> None:
    scheduler = getattr(app.state, "scheduler", None)
    if scheduler:
        await scheduler.stop()
        await scheduler.similarity.embeddings.close()
    await get_classification_engine().close()
    await get_platform_client().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("comment_sentry.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
