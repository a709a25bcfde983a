# src/comment_sentry/schemas/system.py
"""System endpoint Pydantic schemas."""

from typing import Any

from pydantic import BaseModel

from comment_sentry.core.enums import SyncMode


class SyncRequest(BaseModel):
    """Schema for a manual account sync."""

    mode: SyncMode = SyncMode.HYBRID


class SyncTriggerResponse(BaseModel):
    """Schema reporting whether a manual sync was dispatched."""

    account_id: int
    mode: SyncMode
    dispatched: bool


class SystemStatusResponse(BaseModel):
    """Schema for runtime status of the platform client and scheduler."""

    platform_enabled: bool
    circuit_breaker: dict[str, Any]
    metrics: dict[str, Any]
    scheduler: dict[str, Any]
