"""System endpoints for the Comment Sentry API."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from comment_sentry.api.v1.dependencies import PlatformClientDep, SchedulerDep, SessionDep
from comment_sentry.models import PlatformAccount
from comment_sentry.schemas.system import SyncRequest, SyncTriggerResponse, SystemStatusResponse

router = APIRouter(prefix="/system", tags=["system"])


@router.get("/status", response_model=SystemStatusResponse)
async def get_system_status(
    client: PlatformClientDep,
    scheduler: SchedulerDep,
) -> SystemStatusResponse:
    """Platform circuit breaker, request metrics and scheduler state."""
    return SystemStatusResponse(
        platform_enabled=client.enabled,
        circuit_breaker=client.get_circuit_breaker_status(),
        metrics=client.get_metrics(),
        scheduler=scheduler.status(),
    )


@router.post(
    "/accounts/{account_id}/sync",
    response_model=SyncTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_account_sync(
    account_id: int,
    db: SessionDep,
    scheduler: SchedulerDep,
    payload: SyncRequest | None = None,
) -> SyncTriggerResponse:
    """Dispatch a sync for one account unless a run is already in flight."""
    account = db.get(PlatformAccount, account_id)
    if account is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found")
    if not account.is_active:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Account is inactive")

    mode = (payload or SyncRequest()).mode
    dispatched = await scheduler.trigger_sync(account.id, mode)
    return SyncTriggerResponse(account_id=account.id, mode=mode, dispatched=dispatched)
