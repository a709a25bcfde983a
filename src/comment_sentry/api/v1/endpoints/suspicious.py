"""Suspicious-account endpoints for the Comment Sentry API."""

from __future__ import annotations

from fastapi import APIRouter, Query

from comment_sentry.api.v1.dependencies import SessionDep
from comment_sentry.models import SuspiciousAccount
from comment_sentry.schemas.suspicious import (
    IdentifierClusterResponse,
    SuspiciousAccountResponse,
)
from comment_sentry.services.identifier_graph import DEFAULT_MIN_SHARED, build_identifier_clusters

router = APIRouter(prefix="/suspicious-accounts", tags=["suspicious-accounts"])


@router.get("", response_model=list[SuspiciousAccountResponse])
async def list_suspicious_accounts(
    db: SessionDep,
    account_id: int | None = Query(None),
    blocked: bool | None = Query(None),
    include_hidden: bool = Query(False),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
) -> list[SuspiciousAccount]:
    """List tracked commenters, riskiest first."""
    query = db.query(SuspiciousAccount)
    if account_id is not None:
        query = query.filter(SuspiciousAccount.account_id == account_id)
    if blocked is not None:
        query = query.filter(SuspiciousAccount.is_blocked.is_(blocked))
    if not include_hidden:
        query = query.filter(SuspiciousAccount.is_hidden.is_(False))
    return (
        query.order_by(
            SuspiciousAccount.highest_risk_score.desc(),
            SuspiciousAccount.last_seen_at.desc(),
        )
        .offset(offset)
        .limit(limit)
        .all()
    )


@router.get("/clusters", response_model=list[IdentifierClusterResponse])
async def list_identifier_clusters(
    db: SessionDep,
    account_id: int | None = Query(None),
    min_shared: int = Query(DEFAULT_MIN_SHARED, ge=1, le=10),
) -> list[IdentifierClusterResponse]:
    """Groups of commenters that reuse the same payment handles or contacts."""
    clusters = build_identifier_clusters(db, account_id=account_id, min_shared=min_shared)
    member_ids = {member for cluster in clusters for member in cluster.members}
    records = {
        record.id: record
        for record in db.query(SuspiciousAccount).filter(SuspiciousAccount.id.in_(member_ids))
    } if member_ids else {}

    return [
        IdentifierClusterResponse(
            size=cluster.size,
            members=[
                SuspiciousAccountResponse.model_validate(records[member])
                for member in cluster.members
                if member in records
            ],
            shared_identifiers=list(cluster.shared_identifiers),
        )
        for cluster in clusters
    ]
