"""Tests for the suspicious-account endpoints."""

from typing import Any

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from comment_sentry.core.enums import IdentifierType
from comment_sentry.models import SuspiciousAccount
from comment_sentry.services.classification import ClassifiedIdentifier
from comment_sentry.services.suspicious_accounts import SuspiciousAccountService


@pytest.fixture
def make_suspicious(db_session, account):
    def _make(commenter_id: str, **overrides: Any) -> SuspiciousAccount:
        values: dict[str, Any] = {
            "account_id": account.id,
            "commenter_id": commenter_id,
            "commenter_username": commenter_id,
            "is_hidden": False,
        }
        values.update(overrides)
        record = SuspiciousAccount(**values)
        db_session.add(record)
        db_session.flush()
        return record

    return _make


def test_list_orders_by_highest_risk(client: TestClient, make_suspicious) -> None:
    make_suspicious("low", highest_risk_score=20)
    make_suspicious("high", highest_risk_score=95, is_blocked=True, block_reason="threats")
    make_suspicious("quiet", is_hidden=True)

    r = client.get("/api/v1/suspicious-accounts")
    assert r.status_code == status.HTTP_200_OK
    assert [row["commenter_id"] for row in r.json()] == ["high", "low"]


def test_list_filters(client: TestClient, make_suspicious, make_account) -> None:
    make_suspicious("blocked", is_blocked=True)
    make_suspicious("open")
    make_suspicious("quiet", is_hidden=True)
    elsewhere = make_account()
    make_suspicious("other", account_id=elsewhere.id)

    r = client.get("/api/v1/suspicious-accounts", params={"blocked": True})
    assert [row["commenter_id"] for row in r.json()] == ["blocked"]

    r = client.get("/api/v1/suspicious-accounts", params={"account_id": elsewhere.id})
    assert [row["commenter_id"] for row in r.json()] == ["other"]

    r = client.get("/api/v1/suspicious-accounts", params={"include_hidden": True})
    assert {row["commenter_id"] for row in r.json()} == {"blocked", "open", "quiet", "other"}


def test_list_pagination_bounds(client: TestClient) -> None:
    r = client.get("/api/v1/suspicious-accounts", params={"limit": 0})
    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_clusters(client: TestClient, db_session, make_suspicious, make_comment) -> None:
    service = SuspiciousAccountService()

    def with_identifiers(commenter: str, values: list[str]) -> SuspiciousAccount:
        record = make_suspicious(commenter)
        comment = make_comment(commenter_id=commenter)
        service.store_identifiers(
            db_session,
            record,
            comment.id,
            [ClassifiedIdentifier(IdentifierType.CASHAPP, value) for value in values],
        )
        return record

    first = with_identifiers("bot1", ["$cashking", "+1 555 0100"])
    second = with_identifiers("bot2", ["$CashKing", "+15550100"])
    with_identifiers("bot3", ["$cashking"])

    r = client.get("/api/v1/suspicious-accounts/clusters")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert len(data) == 1
    assert data[0]["size"] == 2
    assert {m["id"] for m in data[0]["members"]} == {first.id, second.id}
    assert sorted(data[0]["shared_identifiers"]) == ["CASHAPP:$cashking", "CASHAPP:+15550100"]

    r = client.get("/api/v1/suspicious-accounts/clusters", params={"min_shared": 1})
    assert r.json()[0]["size"] == 3


def test_clusters_reject_zero_min_shared(client: TestClient) -> None:
    r = client.get("/api/v1/suspicious-accounts/clusters", params={"min_shared": 0})
    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
