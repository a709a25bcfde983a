"""Tests for the review endpoints."""

from collections.abc import Iterator
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI, status
from fastapi.testclient import TestClient

from comment_sentry.api.v1.dependencies import get_review_service
from comment_sentry.core.enums import ModerationStatus, ReviewActionType
from comment_sentry.models import ReviewAction
from comment_sentry.services.actions import ActionExecutor
from comment_sentry.services.classification import ClassificationEngine
from comment_sentry.services.review import ReviewService
from comment_sentry.services.similarity import SimilarityEngine


@pytest.fixture
def review_service(mock_embeddings, mock_platform_client) -> ReviewService:
    classifier = AsyncMock(spec=ClassificationEngine)
    classifier.generate_filter_prompt.return_value = "Threatening messages"
    return ReviewService(
        classifier=classifier,
        similarity=SimilarityEngine(mock_embeddings),
        executor=ActionExecutor(mock_platform_client),
    )


@pytest.fixture(autouse=True)
def override_review_service(app: FastAPI, review_service: ReviewService) -> Iterator[None]:
    app.dependency_overrides[get_review_service] = lambda: review_service
    try:
        yield
    finally:
        app.dependency_overrides.pop(get_review_service, None)


def test_list_flagged_comments(client: TestClient, flagged_comment, account) -> None:
    r = client.get("/api/v1/review/comments", params={"filter": "flagged"})
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert len(data) == 1
    item = data[0]
    assert item["id"] == flagged_comment.id
    assert item["account_username"] == account.username
    assert item["decision"]["category"] == "harassment"
    assert item["decision"]["action_taken"] == "flagged"


def test_list_rejects_unknown_filter(client: TestClient) -> None:
    r = client.get("/api/v1/review/comments", params={"filter": "everything"})
    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_list_scoped_to_owner(client: TestClient, flagged_comment) -> None:
    r = client.get("/api/v1/review/comments", params={"owner_id": "someone-else"})
    assert r.status_code == status.HTTP_200_OK
    assert r.json() == []


def test_submit_allow_this(client: TestClient, db_session, flagged_comment) -> None:
    r = client.post(
        f"/api/v1/review/comments/{flagged_comment.id}/actions",
        json={"action": "ALLOW_THIS", "reviewer_id": "mod-1"},
    )
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["status"] == ModerationStatus.REVIEWED_ALLOWED.value
    assert data["precedent_id"] is None

    review = db_session.get(ReviewAction, data["review_action_id"])
    assert review.action == ReviewActionType.ALLOW_THIS.value
    assert review.reviewer_id == "mod-1"


def test_submit_delete_similar_mints_filter(
    client: TestClient, flagged_comment, mock_platform_client
) -> None:
    flagged_comment.embedding = [1.0, 0.0, 0.0]
    r = client.post(
        f"/api/v1/review/comments/{flagged_comment.id}/actions",
        json={"action": "AUTO_DELETE_SIMILAR", "reviewer_id": "mod-1"},
    )
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert data["status"] == ModerationStatus.REVIEWED_DELETED.value
    assert data["custom_filter_id"] is not None
    assert data["precedent_id"] is not None
    mock_platform_client.delete_comment.assert_awaited_once()


def test_submit_requires_reviewer(client: TestClient, flagged_comment) -> None:
    r = client.post(
        f"/api/v1/review/comments/{flagged_comment.id}/actions",
        json={"action": "ALLOW_THIS", "reviewer_id": ""},
    )
    assert r.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_submit_unknown_comment(client: TestClient) -> None:
    r = client.post(
        "/api/v1/review/comments/999999/actions",
        json={"action": "ALLOW_THIS", "reviewer_id": "mod-1"},
    )
    assert r.status_code == status.HTTP_404_NOT_FOUND


def test_submit_on_terminal_status_conflicts(client: TestClient, make_comment) -> None:
    comment = make_comment(
        moderation_status=ModerationStatus.REVIEWED_DELETED.value, is_deleted=True
    )
    r = client.post(
        f"/api/v1/review/comments/{comment.id}/actions",
        json={"action": "ALLOW_THIS", "reviewer_id": "mod-1"},
    )
    assert r.status_code == status.HTTP_409_CONFLICT


def test_submit_platform_failure_is_bad_gateway(
    client: TestClient, flagged_comment, mock_platform_client
) -> None:
    mock_platform_client.set_hidden.return_value = False
    r = client.post(
        f"/api/v1/review/comments/{flagged_comment.id}/actions",
        json={"action": "HIDE_THIS", "reviewer_id": "mod-1"},
    )
    assert r.status_code == status.HTTP_502_BAD_GATEWAY
    assert flagged_comment.moderation_status == ModerationStatus.FLAGGED_FOR_REVIEW.value


def test_similar_comments(client: TestClient, make_comment) -> None:
    source = make_comment(text="send $50 to $cashking", commenter_id="a", embedding=[1.0, 0.0, 0.0])
    twin = make_comment(text="send $60 to $cashking", commenter_id="b", embedding=[1.0, 0.0, 0.0])
    make_comment(text="lovely", commenter_id="c", embedding=[0.0, 1.0, 0.0])
    make_comment(text="send $70 to $cashking", commenter_id="a", embedding=[1.0, 0.0, 0.0])

    r = client.get(f"/api/v1/review/comments/{source.id}/similar")
    assert r.status_code == status.HTTP_200_OK
    data = r.json()
    assert [row["comment_id"] for row in data] == [twin.id]
    assert data[0]["similarity"] == pytest.approx(1.0)


def test_similar_comments_unknown(client: TestClient) -> None:
    r = client.get("/api/v1/review/comments/999999/similar")
    assert r.status_code == status.HTTP_404_NOT_FOUND
