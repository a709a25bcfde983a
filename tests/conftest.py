# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from itertools import count
from typing import Any
from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")

from comment_sentry.core.enums import ActionTaken, Category, ModerationStatus
from comment_sentry.db.session import Base
from comment_sentry.db.session import get_db as app_get_session
from comment_sentry.db.vector import register_sqlite_functions
from comment_sentry.main import app as fastapi_app
from comment_sentry.models import Comment, ModerationDecision, PlatformAccount, Post
from comment_sentry.services.platform import PlatformClient
from comment_sentry.services.similarity import EmbeddingClient

TEST_DB_URL = "sqlite://"

_REMOTE_IDS = count(1)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    register_sqlite_functions(engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    connection = engine.connect()
    transaction = connection.begin()
    SessionLocal = sessionmaker(
        bind=connection,
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
    )
    session = SessionLocal()
    session.begin_nested()

    @event.listens_for(session, "after_transaction_end")
    def restart_savepoint(sess: Session, trans) -> None:  # pragma: no cover - SQLAlchemy internals
        if trans.nested and not getattr(trans._parent, "nested", False):
            session.begin_nested()

    try:
        yield session
    finally:
        event.remove(session, "after_transaction_end", restart_savepoint)
        session.close()

        if transaction.is_active:
            transaction.rollback()
        connection.close()

        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def mock_platform_client() -> AsyncMock:
    """Platform client double; every remote call succeeds by default."""
    client = AsyncMock(spec=PlatformClient)
    client.enabled = True
    client.list_recent_posts.return_value = []
    client.list_comments.return_value = []
    client.delete_comment.return_value = True
    client.set_hidden.return_value = True
    client.get_follower_count.return_value = None
    return client


@pytest.fixture()
def mock_embeddings() -> AsyncMock:
    """Embedding client double returning a fixed vector per text."""
    embeddings = AsyncMock(spec=EmbeddingClient)
    embeddings.enabled = True
    embeddings.embed.side_effect = lambda texts: [[1.0, 0.0, 0.0] for _ in texts]
    return embeddings


@pytest.fixture()
def make_account(db_session: Session) -> Callable[..., PlatformAccount]:
    """Factory for persisted platform accounts."""

    def _make(**overrides: Any) -> PlatformAccount:
        n = next(_REMOTE_IDS)
        values: dict[str, Any] = {
            "owner_id": "owner-1",
            "platform": "instagram",
            "remote_id": f"ig-{n}",
            "username": f"creator{n}",
            "access_token": "token",
            "is_active": True,
        }
        values.update(overrides)
        account = PlatformAccount(**values)
        db_session.add(account)
        db_session.flush()
        return account

    return _make


@pytest.fixture()
def account(make_account: Callable[..., PlatformAccount]) -> PlatformAccount:
    return make_account()


@pytest.fixture()
def make_post(db_session: Session, account: PlatformAccount) -> Callable[..., Post]:
    """Factory for persisted posts; defaults to the ``account`` fixture."""

    def _make(**overrides: Any) -> Post:
        values: dict[str, Any] = {
            "account_id": account.id,
            "remote_id": f"media-{next(_REMOTE_IDS)}",
            "caption": "A post",
            "like_count": 0,
            "comments_count": 0,
        }
        values.update(overrides)
        post = Post(**values)
        db_session.add(post)
        db_session.flush()
        return post

    return _make


@pytest.fixture()
def post(make_post: Callable[..., Post]) -> Post:
    return make_post()


@pytest.fixture()
def make_comment(db_session: Session, post: Post) -> Callable[..., Comment]:
    """Factory for persisted comments; defaults to the ``post`` fixture."""

    def _make(**overrides: Any) -> Comment:
        n = next(_REMOTE_IDS)
        values: dict[str, Any] = {
            "post_id": post.id,
            "remote_id": f"c-{n}",
            "text": "nice photo",
            "commenter_id": f"user-{n}",
            "commenter_username": f"fan{n}",
            "moderation_status": ModerationStatus.NEW.value,
        }
        values.update(overrides)
        comment = Comment(**values)
        db_session.add(comment)
        db_session.flush()
        return comment

    return _make


@pytest.fixture()
def flagged_comment(db_session: Session, make_comment: Callable[..., Comment]) -> Comment:
    """A comment the pipeline routed to human review."""
    comment = make_comment(
        text="you will regret this",
        moderation_status=ModerationStatus.FLAGGED_FOR_REVIEW.value,
    )
    db_session.add(
        ModerationDecision(
            comment_id=comment.id,
            category=Category.HARASSMENT.value,
            severity=60,
            confidence=0.6,
            rationale="Hostile tone",
            risk_score=36,
            model_name="test-model",
            action_taken=ActionTaken.FLAGGED.value,
        )
    )
    db_session.flush()
    return comment
