"""Tests for schema creation helpers."""

from sqlalchemy import create_engine, inspect
from sqlalchemy.pool import StaticPool

from comment_sentry.db import session as db_session_module


def test_create_and_drop_tables(monkeypatch) -> None:
    scratch = create_engine("sqlite://", poolclass=StaticPool)
    monkeypatch.setattr(db_session_module, "engine", scratch)

    db_session_module.create_tables()
    tables = set(inspect(scratch).get_table_names())
    assert {"comment", "precedent", "moderation_decision"} <= tables

    db_session_module.drop_tables()
    assert inspect(scratch).get_table_names() == []
    scratch.dispose()
