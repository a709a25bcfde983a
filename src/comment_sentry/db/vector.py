"""Embedding column type and cosine distance in SQL.

On PostgreSQL embeddings live in a pgvector ``vector(n)`` column and
``cosine_distance`` compiles to the ``<=>`` operator, so nearest-neighbour
filtering, ordering and limits run in the database against the ivfflat
index. SQLite (tests, local dev) stores the vector as a JSON array and gets a
``cosine_distance`` SQL function registered on each connection.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import numpy as np
from pgvector.sqlalchemy import Vector
from sqlalchemy import JSON, Float, event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql.functions import FunctionElement
from sqlalchemy.types import TypeDecorator

EMBEDDING_DIMENSIONS = 1024


class Embedding(TypeDecorator):
    """Fixed-dimension float vector, always loaded as ``list[float]``."""

    impl = Vector
    cache_ok = True

    def __init__(self, dimensions: int = EMBEDDING_DIMENSIONS) -> None:
        super().__init__(dimensions)
        self.dimensions = dimensions

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Vector(self.dimensions))
        return dialect.type_descriptor(JSON(none_as_null=True))

    def process_result_value(self, value: Any, dialect) -> list[float] | None:
        if value is None:
            return None
        return [float(x) for x in value]


class cosine_distance(FunctionElement):
    """``1 - cosine similarity`` between two embedding expressions."""

    type = Float()
    name = "cosine_distance"
    inherit_cache = True


@compiles(cosine_distance)
def _compile_cosine_distance(element, compiler, **kw) -> str:
    return f"cosine_distance({compiler.process(element.clauses, **kw)})"


@compiles(cosine_distance, "postgresql")
def _compile_cosine_distance_pg(element, compiler, **kw) -> str:
    left, right = list(element.clauses)
    return f"({compiler.process(left, **kw)} <=> {compiler.process(right, **kw)})"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return ``dot(a, b) / (|a| * |b|)``, or 0 when either norm is zero."""
    if len(a) != len(b):
        raise ValueError("Vectors must have the same dimensions")
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    norm = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def _sqlite_cosine_distance(left: str | None, right: str | None) -> float | None:
    if left is None or right is None:
        return None
    a = json.loads(left)
    b = json.loads(right)
    if not a or not b or len(a) != len(b):
        return None
    return 1.0 - cosine_similarity(a, b)


def register_sqlite_functions(engine: Engine) -> None:
    """Install ``cosine_distance`` on every new SQLite connection of ``engine``."""
    if engine.dialect.name != "sqlite":
        return

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.create_function("cosine_distance", 2, _sqlite_cosine_distance, deterministic=True)
