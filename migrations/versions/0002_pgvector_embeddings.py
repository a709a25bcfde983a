"""pgvector embeddings

Revision ID: 0002_pgvector_embeddings
Revises: 0001_initial_schema
Create Date: 2026-10-20 09:00:00.000000

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0002_pgvector_embeddings"
down_revision: Union[str, Sequence[str], None] = "0001_initial_schema"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DIMENSIONS = 1024


def upgrade() -> None:
    """Convert JSON embedding columns to pgvector and index them for cosine search."""
    if op.get_bind().dialect.name != "postgresql":
        return

    op.execute("CREATE EXTENSION IF NOT EXISTS vector")
    for table in ("comment", "precedent"):
        op.execute(
            f"ALTER TABLE {table} ALTER COLUMN embedding TYPE vector({DIMENSIONS}) "
            "USING embedding::text::vector"
        )
        op.execute(
            f"CREATE INDEX ix_{table}_embedding ON {table} "
            "USING ivfflat (embedding vector_cosine_ops) WITH (lists = 100)"
        )


def downgrade() -> None:
    """Return embeddings to JSON arrays."""
    if op.get_bind().dialect.name != "postgresql":
        return

    for table in ("comment", "precedent"):
        op.execute(f"DROP INDEX IF EXISTS ix_{table}_embedding")
        op.execute(
            f"ALTER TABLE {table} ALTER COLUMN embedding TYPE json "
            "USING embedding::text::json"
        )
