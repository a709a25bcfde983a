"""Embedding similarity and precedent matching.

Embeddings come from the Jina embeddings API and are stored in a pgvector
column on each comment. Two lookups are served from them, both ranked in SQL:

- coordinated-abuse detection: the top-K comments by other commenters whose
  cosine similarity to a target comment exceeds a threshold;
- precedent replay: whether a new comment is close enough to a human-reviewed
  comment to reuse that verdict without calling the classifier.
"""

from __future__ import annotations

import asyncio
import logging
import math
import random
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import timedelta

import httpx
from sqlalchemy import and_, bindparam, case, func, select
from sqlalchemy.orm import Session

from comment_sentry.core.enums import PrecedentVerdict
from comment_sentry.core.settings import settings
from comment_sentry.db.time import utcnow
from comment_sentry.db.vector import Embedding, cosine_distance, cosine_similarity
from comment_sentry.models import Comment, ModerationSettings, PlatformAccount, Post, Precedent
from comment_sentry.services.retry import RetryPolicy, exponential_backoff, retry_async

logger = logging.getLogger(__name__)

DEFAULT_DYNAMIC_THRESHOLD = 0.75
DYNAMIC_THRESHOLD_FLOOR = 0.6
DYNAMIC_THRESHOLD_CEILING = 0.9
DYNAMIC_THRESHOLD_PERCENTILE = 0.85
MIN_DYNAMIC_SAMPLE = 10
MAX_SAMPLED_PAIRS = 1000
DYNAMIC_THRESHOLD_TTL_SECONDS = 3600.0


class EmbeddingError(RuntimeError):
    """Raised when embeddings cannot be produced."""


class EmbeddingTransientError(EmbeddingError):
    """Network or 5xx failure from the embedding service."""


class EmbeddingClient:
    """Batched client for the Jina embeddings endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        model: str | None = None,
        task: str | None = None,
        batch_size: int | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.jina_api_key
        self.base_url = base_url or settings.embedding_base_url
        self.model = model or settings.embedding_model
        self.task = task or settings.embedding_task
        self.batch_size = max(1, batch_size or settings.embedding_batch_size)
        self._client = http_client
        self._client_lock = asyncio.Lock()
        self._retry_policy = RetryPolicy(
            max_attempts=3,
            backoff=exponential_backoff(1.0, 2.0, 10.0),
            retry_on=(EmbeddingTransientError,),
        )

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.base_url,
                    timeout=httpx.Timeout(settings.embedding_http_timeout_seconds),
                )
        return self._client

    async def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed ``texts`` in batches, preserving order."""
        if not texts:
            return []
        if not self.enabled:
            raise EmbeddingError("Embedding service is not configured")

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = list(texts[start:start + self.batch_size])
            vectors.extend(
                await retry_async(
                    lambda batch=batch: self._embed_batch(batch),
                    self._retry_policy,
                    description="embedding batch",
                )
            )
        return vectors

    async def _embed_batch(self, batch: list[str]) -> list[list[float]]:
        client = await self._ensure_client()
        try:
            response = await client.post(
                "/v1/embeddings",
                json={"model": self.model, "task": self.task, "input": batch},
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
        except httpx.HTTPError as exc:
            raise EmbeddingTransientError(f"Embedding request failed: {exc}") from exc

        if response.status_code >= 500 or response.status_code == 429:
            raise EmbeddingTransientError(f"Embedding service responded with {response.status_code}")
        if response.status_code >= 400:
            raise EmbeddingError(f"Embedding service responded with {response.status_code}")

        try:
            data = response.json().get("data")
        except ValueError as exc:
            raise EmbeddingError("Invalid response from embedding service") from exc
        if not isinstance(data, list) or len(data) != len(batch):
            raise EmbeddingError("Invalid response format from embedding service")
        return [[float(x) for x in item["embedding"]] for item in data]

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


def percentile_threshold(similarities: Sequence[float]) -> float:
    """85th percentile of ``similarities`` clamped to [0.6, 0.9]."""
    if not similarities:
        return DEFAULT_DYNAMIC_THRESHOLD
    ordered = sorted(similarities)
    index = min(len(ordered) - 1, math.floor(len(ordered) * DYNAMIC_THRESHOLD_PERCENTILE))
    return max(DYNAMIC_THRESHOLD_FLOOR, min(DYNAMIC_THRESHOLD_CEILING, ordered[index]))


def sample_dynamic_threshold(
    vectors: Sequence[Sequence[float]], rng: random.Random | None = None
) -> float:
    """Derive a similarity threshold from random pairs of ``vectors``."""
    vectors = [v for v in vectors if v]
    if len(vectors) < MIN_DYNAMIC_SAMPLE:
        return DEFAULT_DYNAMIC_THRESHOLD

    rng = rng or random.Random()
    pair_count = min(MAX_SAMPLED_PAIRS, len(vectors) * (len(vectors) - 1) // 2)
    similarities: list[float] = []
    for _ in range(pair_count):
        j = rng.randrange(len(vectors))
        k = rng.randrange(len(vectors))
        if j != k and len(vectors[j]) == len(vectors[k]):
            similarities.append(cosine_similarity(vectors[j], vectors[k]))
    return percentile_threshold(similarities)


@dataclass(frozen=True)
class SimilarComment:
    """A near-duplicate comment written by a different commenter."""

    comment_id: int
    commenter_id: str
    commenter_username: str
    text: str
    similarity: float


@dataclass(frozen=True)
class PrecedentMatch:
    """Closest precedent to a new comment and whether it clears its threshold."""

    precedent_id: int
    verdict: PrecedentVerdict
    category: str | None
    similarity: float
    threshold: float
    text: str

    @property
    def is_match(self) -> bool:
        return self.similarity >= self.threshold


class SimilarityEngine:
    """Embedding-backed lookups over stored comments and precedents."""

    def __init__(self, embeddings: EmbeddingClient | None = None, rng: random.Random | None = None) -> None:
        self.embeddings = embeddings or EmbeddingClient()
        self._rng = rng or random.Random()
        self._threshold_cache: dict[str, tuple[float, float]] = {}

    async def ensure_embedding(self, db: Session, comment: Comment) -> list[float] | None:
        """Return the comment's embedding, computing and storing it when missing."""
        if comment.embedding:
            return comment.embedding
        if not self.embeddings.enabled:
            return None
        try:
            vectors = await self.embeddings.embed([comment.text])
        except EmbeddingError as e:
            logger.warning("Embedding failed for comment %s: %s", comment.id, e)
            return None
        comment.embedding = vectors[0]
        db.flush()
        return comment.embedding

    async def generate_missing_embeddings(self, db: Session, batch_size: int | None = None) -> int:
        """Embed stored comments that do not have a vector yet."""
        limit = batch_size or settings.embedding_batch_size
        pending = (
            db.query(Comment)
            .filter(Comment.embedding.is_(None), Comment.is_deleted.is_(False))
            .order_by(Comment.id)
            .limit(limit)
            .all()
        )
        if not pending:
            logger.debug("No comments need embeddings")
            return 0

        vectors = await self.embeddings.embed([c.text for c in pending])
        for comment, vector in zip(pending, vectors):
            comment.embedding = vector
        db.commit()
        logger.info("Generated embeddings for %d comments", len(pending))
        return len(pending)

    def find_similar_comments(
        self,
        db: Session,
        comment_id: int,
        *,
        limit: int = 20,
        min_similarity: float = 0.7,
    ) -> list[SimilarComment]:
        """Top-K comments from other commenters more similar than ``min_similarity``.

        The search is scoped to the target comment's account. Filtering,
        ordering and the limit run in the database.
        """
        target = db.get(Comment, comment_id)
        if target is None or not target.embedding:
            raise ValueError("Target comment does not have an embedding")

        account_id = db.execute(
            select(Post.account_id).where(Post.id == target.post_id)
        ).scalar_one()
        distance = cosine_distance(Comment.embedding, _vector_param(target.embedding))
        rows = db.execute(
            select(
                Comment.id,
                Comment.commenter_id,
                Comment.commenter_username,
                Comment.text,
                (1 - distance).label("similarity"),
            )
            .join(Post, Comment.post_id == Post.id)
            .where(
                Post.account_id == account_id,
                Comment.id != target.id,
                Comment.commenter_id != target.commenter_id,
                Comment.embedding.is_not(None),
                distance < 1 - min_similarity,
            )
            .order_by(distance, Comment.id)
            .limit(limit)
        ).all()

        return [
            SimilarComment(
                comment_id=row.id,
                commenter_id=row.commenter_id,
                commenter_username=row.commenter_username,
                text=row.text,
                similarity=float(row.similarity),
            )
            for row in rows
        ]

    def dynamic_threshold(self, db: Session, owner_id: str) -> float:
        """Tenant-wide threshold from sampled embedding pairs, cached for an hour."""
        cached = self._threshold_cache.get(owner_id)
        now = time.monotonic()
        if cached and now - cached[1] < DYNAMIC_THRESHOLD_TTL_SECONDS:
            return cached[0]

        since = utcnow() - timedelta(days=settings.similarity_days_back)
        rows = db.execute(
            select(Comment.embedding)
            .join(Post, Comment.post_id == Post.id)
            .join(PlatformAccount, Post.account_id == PlatformAccount.id)
            .where(
                PlatformAccount.owner_id == owner_id,
                Comment.is_deleted.is_(False),
                Comment.embedding.is_not(None),
                Comment.created_at >= since,
            )
            .limit(settings.similarity_sample_size)
        ).scalars().all()

        threshold = sample_dynamic_threshold(list(rows), self._rng)
        self._threshold_cache[owner_id] = (threshold, now)
        return threshold

    def resolve_default_threshold(self, db: Session, account: PlatformAccount) -> float:
        """Account-configured similarity threshold, else the tenant's dynamic one."""
        configured = (
            db.query(ModerationSettings.similarity_threshold)
            .filter(ModerationSettings.account_id == account.id)
            .scalar()
        )
        if configured is None:
            configured = (
                db.query(ModerationSettings.similarity_threshold)
                .filter(ModerationSettings.account_id.is_(None))
                .scalar()
            )
        if configured is not None:
            return float(configured)
        return self.dynamic_threshold(db, account.owner_id)

    def best_precedent(
        self,
        db: Session,
        account: PlatformAccount,
        embedding: Sequence[float],
        verdict: PrecedentVerdict | None = None,
    ) -> PrecedentMatch | None:
        """Closest stored precedent for this account, optionally of one verdict.

        Matches that clear their threshold are preferred. Among those, delete
        beats hide beats allow, then higher similarity wins. The category of
        the new comment is not known yet, so it plays no part. Ranking runs in
        the database and returns a single row.
        """
        scope = [Precedent.account_id == account.id]
        if verdict is not None:
            scope.append(Precedent.verdict == verdict.value)
        if db.execute(select(Precedent.id).where(*scope).limit(1)).first() is None:
            return None

        default_threshold = self.resolve_default_threshold(db, account)
        similarity = 1 - cosine_distance(Precedent.embedding, _vector_param(embedding))
        threshold = func.coalesce(Precedent.threshold, default_threshold)
        is_match = similarity >= threshold
        verdict_rank = case(
            (and_(is_match, Precedent.verdict == PrecedentVerdict.DELETE.value), 2),
            (and_(is_match, Precedent.verdict == PrecedentVerdict.HIDE.value), 1),
            else_=0,
        )
        row = db.execute(
            select(
                Precedent.id,
                Precedent.verdict,
                Precedent.category,
                Precedent.text_snapshot,
                similarity.label("similarity"),
                threshold.label("threshold"),
            )
            .where(*scope, similarity.is_not(None))
            .order_by(case((is_match, 1), else_=0).desc(), verdict_rank.desc(), similarity.desc())
            .limit(1)
        ).first()
        if row is None:
            return None
        return PrecedentMatch(
            precedent_id=row.id,
            verdict=PrecedentVerdict(row.verdict),
            category=row.category,
            similarity=float(row.similarity),
            threshold=float(row.threshold),
            text=row.text_snapshot,
        )


def _vector_param(embedding: Sequence[float]):
    return bindparam(None, list(embedding), type_=Embedding())
