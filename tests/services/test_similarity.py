"""Tests for embeddings, similarity search and precedent matching."""

import json
import random

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite

from comment_sentry.core.enums import PrecedentVerdict, ReviewActionType
from comment_sentry.db.vector import cosine_distance
from comment_sentry.models import Comment, ModerationSettings, Precedent, ReviewAction
from comment_sentry.services.similarity import (
    DEFAULT_DYNAMIC_THRESHOLD,
    EmbeddingClient,
    EmbeddingError,
    SimilarityEngine,
    cosine_similarity,
    percentile_threshold,
    sample_dynamic_threshold,
)


@pytest.fixture
def make_precedent(db_session):
    def _make(account, comment, verdict: PrecedentVerdict, embedding, threshold=None, category=None):
        review = ReviewAction(
            comment_id=comment.id, action=ReviewActionType.ALLOW_SIMILAR.value, reviewer_id="mod"
        )
        db_session.add(review)
        db_session.flush()
        precedent = Precedent(
            account_id=account.id,
            comment_id=comment.id,
            review_action_id=review.id,
            verdict=verdict.value,
            category=category,
            embedding=embedding,
            threshold=threshold,
            text_snapshot=comment.text,
        )
        db_session.add(precedent)
        db_session.flush()
        return precedent

    return _make


def test_cosine_similarity() -> None:
    assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1.0], [1.0, 2.0])


def test_percentile_threshold_is_clamped() -> None:
    assert percentile_threshold([]) == DEFAULT_DYNAMIC_THRESHOLD
    assert percentile_threshold([0.1] * 20) == 0.6
    assert percentile_threshold([0.99] * 20) == 0.9
    assert percentile_threshold([i / 100 for i in range(100)]) == pytest.approx(0.85)


def test_small_sample_uses_default_threshold() -> None:
    assert sample_dynamic_threshold([[1.0, 0.0]] * 5) == DEFAULT_DYNAMIC_THRESHOLD


def test_identical_vectors_hit_ceiling() -> None:
    assert sample_dynamic_threshold([[1.0, 0.0]] * 20, random.Random(1)) == 0.9


@pytest.mark.asyncio
async def test_embedding_client_batches_and_preserves_order() -> None:
    batches: list[list[str]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        texts = json.loads(request.content)["input"]
        batches.append(texts)
        return httpx.Response(200, json={"data": [{"embedding": [float(len(t))]} for t in texts]})

    http = httpx.AsyncClient(base_url="https://jina.test", transport=httpx.MockTransport(handler))
    client = EmbeddingClient("key", base_url="https://jina.test", batch_size=2, http_client=http)

    vectors = await client.embed(["a", "bb", "ccc"])

    assert vectors == [[1.0], [2.0], [3.0]]
    assert batches == [["a", "bb"], ["ccc"]]
    await client.close()


@pytest.mark.asyncio
async def test_embedding_client_rejects_client_errors_and_mismatched_replies() -> None:
    responses = iter(
        [httpx.Response(400, json={}), httpx.Response(200, json={"data": []})]
    )
    http = httpx.AsyncClient(
        base_url="https://jina.test", transport=httpx.MockTransport(lambda request: next(responses))
    )
    client = EmbeddingClient("key", base_url="https://jina.test", http_client=http)

    with pytest.raises(EmbeddingError, match="400"):
        await client.embed(["a"])
    with pytest.raises(EmbeddingError, match="format"):
        await client.embed(["a"])
    await client.close()


@pytest.mark.asyncio
async def test_embedding_client_requires_key() -> None:
    client = EmbeddingClient("")
    assert client.enabled is False
    assert await client.embed([]) == []
    with pytest.raises(EmbeddingError):
        await client.embed(["a"])


@pytest.mark.asyncio
async def test_ensure_embedding_stores_vector(db_session, make_comment, mock_embeddings) -> None:
    comment = make_comment()
    engine = SimilarityEngine(mock_embeddings)

    assert await engine.ensure_embedding(db_session, comment) == [1.0, 0.0, 0.0]
    assert comment.embedding == [1.0, 0.0, 0.0]

    await engine.ensure_embedding(db_session, comment)
    mock_embeddings.embed.assert_awaited_once_with([comment.text])


@pytest.mark.asyncio
async def test_generate_missing_embeddings(db_session, make_comment, mock_embeddings) -> None:
    make_comment()
    make_comment(embedding=[0.0, 1.0, 0.0])
    make_comment(is_deleted=True)

    generated = await SimilarityEngine(mock_embeddings).generate_missing_embeddings(db_session)

    assert generated == 1
    assert await SimilarityEngine(mock_embeddings).generate_missing_embeddings(db_session) == 0


def test_find_similar_excludes_same_commenter_and_other_accounts(
    db_session, make_account, make_post, make_comment, mock_embeddings
) -> None:
    target = make_comment(commenter_id="spammer", embedding=[1.0, 0.0])
    near = make_comment(commenter_id="other", embedding=[0.9, 0.1])
    make_comment(commenter_id="spammer", embedding=[1.0, 0.0])
    make_comment(commenter_id="far", embedding=[0.0, 1.0])
    other_post = make_post(account_id=make_account().id)
    make_comment(post_id=other_post.id, commenter_id="elsewhere", embedding=[1.0, 0.0])

    matches = SimilarityEngine(mock_embeddings).find_similar_comments(
        db_session, target.id, min_similarity=0.7
    )

    assert [m.comment_id for m in matches] == [near.id]
    assert matches[0].similarity == pytest.approx(cosine_similarity([1.0, 0.0], [0.9, 0.1]))


def test_find_similar_requires_embedding(db_session, make_comment, mock_embeddings) -> None:
    comment = make_comment()
    with pytest.raises(ValueError):
        SimilarityEngine(mock_embeddings).find_similar_comments(db_session, comment.id)


def test_best_precedent_prefers_matching_delete_over_closer_allow(
    db_session, account, make_comment, make_precedent, mock_embeddings
) -> None:
    comment = make_comment()
    make_precedent(account, comment, PrecedentVerdict.ALLOW, [1.0, 0.0], threshold=0.6)
    delete = make_precedent(account, comment, PrecedentVerdict.DELETE, [0.8, 0.6], threshold=0.6, category="spam")

    match = SimilarityEngine(mock_embeddings).best_precedent(db_session, account, [1.0, 0.0])

    assert match is not None
    assert match.precedent_id == delete.id
    assert match.verdict == PrecedentVerdict.DELETE
    assert match.is_match


def test_best_precedent_prefers_any_match_over_non_match(
    db_session, account, make_comment, make_precedent, mock_embeddings
) -> None:
    comment = make_comment()
    allow = make_precedent(account, comment, PrecedentVerdict.ALLOW, [0.8, 0.6], threshold=0.6)
    make_precedent(account, comment, PrecedentVerdict.DELETE, [1.0, 0.0], threshold=1.1)

    match = SimilarityEngine(mock_embeddings).best_precedent(db_session, account, [1.0, 0.0])

    assert match.precedent_id == allow.id


def test_precedent_without_threshold_uses_account_setting(
    db_session, account, make_comment, make_precedent, mock_embeddings
) -> None:
    comment = make_comment()
    make_precedent(account, comment, PrecedentVerdict.HIDE, [0.8, 0.6])
    db_session.add(ModerationSettings(account_id=account.id, similarity_threshold=0.95))
    db_session.flush()

    match = SimilarityEngine(mock_embeddings).best_precedent(db_session, account, [1.0, 0.0])

    assert match.threshold == 0.95
    assert match.is_match is False


def test_best_precedent_none_without_precedents(db_session, account, mock_embeddings) -> None:
    assert SimilarityEngine(mock_embeddings).best_precedent(db_session, account, [1.0]) is None


def test_find_similar_orders_and_limits_in_query(
    db_session, make_comment, mock_embeddings
) -> None:
    target = make_comment(commenter_id="spammer", embedding=[1.0, 0.0])
    second = make_comment(commenter_id="b", embedding=[0.8, 0.6])
    first = make_comment(commenter_id="a", embedding=[0.99, 0.01])
    make_comment(commenter_id="c", embedding=[0.75, 0.66])
    make_comment(commenter_id="d", embedding=[1.0, 0.0, 0.0])

    matches = SimilarityEngine(mock_embeddings).find_similar_comments(
        db_session, target.id, limit=2, min_similarity=0.7
    )

    assert [m.comment_id for m in matches] == [first.id, second.id]
    assert matches[0].similarity > matches[1].similarity


def test_cosine_distance_compiles_to_pgvector_operator() -> None:
    query = select(cosine_distance(Comment.embedding, Comment.embedding))

    assert "<=>" in str(query.compile(dialect=postgresql.dialect()))
    assert "cosine_distance(" in str(query.compile(dialect=sqlite.dialect()))


def test_best_precedent_ignores_category_between_equal_verdicts(
    db_session, account, make_comment, make_precedent, mock_embeddings
) -> None:
    comment = make_comment()
    make_precedent(account, comment, PrecedentVerdict.HIDE, [0.8, 0.6], threshold=0.6, category="threat")
    closer = make_precedent(account, comment, PrecedentVerdict.HIDE, [0.99, 0.01], threshold=0.6)

    match = SimilarityEngine(mock_embeddings).best_precedent(db_session, account, [1.0, 0.0])

    assert match.precedent_id == closer.id
    assert match.category is None
