"""Tests for the regex heuristics and classifier re-evaluation."""

import typing
from unittest.mock import AsyncMock

import pytest

from comment_sentry.core.enums import Category
from comment_sentry.services.classification import ClassificationResult
from comment_sentry.services.patterns import (
    PatternResult,
    detect_patterns,
    has_payment_address,
    needs_reevaluation,
    reevaluate,
)


def _result(category: Category, severity: int = 10, confidence: float = 0.8) -> ClassificationResult:
    return ClassificationResult(
        category=category, severity=severity, confidence=confidence, rationale="model says so"
    )


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("send me $500 or I'll expose your photos to everyone", Category.BLACKMAIL),
        ("watch your back, I'm coming for you", Category.THREAT),
        ("you're a pathetic loser", Category.HARASSMENT),
        ("check my bio for a giveaway", Category.SPAM),
        ("this shop scammed people last year", Category.DEFAMATION),
        ("lovely sunset", None),
    ],
)
def test_detect_patterns(text: str, expected: Category | None) -> None:
    assert detect_patterns(text).category == expected


def test_payment_address_detection() -> None:
    assert has_payment_address("pay to 0x" + "a" * 40)
    assert has_payment_address("cashapp $quickcash")
    assert not has_payment_address("great shot")


def test_blackmail_details_note_payment_address() -> None:
    with_address = detect_patterns("venmo $quickcash or I'll expose your secrets")
    without = detect_patterns("pay me or I'll expose your secrets")
    assert with_address.details.endswith("with payment address")
    assert without.category == Category.BLACKMAIL
    assert without.details == "Payment demand + conditional threat"


def test_needs_reevaluation_rules() -> None:
    assert needs_reevaluation(Category.BENIGN, PatternResult(Category.SPAM))
    assert needs_reevaluation(Category.SPAM, PatternResult(Category.BLACKMAIL))
    assert not needs_reevaluation(Category.HARASSMENT, PatternResult(Category.THREAT))
    assert not needs_reevaluation(Category.SPAM, PatternResult(Category.SPAM))
    assert not needs_reevaluation(Category.BENIGN, PatternResult(None))


@pytest.mark.asyncio
async def test_confirmed_reevaluation_replaces_result() -> None:
    recheck = AsyncMock(return_value=_result(Category.THREAT, severity=90, confidence=0.95))

    final = await reevaluate(
        _result(Category.BENIGN), PatternResult(Category.THREAT, "Harm intent"), "text", recheck
    )

    recheck.assert_awaited_once_with("text", Category.THREAT, "Harm intent")
    assert final.category == Category.THREAT
    assert final.severity == 90
    assert final.rationale.startswith("[RE-EVALUATION] Confirmed threat")


@pytest.mark.asyncio
async def test_unconfirmed_blackmail_pattern_forces_floors() -> None:
    recheck = AsyncMock(return_value=_result(Category.SPAM, severity=40, confidence=0.6))

    final = await reevaluate(
        _result(Category.SPAM), PatternResult(Category.BLACKMAIL, "payment + threat"), "text", recheck
    )

    assert final.category == Category.BLACKMAIL
    assert final.severity == 85
    assert final.confidence == 0.9
    assert "[PATTERN OVERRIDE]" in final.rationale


@pytest.mark.asyncio
async def test_failed_recheck_keeps_original_for_non_blackmail() -> None:
    original = _result(Category.BENIGN)
    recheck = AsyncMock(side_effect=RuntimeError("model down"))

    final = await reevaluate(original, PatternResult(Category.SPAM, "promo"), "text", recheck)

    assert final is original


@pytest.mark.asyncio
async def test_agreeing_pattern_skips_recheck() -> None:
    original = _result(Category.SPAM)
    recheck = AsyncMock()

    assert await reevaluate(original, PatternResult(Category.SPAM), "text", recheck) is original
    recheck.assert_not_awaited()


def test_reevaluate_is_typed_against_classification_result() -> None:
    hints = typing.get_type_hints(reevaluate, localns={"ClassificationResult": ClassificationResult})

    assert hints["result"] is ClassificationResult
    assert hints["return"] is ClassificationResult
    awaited = typing.get_args(hints["recheck"])[1]
    assert typing.get_args(awaited) == (ClassificationResult,)
