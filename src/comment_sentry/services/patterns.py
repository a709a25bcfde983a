"""Regex heuristics that second-guess the classifier.

The heuristics are cheap and run in-process. When they point at a harmful
category the model missed, the pipeline asks the model again with a focused
single-category prompt (see :func:`reevaluate`).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from comment_sentry.core.enums import Category

if TYPE_CHECKING:
    from comment_sentry.services.classification import ClassificationResult

logger = logging.getLogger(__name__)

_TRADITIONAL_PAYMENT = re.compile(
    r"(?:venmo|cashapp|paypal|zelle|pay\s+me|send\s+me|give\s+me|transfer|deposit|wire|money\s+order)",
    re.I,
)
_CRYPTO_PAYMENT = re.compile(
    r"(?:bitcoin|btc|eth|ethereum|crypto|wallet|usdt|usdc|tether|stablecoin)", re.I
)
_ADDRESS = re.compile(
    r"(?:bc1[a-z0-9]{25,}|1[a-km-zA-HJ-NP-Z1-9]{25,}|3[a-km-zA-HJ-NP-Z1-9]{25,}"
    r"|0x[a-fA-F0-9]{40}|\$\w+|@\w+|[\w.-]+@[\w.-]+\.\w+)",
    re.I,
)
_AMOUNT = re.compile(
    r"(?:\$?\d+\.?\d*\s*(?:btc|eth|usd|dollar|dollars?|bucks?)"
    r"|send\s+\d+|pay\s+\d+|give\s+\d+|transfer\s+\d+)",
    re.I,
)
_CONDITIONAL = re.compile(
    r"\b(?:or|or\s+else|or\s+i'll|or\s+you'll|or\s+your|or\s+everyone|otherwise|if\s+not|unless)\b",
    re.I,
)
_THREAT_VERBS = re.compile(
    r"\b(?:expose|ruin|destroy|release|reveal|tell|harm|hurt|damage|wreck|sabotage"
    r"|leak|publish|share|spread|broadcast)\b",
    re.I,
)
_CONSEQUENCES = re.compile(
    r"\b(?:reputation|secrets|photos|videos|information|everyone\s+will\s+know"
    r"|everyone\s+finds\s+out|i'll\s+tell|i'll\s+expose|you'll\s+regret"
    r"|you'll\s+be\s+sorry|consequences|regret|sorry)\b",
    re.I,
)
_HARM_INTENT = re.compile(
    r"\b(?:kill|murder|die|death|hurt|harm|attack|beat|stab|shoot|violence|violent"
    r"|threaten|threat|i'll\s+get\s+you|watch\s+your\s+back|coming\s+for\s+you"
    r"|you'll\s+regret|you'll\s+pay|revenge)\b",
    re.I,
)
_TARGETED_ATTACK = re.compile(
    r"(?:@\w+|you're\s+a|you\s+are\s+a|nobody\s+likes|everyone\s+hates|you\s+should"
    r"|just\s+leave|go\s+away|fuck\s+off|shut\s+up|loser|idiot|stupid|ugly|fat"
    r"|worthless|pathetic)",
    re.I,
)
_DEROGATORY = re.compile(
    r"\b(?:slut|whore|bitch|asshole|dickhead|retard|fag|nigger|kike|chink|spic|tranny)\b",
    re.I,
)
_PROMOTIONAL = re.compile(
    r"(?:link\s+in\s+bio|check\s+my\s+bio|dm\s+me|click\s+here|buy\s+now|limited\s+time"
    r"|act\s+now|exclusive\s+offer|follow\s+for\s+follow|f4f|s4s|promo|discount|sale"
    r"|giveaway|win|free\s+money)",
    re.I,
)
_LINK = re.compile(r"(?:https?://|www\.|bit\.ly|tinyurl|short\.link)", re.I)
_ACCUSATION = re.compile(
    r"\b(?:is\s+a\s+thief|is\s+a\s+liar|stole|scammed|fraud|cheat|lied|fake"
    r"|fraudulent|illegal|stole\s+from|scammed\s+people)\b",
    re.I,
)

BLACKMAIL_OVERRIDE_SEVERITY = 85
BLACKMAIL_OVERRIDE_CONFIDENCE = 0.9


@dataclass(frozen=True)
class PatternResult:
    """Category suggested by the heuristics, if any, and why."""

    category: Category | None
    details: str = ""


def detect_patterns(text: str) -> PatternResult:
    """Run the heuristics over ``text`` and return the most severe hit."""
    text = text or ""

    has_payment = bool(
        _TRADITIONAL_PAYMENT.search(text)
        or _CRYPTO_PAYMENT.search(text)
        or _AMOUNT.search(text)
    )
    has_verbs = bool(_THREAT_VERBS.search(text))
    has_consequence = bool(_CONSEQUENCES.search(text))
    has_conditional_threat = bool(_CONDITIONAL.search(text)) and (has_verbs or has_consequence)
    implicit_threat = has_verbs and has_consequence

    if has_payment and (has_conditional_threat or implicit_threat):
        details = "Payment demand + conditional threat"
        if has_payment_address(text):
            details += " with payment address"
        return PatternResult(Category.BLACKMAIL, details)
    if (_HARM_INTENT.search(text) or has_verbs) and not has_payment:
        return PatternResult(Category.THREAT, "Harm intent detected")
    if (_TARGETED_ATTACK.search(text) or _DEROGATORY.search(text)) and not has_payment:
        return PatternResult(Category.HARASSMENT, "Targeted personal attacks or derogatory terms")
    if (_PROMOTIONAL.search(text) or _LINK.search(text)) and not has_conditional_threat and not has_payment:
        return PatternResult(Category.SPAM, "Promotional content, links, or spam keywords")
    if _ACCUSATION.search(text):
        return PatternResult(Category.DEFAMATION, "False damaging claims or accusations")
    return PatternResult(None)


def has_payment_address(text: str) -> bool:
    """True when ``text`` contains a wallet address, cashtag, handle or email."""
    return bool(_ADDRESS.search(text or ""))


def needs_reevaluation(primary_category: Category, pattern: PatternResult) -> bool:
    """Whether the heuristics disagree with the model strongly enough to re-check."""
    if pattern.category is None or pattern.category == primary_category:
        return False
    if primary_category == Category.BENIGN:
        return True
    return pattern.category == Category.BLACKMAIL


async def reevaluate(
    result: ClassificationResult,
    pattern: PatternResult,
    text: str,
    recheck: Callable[[str, Category, str], Awaitable[ClassificationResult]],
) -> ClassificationResult:
    """Reconcile a classification result with the pattern heuristics.

    ``recheck`` is the classifier's focused single-category prompt. A confirmed
    re-check replaces the primary result. A blackmail pattern the re-check does
    not confirm still forces blackmail with severity and confidence floors.
    """
    if not needs_reevaluation(result.category, pattern):
        if pattern.category is not None and pattern.category != result.category:
            logger.info(
                "Pattern suggests %s but model classified as %s; keeping model result",
                pattern.category.value,
                result.category.value,
            )
        return result

    detected = pattern.category
    logger.warning(
        "Pattern mismatch: detected %s but model says %s, re-evaluating",
        detected.value,
        result.category.value,
    )
    try:
        second = await recheck(text, detected, pattern.details)
    except Exception as e:  # noqa: BLE001
        logger.error("Re-evaluation for %s failed: %s", detected.value, e, exc_info=True)
        if detected == Category.BLACKMAIL:
            return replace(
                result,
                category=Category.BLACKMAIL,
                severity=BLACKMAIL_OVERRIDE_SEVERITY,
                confidence=BLACKMAIL_OVERRIDE_CONFIDENCE,
                rationale=(
                    "[PATTERN OVERRIDE] Blackmail pattern detected. Re-evaluation failed. "
                    f"Original: {result.rationale}"
                ),
            )
        return result

    if second.category == detected:
        return replace(
            second,
            rationale=f"[RE-EVALUATION] Confirmed {detected.value}. Original: {result.rationale}",
        )

    if detected == Category.BLACKMAIL:
        logger.warning("Overriding to blackmail based on pattern detection")
        return replace(
            result,
            category=Category.BLACKMAIL,
            severity=max(second.severity, BLACKMAIL_OVERRIDE_SEVERITY),
            confidence=max(second.confidence, BLACKMAIL_OVERRIDE_CONFIDENCE),
            rationale=(
                f"[PATTERN OVERRIDE] Blackmail pattern detected. Re-eval: {second.category.value}. "
                f"Original: {result.rationale}"
            ),
        )

    return replace(
        second,
        rationale=(
            f"[RE-EVALUATION] Model: {second.category.value}. Pattern suggested {detected.value}. "
            f"Original: {result.rationale}"
        ),
    )
