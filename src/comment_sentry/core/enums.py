"""Enumerations shared between models, services and API schemas."""

from __future__ import annotations

from enum import Enum


class Category(str, Enum):
    """Harm categories produced by classification."""

    BLACKMAIL = "blackmail"
    THREAT = "threat"
    DEFAMATION = "defamation"
    HARASSMENT = "harassment"
    SPAM = "spam"
    BENIGN = "benign"

    @classmethod
    def parse(cls, value: object) -> Category | None:
        """Return the matching category or None for anything outside the enum."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Most severe first; used when several custom rules match at once.
CATEGORY_SEVERITY_ORDER: tuple[Category, ...] = (
    Category.BLACKMAIL,
    Category.THREAT,
    Category.HARASSMENT,
    Category.DEFAMATION,
    Category.SPAM,
    Category.BENIGN,
)

HARMFUL_CATEGORIES: frozenset[Category] = frozenset(
    category for category in Category if category is not Category.BENIGN
)


class ModerationStatus(str, Enum):
    """Lifecycle of a comment through the moderation pipeline."""

    NEW = "new"
    CLASSIFYING = "classifying"
    AUTO_DELETED = "auto_deleted"
    AUTO_HIDDEN = "auto_hidden"
    FLAGGED_FOR_REVIEW = "flagged_for_review"
    ALLOWED = "allowed"
    REVIEWED_ALLOWED = "reviewed_allowed"
    REVIEWED_HIDDEN = "reviewed_hidden"
    REVIEWED_DELETED = "reviewed_deleted"


class ActionTaken(str, Enum):
    """Action recorded on a moderation decision."""

    DELETED = "deleted"
    HIDDEN = "hidden"
    FLAGGED = "flagged"
    ALLOWED = "allowed"


ACTION_STATUS: dict[ActionTaken, ModerationStatus] = {
    ActionTaken.DELETED: ModerationStatus.AUTO_DELETED,
    ActionTaken.HIDDEN: ModerationStatus.AUTO_HIDDEN,
    ActionTaken.FLAGGED: ModerationStatus.FLAGGED_FOR_REVIEW,
    ActionTaken.ALLOWED: ModerationStatus.ALLOWED,
}


class ReviewActionType(str, Enum):
    """Human review decisions on a previously moderated comment."""

    ALLOW_THIS = "ALLOW_THIS"
    ALLOW_SIMILAR = "ALLOW_SIMILAR"
    HIDE_THIS = "HIDE_THIS"
    AUTO_HIDE_SIMILAR = "AUTO_HIDE_SIMILAR"
    DELETE_THIS = "DELETE_THIS"
    AUTO_DELETE_SIMILAR = "AUTO_DELETE_SIMILAR"


class PrecedentVerdict(str, Enum):
    """Verdict a precedent replays onto near-duplicate comments."""

    ALLOW = "allow"
    HIDE = "hide"
    DELETE = "delete"


class IdentifierType(str, Enum):
    """Kinds of identifiers extracted from comment text."""

    USERNAME = "USERNAME"
    VENMO = "VENMO"
    CASHAPP = "CASHAPP"
    PAYPAL = "PAYPAL"
    ZELLE = "ZELLE"
    BITCOIN = "BITCOIN"
    ETHEREUM = "ETHEREUM"
    CRYPTO = "CRYPTO"
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    DOMAIN = "DOMAIN"


class SyncMode(str, Enum):
    """Diff engine lookup modes."""

    HYBRID = "hybrid"
    DEEP = "deep"


_REVIEWED = frozenset(
    {
        ModerationStatus.REVIEWED_ALLOWED,
        ModerationStatus.REVIEWED_HIDDEN,
        ModerationStatus.REVIEWED_DELETED,
    }
)

# Re-sync may reset any comment whose text changed back to NEW; that path
# does not go through this table.
STATUS_TRANSITIONS: dict[ModerationStatus, frozenset[ModerationStatus]] = {
    ModerationStatus.NEW: frozenset({ModerationStatus.CLASSIFYING}),
    ModerationStatus.CLASSIFYING: frozenset(
        {
            ModerationStatus.AUTO_DELETED,
            ModerationStatus.AUTO_HIDDEN,
            ModerationStatus.FLAGGED_FOR_REVIEW,
            ModerationStatus.ALLOWED,
        }
    ),
    ModerationStatus.FLAGGED_FOR_REVIEW: _REVIEWED,
    ModerationStatus.AUTO_HIDDEN: _REVIEWED,
    ModerationStatus.AUTO_DELETED: frozenset(),
    ModerationStatus.ALLOWED: frozenset(),
    ModerationStatus.REVIEWED_ALLOWED: frozenset(),
    ModerationStatus.REVIEWED_HIDDEN: frozenset(),
    ModerationStatus.REVIEWED_DELETED: frozenset(),
}


def can_transition(current: ModerationStatus | str, target: ModerationStatus) -> bool:
    """Whether a comment in ``current`` may move to ``target``."""
    try:
        current = ModerationStatus(current)
    except ValueError:
        return False
    return target in STATUS_TRANSITIONS[current]


class ReviewFilter(str, Enum):
    """Listing filters offered to reviewers."""

    ALL = "all"
    FLAGGED = "flagged"
    HIDDEN = "hidden"
    DELETED = "deleted"
    UNREVIEWED = "unreviewed"
