"""Tests for commenter tracking and automatic blocking."""

import pytest

from comment_sentry.core.enums import Category, IdentifierType
from comment_sentry.models import ExtractedIdentifier
from comment_sentry.services.classification import ClassifiedIdentifier
from comment_sentry.services.suspicious_accounts import (
    SuspiciousAccountService,
    TrackedDecision,
    is_owner_comment,
    normalize_identifier,
)


@pytest.fixture
def service() -> SuspiciousAccountService:
    return SuspiciousAccountService()


@pytest.fixture
def decide(account, make_comment):
    def _decide(category: Category, risk: int, *, commenter: str = "troll", deleted: bool = False) -> TrackedDecision:
        comment = make_comment(commenter_id=commenter, commenter_username=commenter)
        return TrackedDecision(
            account_id=account.id,
            comment_id=comment.id,
            commenter_id=commenter,
            commenter_username=commenter,
            category=category,
            risk_score=risk,
            was_deleted=deleted,
        )

    return _decide


def test_normalize_identifier() -> None:
    assert normalize_identifier("@Quick.Cash_Now") == "quickcashnow"
    assert normalize_identifier(" (555) 010-9999 ") == "5550109999"


def test_is_owner_comment(account) -> None:
    assert is_owner_comment(account, account.remote_id, "someone")
    assert is_owner_comment(account, "other-id", f"@{account.username.upper()}")
    assert not is_owner_comment(account, "other-id", "someone")


def test_benign_commenter_is_tracked_but_hidden(db_session, service, decide) -> None:
    record = service.track(db_session, decide(Category.BENIGN, 0, commenter="fan"))

    assert record.total_comments == 1
    assert record.flagged_comments == 0
    assert record.is_hidden is True
    assert record.is_blocked is False


def test_violation_updates_counters_and_unhides(db_session, service, decide) -> None:
    service.track(db_session, decide(Category.BENIGN, 0))
    record = service.track(db_session, decide(Category.SPAM, 60, deleted=True))

    assert record.total_comments == 2
    assert record.flagged_comments == 1
    assert record.deleted_comments == 1
    assert record.spam_count == 1
    assert record.highest_risk_score == 60
    assert record.average_risk_score == 30.0
    assert record.is_hidden is False
    assert service.repeat_offender_count(db_session, record.account_id, "troll") == 1


def test_two_threats_block_the_commenter(db_session, service, decide, account) -> None:
    service.track(db_session, decide(Category.THREAT, 90))
    record = service.track(db_session, decide(Category.THREAT, 88))

    assert record.is_blocked is True
    assert record.block_reason == "Auto-blocked: 2 threats detected"
    assert record.blocked_at is not None
    assert service.is_blocked(db_session, account.id, "troll") is True


def test_spam_bot_is_blocked(db_session, service, decide) -> None:
    record = None
    for _ in range(11):
        record = service.track(db_session, decide(Category.SPAM, 40))

    assert record.is_blocked is True
    assert record.block_reason.startswith("Auto-blocked: spam bot detected")


def test_auto_delete_flag_counts_as_blocked(db_session, service, decide, account) -> None:
    record = service.track(db_session, decide(Category.HARASSMENT, 50))
    assert service.is_blocked(db_session, account.id, "troll") is False

    record.auto_delete_enabled = True
    db_session.flush()
    assert service.is_blocked(db_session, account.id, "troll") is True


def test_unknown_commenter_has_no_history(db_session, service, account) -> None:
    assert service.get(db_session, account.id, "nobody") is None
    assert service.repeat_offender_count(db_session, account.id, "nobody") == 0


def test_store_identifiers_normalizes_and_skips_noise(db_session, service, decide) -> None:
    decision = decide(Category.SPAM, 60)
    record = service.track(db_session, decision)

    stored = service.store_identifiers(
        db_session,
        record,
        decision.comment_id,
        [
            ClassifiedIdentifier(IdentifierType.CASHAPP, "$Quick_Cash"),
            ClassifiedIdentifier(IdentifierType.USERNAME, "@.", "instagram"),
        ],
    )

    assert len(stored) == 1
    row = db_session.query(ExtractedIdentifier).one()
    assert row.normalized_identifier == "$quickcash"
    assert row.identifier_type == IdentifierType.CASHAPP.value
    assert row.suspicious_account_id == record.id
    assert row.is_active is True
