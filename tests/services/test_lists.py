"""Tests for whitelist and watchlist lookups."""

import pytest

from comment_sentry.core.enums import IdentifierType
from comment_sentry.models import WhitelistEntry
from comment_sentry.services.classification import ClassifiedIdentifier
from comment_sentry.services.lists import (
    WatchlistService,
    WhitelistService,
    clean_identifier,
    contains_mention,
)


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("go follow @scam.king now", True),
        ("scam.king is legit trust me", True),
        ("SCAM.KING!!", True),
        ("@scam.kingdom", False),
        ("notscam.king", False),
        ("mail me at x@scam.king.io", False),
        ("visit scam.king.io today", False),
    ],
)
def test_contains_mention(text: str, expected: bool) -> None:
    assert contains_mention(text, "@scam.king") is expected


def test_clean_identifier_strips_at_only_for_usernames() -> None:
    assert clean_identifier(IdentifierType.USERNAME, " @John.Doe ") == "john.doe"
    assert clean_identifier(IdentifierType.CASHAPP, "$Cash") == "$cash"
    assert clean_identifier("EMAIL", "@odd@Mail.com") == "@odd@mail.com"


def test_add_commenter_stores_id_and_username_once(db_session, account) -> None:
    service = WhitelistService()

    first = service.add_commenter(db_session, account.owner_id, "17841", "@Pal")
    again = service.add_commenter(db_session, account.owner_id, "17841", "pal")

    assert [e.identifier for e in first] == ["17841", "pal"]
    assert [e.id for e in again] == [e.id for e in first]
    assert first[1].description == "Whitelisted commenter: @pal"
    assert db_session.query(WhitelistEntry).count() == 2


def test_commenter_lookup_respects_account_scope(db_session, account, make_account) -> None:
    service = WhitelistService()
    sibling = make_account()
    service.add_commenter(db_session, account.owner_id, "id-1", "pal", account_id=sibling.id)

    assert service.is_commenter_whitelisted(db_session, sibling, "other-id", "@PAL")
    assert not service.is_commenter_whitelisted(db_session, account, "id-1", "pal")


def test_remove_commenter_deactivates_entries(db_session, account) -> None:
    service = WhitelistService()
    service.add_commenter(db_session, account.owner_id, "id-1", "pal")

    assert service.remove_commenter(db_session, account.owner_id, "id-1", "@pal") == 2
    assert not service.is_commenter_whitelisted(db_session, account, "id-1", "pal")


def test_whitelisted_identifier_matches_type_and_email_domain(db_session, account) -> None:
    service = WhitelistService()
    service.add(db_session, account.owner_id, "brand.com", IdentifierType.DOMAIN)
    service.add(db_session, account.owner_id, "$shop", IdentifierType.CASHAPP)

    venmo = ClassifiedIdentifier(IdentifierType.VENMO, "$shop")
    email = ClassifiedIdentifier(IdentifierType.EMAIL, "Support@Brand.com")

    assert service.whitelisted_identifier(db_session, account, [venmo]) is None
    assert service.whitelisted_identifier(db_session, account, [venmo, email]) == email
    assert service.whitelisted_identifier(db_session, account, []) is None


def test_whitelist_rejects_empty_identifier(db_session, account) -> None:
    with pytest.raises(ValueError):
        WhitelistService().add(db_session, account.owner_id, " @ ", IdentifierType.USERNAME)


def test_watchlist_entry_needs_a_name_or_id(db_session, account) -> None:
    with pytest.raises(ValueError):
        WatchlistService().add(db_session, account.owner_id)


def test_commenter_hits_match_username_or_platform_id(db_session, account) -> None:
    service = WatchlistService()
    by_name = service.add(db_session, account.owner_id, username="@Troll")
    by_id = service.add(db_session, account.owner_id, remote_user_id="9001")
    service.add(db_session, account.owner_id, username="quiet", auto_delete_comments=False)

    assert [h.entry_id for h in service.commenter_hits(db_session, account, "x", "TROLL")] == [by_name.id]
    assert [h.name for h in service.commenter_hits(db_session, account, "9001", "someone")] == ["9001"]
    assert service.commenter_hits(db_session, account, "x", "quiet") == []
    assert by_id.username is None


def test_mention_hits_skip_entries_without_mention_deletion(db_session, account) -> None:
    service = WatchlistService()
    loud = service.add(db_session, account.owner_id, username="loud")
    service.add(db_session, account.owner_id, username="muted", auto_delete_mentions=False)

    hits = service.mention_hits(db_session, account, "both @loud and @muted were here")

    assert [(h.entry_id, h.detection_type) for h in hits] == [(loud.id, "USERNAME_MENTION")]
