"""Owner-curated whitelist and watchlist.

Whitelisted commenters skip moderation entirely, and a comment whose
extracted identifiers include a whitelisted one is treated as benign.
Watchlisted commenters have their comments deleted, as do comments that
mention a watchlisted username. Every watchlist deletion is recorded as a
:class:`~comment_sentry.models.WatchlistDetection`.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import or_
from sqlalchemy.orm import Query, Session

from comment_sentry.core.enums import ActionTaken, IdentifierType
from comment_sentry.db.time import utcnow
from comment_sentry.models import (
    Comment,
    PlatformAccount,
    WatchlistDetection,
    WatchlistEntry,
    WhitelistEntry,
)
from comment_sentry.services.classification import ClassifiedIdentifier

logger = logging.getLogger(__name__)

DIRECT_COMMENT = "DIRECT_COMMENT"
USERNAME_MENTION = "USERNAME_MENTION"


def clean_identifier(identifier_type: IdentifierType | str, value: str | None) -> str:
    """Lower-case ``value``; usernames also lose a leading ``@``."""
    value = (value or "").strip().lower()
    if IdentifierType(identifier_type) == IdentifierType.USERNAME:
        value = value.lstrip("@")
    return value


def contains_mention(text: str, username: str) -> bool:
    """True when ``text`` names ``username`` as a word, with or without ``@``."""
    name = clean_identifier(IdentifierType.USERNAME, username)
    if not name:
        return False
    pattern = rf"(?<![\w.@])@?{re.escape(name)}(?!\w|\.\w)"
    return re.search(pattern, text or "", re.IGNORECASE) is not None


def _in_account_scope(query: Query, model, account: PlatformAccount) -> Query:
    return query.filter(
        model.owner_id == account.owner_id,
        model.is_active.is_(True),
        or_(model.account_id.is_(None), model.account_id == account.id),
    )


class WhitelistService:
    """Lookups and edits for whitelisted commenters and identifiers."""

    def add(
        self,
        db: Session,
        owner_id: str,
        identifier: str,
        identifier_type: IdentifierType,
        *,
        account_id: int | None = None,
        description: str | None = None,
        auto_added: bool = False,
    ) -> WhitelistEntry:
        """Whitelist one identifier; an identical active entry is returned as is."""
        cleaned = clean_identifier(identifier_type, identifier)
        if not cleaned:
            raise ValueError("Identifier must not be empty")

        same_scope = (
            WhitelistEntry.account_id.is_(None)
            if account_id is None
            else WhitelistEntry.account_id == account_id
        )
        existing = (
            db.query(WhitelistEntry)
            .filter(
                WhitelistEntry.owner_id == owner_id,
                same_scope,
                WhitelistEntry.identifier == cleaned,
                WhitelistEntry.identifier_type == identifier_type.value,
                WhitelistEntry.is_active.is_(True),
            )
            .first()
        )
        if existing is not None:
            return existing

        entry = WhitelistEntry(
            owner_id=owner_id,
            account_id=account_id,
            identifier=cleaned,
            identifier_type=identifier_type.value,
            description=description,
            is_auto_added=auto_added,
        )
        db.add(entry)
        db.flush()
        logger.info("Whitelisted %s %s for owner %s", identifier_type.value, cleaned, owner_id)
        return entry

    def add_commenter(
        self,
        db: Session,
        owner_id: str,
        commenter_id: str,
        commenter_username: str,
        *,
        account_id: int | None = None,
        description: str | None = None,
    ) -> list[WhitelistEntry]:
        """Whitelist a commenter by platform id and, when different, by username."""
        username = clean_identifier(IdentifierType.USERNAME, commenter_username)
        description = description or f"Whitelisted commenter: @{username}"
        values = [commenter_id]
        if username and username != clean_identifier(IdentifierType.USERNAME, commenter_id):
            values.append(username)
        return [
            self.add(
                db,
                owner_id,
                value,
                IdentifierType.USERNAME,
                account_id=account_id,
                description=description,
            )
            for value in values
        ]

    def remove_commenter(
        self, db: Session, owner_id: str, commenter_id: str, commenter_username: str
    ) -> int:
        """Deactivate every username entry naming the commenter; returns how many."""
        values = {
            clean_identifier(IdentifierType.USERNAME, commenter_id),
            clean_identifier(IdentifierType.USERNAME, commenter_username),
        }
        entries = (
            db.query(WhitelistEntry)
            .filter(
                WhitelistEntry.owner_id == owner_id,
                WhitelistEntry.identifier_type == IdentifierType.USERNAME.value,
                WhitelistEntry.identifier.in_(values - {""}),
                WhitelistEntry.is_active.is_(True),
            )
            .all()
        )
        for entry in entries:
            entry.is_active = False
        db.flush()
        return len(entries)

    def is_commenter_whitelisted(
        self, db: Session, account: PlatformAccount, commenter_id: str, commenter_username: str
    ) -> bool:
        values = {
            clean_identifier(IdentifierType.USERNAME, commenter_id),
            clean_identifier(IdentifierType.USERNAME, commenter_username),
        } - {""}
        if not values:
            return False
        query = _in_account_scope(db.query(WhitelistEntry.id), WhitelistEntry, account).filter(
            WhitelistEntry.identifier_type == IdentifierType.USERNAME.value,
            WhitelistEntry.identifier.in_(values),
        )
        return query.first() is not None

    def whitelisted_identifier(
        self, db: Session, account: PlatformAccount, identifiers: Iterable[ClassifiedIdentifier]
    ) -> ClassifiedIdentifier | None:
        """First extracted identifier that is whitelisted, if any.

        An email also matches when its domain is whitelisted as a DOMAIN.
        """
        for identifier in identifiers:
            cleaned = clean_identifier(identifier.type, identifier.value)
            if not cleaned:
                continue
            candidates = [(identifier.type.value, cleaned)]
            if identifier.type == IdentifierType.EMAIL and "@" in cleaned:
                candidates.append((IdentifierType.DOMAIN.value, cleaned.rsplit("@", 1)[1]))

            for identifier_type, value in candidates:
                hit = (
                    _in_account_scope(db.query(WhitelistEntry.id), WhitelistEntry, account)
                    .filter(
                        WhitelistEntry.identifier_type == identifier_type,
                        WhitelistEntry.identifier == value,
                    )
                    .first()
                )
                if hit is not None:
                    return identifier
        return None


@dataclass(frozen=True)
class WatchlistHit:
    """A watchlist entry that caught a comment, and how."""

    entry_id: int
    name: str
    detection_type: str
    matched_keyword: str | None = None


class WatchlistService:
    """Lookups and edits for watchlisted commenters."""

    def add(
        self,
        db: Session,
        owner_id: str,
        *,
        username: str | None = None,
        remote_user_id: str | None = None,
        account_id: int | None = None,
        threat_level: str = "MEDIUM",
        description: str = "",
        auto_delete_comments: bool = True,
        monitor_mentions: bool = True,
        auto_delete_mentions: bool = True,
    ) -> WatchlistEntry:
        username = clean_identifier(IdentifierType.USERNAME, username) or None
        if username is None and not remote_user_id:
            raise ValueError("A watchlist entry needs a username or a platform user id")
        entry = WatchlistEntry(
            owner_id=owner_id,
            account_id=account_id,
            username=username,
            remote_user_id=remote_user_id,
            threat_level=threat_level,
            description=description,
            auto_delete_comments=auto_delete_comments,
            monitor_mentions=monitor_mentions,
            auto_delete_mentions=auto_delete_mentions,
        )
        db.add(entry)
        db.flush()
        logger.info("Watchlisted %s for owner %s", username or remote_user_id, owner_id)
        return entry

    def commenter_hits(
        self, db: Session, account: PlatformAccount, commenter_id: str, commenter_username: str
    ) -> list[WatchlistHit]:
        """Entries set to auto-delete that name this commenter."""
        username = clean_identifier(IdentifierType.USERNAME, commenter_username)
        matches = [WatchlistEntry.remote_user_id == commenter_id]
        if username:
            matches.append(WatchlistEntry.username == username)
        entries = (
            _in_account_scope(db.query(WatchlistEntry), WatchlistEntry, account)
            .filter(WatchlistEntry.auto_delete_comments.is_(True), or_(*matches))
            .order_by(WatchlistEntry.id)
            .all()
        )
        return [
            WatchlistHit(entry.id, entry.username or entry.remote_user_id or "unknown", DIRECT_COMMENT)
            for entry in entries
        ]

    def mention_hits(self, db: Session, account: PlatformAccount, text: str) -> list[WatchlistHit]:
        """Entries set to auto-delete mentions whose username appears in ``text``."""
        entries = (
            _in_account_scope(db.query(WatchlistEntry), WatchlistEntry, account)
            .filter(
                WatchlistEntry.monitor_mentions.is_(True),
                WatchlistEntry.auto_delete_mentions.is_(True),
                WatchlistEntry.username.is_not(None),
            )
            .order_by(WatchlistEntry.id)
            .all()
        )
        return [
            WatchlistHit(entry.id, entry.username, USERNAME_MENTION, matched_keyword=entry.username)
            for entry in entries
            if contains_mention(text, entry.username)
        ]

    def record_detection(
        self,
        db: Session,
        hit: WatchlistHit,
        comment: Comment,
        action: ActionTaken,
        succeeded: bool,
    ) -> WatchlistDetection:
        entry = db.get(WatchlistEntry, hit.entry_id)
        if entry is not None:
            entry.times_detected += 1
            entry.last_detected_at = utcnow()
        detection = WatchlistDetection(
            entry_id=hit.entry_id,
            comment_id=comment.id,
            detection_type=hit.detection_type,
            matched_keyword=hit.matched_keyword,
            comment_text=comment.text,
            commenter_id=comment.commenter_id,
            commenter_username=comment.commenter_username,
            action_taken=action.value,
            action_succeeded=succeeded,
        )
        db.add(detection)
        return detection
