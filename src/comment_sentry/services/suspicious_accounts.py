"""Per-commenter violation history and automatic blocking."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.orm import Session

from comment_sentry.core.enums import Category
from comment_sentry.db.time import as_aware, utcnow
from comment_sentry.models import ExtractedIdentifier, PlatformAccount, SuspiciousAccount
from comment_sentry.services.classification import ClassifiedIdentifier

logger = logging.getLogger(__name__)

FLAGGED_RISK = 30
SPAM_BOT_MIN_SPAM = 5
SPAM_BOT_MIN_PER_DAY = 10
SERIAL_BLACKMAIL = 2
SERIAL_THREAT = 2
REPEAT_DELETED = 5
REPEAT_DELETED_AVG_RISK = 80
IDENTIFIER_CONFIDENCE = 0.9

_CATEGORY_COUNTERS = {
    Category.BLACKMAIL: "blackmail_count",
    Category.THREAT: "threat_count",
    Category.HARASSMENT: "harassment_count",
    Category.SPAM: "spam_count",
    Category.DEFAMATION: "defamation_count",
}

_IDENTIFIER_NOISE = re.compile(r"[@.\-_\s()\[\]{}<>]")


def normalize_identifier(value: str) -> str:
    """Lower-case ``value`` and strip separators so variants of one handle compare equal."""
    return _IDENTIFIER_NOISE.sub("", (value or "").lower())


def _normalize_username(value: str | None) -> str:
    return (value or "").strip().lstrip("@").lower()


@dataclass(frozen=True)
class TrackedDecision:
    """What the pipeline decided about one comment, as seen by tracking."""

    account_id: int
    comment_id: int
    commenter_id: str
    commenter_username: str
    category: Category
    risk_score: int
    was_deleted: bool


def is_owner_comment(account: PlatformAccount, commenter_id: str, commenter_username: str) -> bool:
    """True when the comment was written by the account being moderated."""
    if commenter_id and commenter_id == account.remote_id:
        return True
    owner = _normalize_username(account.username)
    return bool(owner) and owner == _normalize_username(commenter_username)


def days_active(record: SuspiciousAccount) -> int:
    """Whole days since the commenter was first seen, at least one."""
    elapsed = utcnow() - as_aware(record.first_seen_at)
    return max(1, elapsed.days)


class SuspiciousAccountService:
    """Maintains :class:`SuspiciousAccount` rows from moderation decisions."""

    def get(self, db: Session, account_id: int, commenter_id: str) -> SuspiciousAccount | None:
        return (
            db.query(SuspiciousAccount)
            .filter(
                SuspiciousAccount.account_id == account_id,
                SuspiciousAccount.commenter_id == commenter_id,
            )
            .one_or_none()
        )

    def is_blocked(self, db: Session, account_id: int, commenter_id: str) -> bool:
        record = self.get(db, account_id, commenter_id)
        return bool(record and (record.is_blocked or record.auto_delete_enabled))

    def repeat_offender_count(self, db: Session, account_id: int, commenter_id: str) -> int:
        record = self.get(db, account_id, commenter_id)
        return record.flagged_comments if record else 0

    def track(self, db: Session, decision: TrackedDecision) -> SuspiciousAccount:
        """Fold one decision into the commenter's record, creating it on first sight."""
        now = utcnow()
        record = self.get(db, decision.account_id, decision.commenter_id)
        is_violation = decision.category != Category.BENIGN and (
            decision.risk_score > FLAGGED_RISK or decision.was_deleted
        )

        if record is None:
            record = SuspiciousAccount(
                account_id=decision.account_id,
                commenter_id=decision.commenter_id,
                commenter_username=decision.commenter_username,
                total_comments=0,
                flagged_comments=0,
                deleted_comments=0,
                blackmail_count=0,
                threat_count=0,
                harassment_count=0,
                spam_count=0,
                defamation_count=0,
                average_risk_score=0.0,
                highest_risk_score=0,
                first_seen_at=now,
                last_seen_at=now,
                is_hidden=not is_violation,
            )
            db.add(record)

        previous_total = record.total_comments
        record.total_comments = previous_total + 1
        record.last_seen_at = now
        record.commenter_username = decision.commenter_username or record.commenter_username
        if decision.risk_score > FLAGGED_RISK:
            record.flagged_comments += 1
        if decision.was_deleted:
            record.deleted_comments += 1

        counter = _CATEGORY_COUNTERS.get(decision.category)
        if counter:
            setattr(record, counter, getattr(record, counter) + 1)

        record.highest_risk_score = max(record.highest_risk_score, decision.risk_score)
        record.average_risk_score = round(
            (record.average_risk_score * previous_total + decision.risk_score) / record.total_comments,
            2,
        )
        record.comment_velocity = round(record.total_comments / days_active(record), 2)

        if self._violation_total(record) > 0 and not record.is_watchlisted:
            record.is_hidden = False

        db.flush()
        self.check_auto_block(record)
        return record

    @staticmethod
    def _violation_total(record: SuspiciousAccount) -> int:
        return sum(getattr(record, name) for name in _CATEGORY_COUNTERS.values())

    def check_auto_block(self, record: SuspiciousAccount) -> bool:
        """Block the commenter when one of the escalation rules fires."""
        if record.is_blocked:
            return False

        reason: str | None = None
        if record.spam_count > SPAM_BOT_MIN_SPAM:
            per_day = record.total_comments / days_active(record)
            if per_day > SPAM_BOT_MIN_PER_DAY:
                reason = (
                    f"Auto-blocked: spam bot detected ({record.spam_count} spam comments, "
                    f"{per_day:.1f} per day)"
                )
        if record.blackmail_count >= SERIAL_BLACKMAIL:
            reason = f"Auto-blocked: {record.blackmail_count} blackmail attempts"
        if record.threat_count >= SERIAL_THREAT:
            reason = f"Auto-blocked: {record.threat_count} threats detected"
        if record.deleted_comments >= REPEAT_DELETED and record.average_risk_score > REPEAT_DELETED_AVG_RISK:
            reason = (
                f"Auto-blocked: {record.deleted_comments} violations, "
                f"average risk {record.average_risk_score:.2f}"
            )

        if reason is None:
            return False

        record.is_blocked = True
        record.block_reason = reason
        record.blocked_at = utcnow()
        logger.warning(
            "Commenter %s on account %s blocked: %s",
            record.commenter_id,
            record.account_id,
            reason,
        )
        return True

    def store_identifiers(
        self,
        db: Session,
        record: SuspiciousAccount,
        comment_id: int,
        identifiers: Iterable[ClassifiedIdentifier],
    ) -> list[ExtractedIdentifier]:
        """Persist extracted identifiers with their normalized form."""
        stored: list[ExtractedIdentifier] = []
        for identifier in identifiers:
            normalized = normalize_identifier(identifier.value)
            if not normalized:
                continue
            row = ExtractedIdentifier(
                comment_id=comment_id,
                suspicious_account_id=record.id,
                identifier=identifier.value,
                identifier_type=identifier.type.value,
                platform=identifier.platform,
                normalized_identifier=normalized,
                confidence=IDENTIFIER_CONFIDENCE,
            )
            db.add(row)
            stored.append(row)
        if stored:
            db.flush()
        return stored
