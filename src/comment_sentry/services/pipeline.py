"""End-to-end moderation of a single stored comment.

This module provides the ModerationPipeline class, the handler behind the
classification queue. For one comment it runs, in order: the
whitelisted-commenter, owner and blocked-commenter short-circuits, precedent
replay, classification with custom rules, pattern re-evaluation, the watchlist
and whitelisted-identifier checks, risk scoring, action selection, action
execution with evidence capture, and commenter tracking.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from comment_sentry.core.enums import (
    ACTION_STATUS,
    CATEGORY_SEVERITY_ORDER,
    ActionTaken,
    Category,
    ModerationStatus,
    PrecedentVerdict,
)
from comment_sentry.core.settings import settings
from comment_sentry.db.session import SessionLocal
from comment_sentry.db.time import as_aware, utcnow
from comment_sentry.models import (
    Comment,
    CustomFilter,
    EvidenceRecord,
    ModerationDecision,
    ModerationSettings,
    PlatformAccount,
    Post,
)
from comment_sentry.services.actions import ActionExecutor, ActionOutcome
from comment_sentry.services.classification import (
    ClassificationEngine,
    ClassificationResult,
    SimilarityHint,
    get_classification_engine,
)
from comment_sentry.services.lists import WatchlistHit, WatchlistService, WhitelistService
from comment_sentry.services.patterns import detect_patterns, reevaluate
from comment_sentry.services.platform import get_platform_client
from comment_sentry.services.risk import (
    CategoryThresholds,
    RiskInputs,
    RiskResult,
    calculate_risk_score,
    custom_filter_risk,
    resolve_thresholds,
)
from comment_sentry.services.similarity import PrecedentMatch, SimilarityEngine
from comment_sentry.services.suspicious_accounts import (
    SuspiciousAccountService,
    TrackedDecision,
    is_owner_comment,
)

logger = logging.getLogger(__name__)

BLOCKED_COMMENTER_RISK = 100
AUTO_HIDE_COMMENTER_RISK = 65
PRECEDENT_HIDE_RISK = 65
PRECEDENT_DELETE_RISK = 80
WATCHLIST_RISK = 100
WATCHLIST_MIN_CONFIDENCE = 0.95


@dataclass(frozen=True)
class EffectiveSettings:
    """Moderation thresholds in force for one account."""

    global_threshold: int = 70
    confidence_delete_threshold: float = 0.90
    confidence_hide_threshold: float = 0.70
    category_overrides: dict[str, Any] = field(default_factory=dict)

    def thresholds_for(self, category: Category | str | None) -> CategoryThresholds:
        return resolve_thresholds(category, self.category_overrides, self.global_threshold)


def load_effective_settings(db: Session, account_id: int) -> EffectiveSettings:
    """Account row if present, else the global row, else built-in defaults."""
    row = (
        db.query(ModerationSettings).filter(ModerationSettings.account_id == account_id).one_or_none()
        or db.query(ModerationSettings).filter(ModerationSettings.account_id.is_(None)).one_or_none()
    )
    if row is None:
        return EffectiveSettings()
    return EffectiveSettings(
        global_threshold=row.global_threshold,
        confidence_delete_threshold=row.confidence_delete_threshold,
        confidence_hide_threshold=row.confidence_hide_threshold,
        category_overrides=dict(row.category_overrides or {}),
    )


@dataclass(frozen=True)
class ActionChoice:
    """Selected action, the risk it is recorded with, and why."""

    action: ActionTaken
    risk_score: int
    reason: str


def select_action(
    result: ClassificationResult,
    risk_score: int,
    effective: EffectiveSettings,
    matched_filters: Sequence[CustomFilter] = (),
) -> ActionChoice:
    """Map a classification and its risk onto an action."""
    if result.injection_suspected:
        return ActionChoice(ActionTaken.FLAGGED, risk_score, "INJECTION_SUSPECTED")

    if any(rule.auto_delete for rule in matched_filters):
        return ActionChoice(
            ActionTaken.DELETED, custom_filter_risk("delete", result.category), "CUSTOM_FILTER_DELETE"
        )
    if any(rule.auto_hide for rule in matched_filters):
        return ActionChoice(
            ActionTaken.HIDDEN, custom_filter_risk("hide", result.category), "CUSTOM_FILTER_HIDE"
        )
    if any(rule.auto_flag for rule in matched_filters):
        return ActionChoice(
            ActionTaken.FLAGGED, custom_filter_risk("flag", result.category), "CUSTOM_FILTER_FLAG"
        )

    if result.is_benign:
        return ActionChoice(ActionTaken.ALLOWED, risk_score, "BENIGN")

    thresholds = effective.thresholds_for(result.category)
    want_delete = thresholds.auto_delete and risk_score >= thresholds.delete_threshold
    want_hide = thresholds.auto_hide and risk_score >= thresholds.hide_threshold

    if want_delete and result.confidence >= effective.confidence_delete_threshold:
        return ActionChoice(ActionTaken.DELETED, risk_score, "THRESHOLD_DELETE")
    if (want_delete or want_hide) and result.confidence >= effective.confidence_hide_threshold:
        return ActionChoice(ActionTaken.HIDDEN, risk_score, "THRESHOLD_HIDE")
    return ActionChoice(ActionTaken.FLAGGED, risk_score, "NEEDS_REVIEW")


@dataclass
class _Verdict:
    category: Category
    severity: int
    confidence: float
    rationale: str
    action: ActionTaken
    risk_score: int
    model: str
    risk_formula: str | None = None
    formula_inputs: dict[str, Any] | None = None
    degraded: bool = False
    injection_suspected: bool = False
    request_payload: dict[str, Any] | None = None
    response_payload: dict[str, Any] | None = None
    result: ClassificationResult | None = None
    track: bool = True
    watchlist_hits: tuple[WatchlistHit, ...] = ()


@dataclass(frozen=True)
class PipelineOutcome:
    """What the pipeline did with one comment."""

    comment_id: int
    decision_id: int
    action: ActionTaken
    status: ModerationStatus
    risk_score: int
    action_succeeded: bool


class ModerationPipeline:
    """Runs the full moderation flow for one comment at a time."""

    def __init__(
        self,
        classifier: ClassificationEngine | None = None,
        similarity: SimilarityEngine | None = None,
        executor: ActionExecutor | None = None,
        suspicious: SuspiciousAccountService | None = None,
        db_session: Session | None = None,
        whitelist: WhitelistService | None = None,
        watchlist: WatchlistService | None = None,
    ) -> None:
        self.classifier = classifier or get_classification_engine()
        self.similarity = similarity or SimilarityEngine()
        self.executor = executor or ActionExecutor(get_platform_client())
        self.suspicious = suspicious or SuspiciousAccountService()
        self.whitelist = whitelist or WhitelistService()
        self.watchlist = watchlist or WatchlistService()
        self._db_session = db_session

    async def moderate_comment(self, comment_id: int) -> PipelineOutcome | None:
        """Moderate a stored comment; returns None when there is nothing to do."""
        if self._db_session is not None:
            return await self._moderate(self._db_session, comment_id)
        with SessionLocal() as db:
            return await self._moderate(db, comment_id)

    async def _moderate(self, db: Session, comment_id: int) -> PipelineOutcome | None:
        comment = db.get(Comment, comment_id)
        if comment is None:
            logger.warning("Comment %s no longer exists, skipping", comment_id)
            return None
        if comment.moderation_status not in (ModerationStatus.NEW.value, ModerationStatus.CLASSIFYING.value):
            logger.debug("Comment %s already moderated (%s)", comment_id, comment.moderation_status)
            return None

        post = db.get(Post, comment.post_id)
        account = db.get(PlatformAccount, post.account_id) if post else None
        if account is None:
            logger.warning("Comment %s has no owning account, skipping", comment_id)
            return None

        comment.moderation_status = ModerationStatus.CLASSIFYING.value
        db.commit()
        classified_text = comment.text

        verdict = await self._decide(db, comment, account)
        return await self._persist(db, comment, account, verdict, classified_text)

    async def _decide(self, db: Session, comment: Comment, account: PlatformAccount) -> _Verdict:
        if self.whitelist.is_commenter_whitelisted(
            db, account, comment.commenter_id, comment.commenter_username
        ):
            return _Verdict(
                category=Category.BENIGN,
                severity=0,
                confidence=1.0,
                rationale="Commenter is whitelisted, moderation bypassed",
                action=ActionTaken.ALLOWED,
                risk_score=0,
                model="whitelist",
                track=False,
            )

        if is_owner_comment(account, comment.commenter_id, comment.commenter_username):
            return _Verdict(
                category=Category.BENIGN,
                severity=0,
                confidence=1.0,
                rationale="Comment written by the account owner",
                action=ActionTaken.ALLOWED,
                risk_score=0,
                model="owner-check",
                track=False,
            )

        blocked = self._commenter_short_circuit(db, comment, account)
        if blocked is not None:
            return blocked

        hint: SimilarityHint | None = None
        embedding = await self.similarity.ensure_embedding(db, comment)
        if embedding:
            match = self.similarity.best_precedent(db, account, embedding)
            if match is not None and match.is_match:
                return self._precedent_verdict(match)
            hint = self._allow_hint(db, account, embedding)

        filters = self._enabled_filters(db, account)
        result = await self.classifier.classify(comment.text, filters, hint)
        if not result.injection_suspected:
            result = await reevaluate(
                result, detect_patterns(comment.text), comment.text, self.classifier.reevaluate_for_category
            )

        listed = self._list_verdict(db, comment, account, result)
        if listed is not None:
            return listed

        matched = await self._matched_filters(comment.text, result, filters)
        risk = self._risk_for(db, account, comment, result)
        effective = load_effective_settings(db, account.id)
        choice = select_action(result, risk.risk_score, effective, matched)

        if risk.should_escalate:
            logger.warning(
                "Comment %s escalated: %s with risk %d (%s)",
                comment.remote_id,
                result.category.value,
                risk.risk_score,
                risk.formula,
            )

        formula_inputs = {
            "severity": result.severity,
            "confidence": result.confidence,
            **risk.as_dict(),
            "reason": choice.reason,
            "matched_filter_ids": [rule.id for rule in matched],
        }
        return _Verdict(
            category=result.category,
            severity=result.severity,
            confidence=result.confidence,
            rationale=result.rationale,
            action=choice.action,
            risk_score=choice.risk_score,
            model=result.model or self.classifier.model,
            risk_formula=risk.formula,
            formula_inputs=formula_inputs,
            degraded=result.degraded,
            injection_suspected=result.injection_suspected,
            request_payload=result.request_payload,
            response_payload=result.response_payload,
            result=result,
        )

    def _commenter_short_circuit(
        self, db: Session, comment: Comment, account: PlatformAccount
    ) -> _Verdict | None:
        record = self.suspicious.get(db, account.id, comment.commenter_id)
        if record is None:
            return None

        counts = {
            Category.BLACKMAIL: record.blackmail_count,
            Category.THREAT: record.threat_count,
            Category.HARASSMENT: record.harassment_count,
            Category.DEFAMATION: record.defamation_count,
            Category.SPAM: record.spam_count,
        }
        category = next((c for c in CATEGORY_SEVERITY_ORDER if counts.get(c)), Category.SPAM)

        if record.is_blocked or record.auto_delete_enabled:
            reason = record.block_reason or "auto-delete enabled for this commenter"
            return _Verdict(
                category=category,
                severity=BLOCKED_COMMENTER_RISK,
                confidence=1.0,
                rationale=f"Commenter is blocked: {reason}",
                action=ActionTaken.DELETED,
                risk_score=BLOCKED_COMMENTER_RISK,
                model="suspicious-account",
            )
        if record.auto_hide_enabled:
            return _Verdict(
                category=category,
                severity=AUTO_HIDE_COMMENTER_RISK,
                confidence=1.0,
                rationale="Auto-hide enabled for this commenter",
                action=ActionTaken.HIDDEN,
                risk_score=AUTO_HIDE_COMMENTER_RISK,
                model="suspicious-account",
            )
        return None

    def _list_verdict(
        self, db: Session, comment: Comment, account: PlatformAccount, result: ClassificationResult
    ) -> _Verdict | None:
        """Watchlisted commenter, whitelisted identifier, then watchlisted mention."""
        model = result.model or self.classifier.model
        payloads = {
            "request_payload": result.request_payload,
            "response_payload": result.response_payload,
            "degraded": result.degraded,
            "injection_suspected": result.injection_suspected,
            "result": result,
        }

        hits = self.watchlist.commenter_hits(db, account, comment.commenter_id, comment.commenter_username)
        if hits:
            names = ", ".join(hit.name for hit in hits)
            return _Verdict(
                category=result.category,
                severity=WATCHLIST_RISK,
                confidence=max(result.confidence, WATCHLIST_MIN_CONFIDENCE),
                rationale=f"Auto-deleted: commenter matches watchlist entry ({names}). {result.rationale}",
                action=ActionTaken.DELETED,
                risk_score=WATCHLIST_RISK,
                model=model,
                formula_inputs={"reason": "WATCHLIST_MATCH", "watchlist_entry_ids": [h.entry_id for h in hits]},
                watchlist_hits=tuple(hits),
                **payloads,
            )

        # Identifiers from a comment that tried to steer the model are not trusted.
        if not result.injection_suspected:
            trusted = self.whitelist.whitelisted_identifier(db, account, result.identifiers)
            if trusted is not None:
                return _Verdict(
                    category=Category.BENIGN,
                    severity=0,
                    confidence=result.confidence,
                    rationale=f"Whitelisted {trusted.type.value} {trusted.value}. {result.rationale}",
                    action=ActionTaken.ALLOWED,
                    risk_score=0,
                    model=model,
                    formula_inputs={"reason": "WHITELISTED"},
                    track=False,
                    **payloads,
                )

        hits = self.watchlist.mention_hits(db, account, comment.text)
        if hits:
            names = ", ".join(hit.name for hit in hits)
            return _Verdict(
                category=result.category,
                severity=result.severity,
                confidence=result.confidence,
                rationale=f"Auto-deleted: comment mentions watchlist account(s): {names}",
                action=ActionTaken.DELETED,
                risk_score=WATCHLIST_RISK,
                model=model,
                formula_inputs={"reason": "WATCHLIST_MENTION", "watchlist_entry_ids": [h.entry_id for h in hits]},
                watchlist_hits=tuple(hits),
                **payloads,
            )
        return None

    @staticmethod
    def _precedent_verdict(match: PrecedentMatch) -> _Verdict:
        pct = round(match.similarity * 100)
        threshold_pct = round(match.threshold * 100)
        inputs = {
            "precedent_id": match.precedent_id,
            "similarity": match.similarity,
            "threshold": match.threshold,
        }
        if match.verdict == PrecedentVerdict.ALLOW:
            return _Verdict(
                category=Category.BENIGN,
                severity=0,
                confidence=match.similarity,
                rationale=(
                    f"Allowed: {pct}% similarity to a reviewed comment "
                    f"(threshold {threshold_pct}%). Classifier skipped."
                ),
                action=ActionTaken.ALLOWED,
                risk_score=0,
                model="precedent",
                formula_inputs=inputs,
            )

        category = Category.parse(match.category) or Category.SPAM
        if match.verdict == PrecedentVerdict.DELETE:
            action, risk, label = ActionTaken.DELETED, PRECEDENT_DELETE_RISK, "Auto-deleted"
        else:
            action, risk, label = ActionTaken.HIDDEN, PRECEDENT_HIDE_RISK, "Auto-hidden"
        return _Verdict(
            category=category,
            severity=risk,
            confidence=match.similarity,
            rationale=(
                f"{label}: {pct}% similarity to a reviewed comment "
                f"(threshold {threshold_pct}%). Classifier skipped."
            ),
            action=action,
            risk_score=risk,
            model="precedent",
            formula_inputs=inputs,
        )

    def _allow_hint(
        self, db: Session, account: PlatformAccount, embedding: Sequence[float]
    ) -> SimilarityHint | None:
        allowed = self.similarity.best_precedent(db, account, embedding, verdict=PrecedentVerdict.ALLOW)
        if allowed is None or allowed.similarity < settings.similarity_hint_floor:
            return None
        return SimilarityHint(similarity=allowed.similarity, text=allowed.text, category=allowed.category)

    @staticmethod
    def _enabled_filters(db: Session, account: PlatformAccount) -> list[CustomFilter]:
        return (
            db.query(CustomFilter)
            .filter(
                CustomFilter.is_enabled.is_(True),
                or_(CustomFilter.owner_id.is_(None), CustomFilter.owner_id == account.owner_id),
                or_(CustomFilter.account_id.is_(None), CustomFilter.account_id == account.id),
            )
            .order_by(CustomFilter.id)
            .all()
        )

    async def _matched_filters(
        self, text: str, result: ClassificationResult, filters: Sequence[CustomFilter]
    ) -> list[CustomFilter]:
        actionable = [rule for rule in filters if rule.auto_delete or rule.auto_hide or rule.auto_flag]
        if not actionable or result.injection_suspected:
            return []

        matched = [
            rule
            for rule in actionable
            if not result.is_benign and Category.parse(rule.category) == result.category
        ]
        remaining = [rule for rule in actionable if rule not in matched]
        if remaining:
            ids = set(await self.classifier.match_filters(text, remaining))
            matched.extend(rule for rule in remaining if rule.id in ids)
        return matched

    def _risk_for(
        self, db: Session, account: PlatformAccount, comment: Comment, result: ClassificationResult
    ) -> RiskResult:
        record = self.suspicious.get(db, account.id, comment.commenter_id)
        repeat_count = record.flagged_comments if record else 0
        velocity = record.comment_velocity if record else 0.0
        age_days = 0.0
        if record is not None:
            age_days = (utcnow() - as_aware(record.first_seen_at)).total_seconds() / 86400
        return calculate_risk_score(
            RiskInputs(
                severity=result.severity,
                confidence=result.confidence,
                repeat_offender_count=repeat_count,
                comment_velocity=velocity,
                account_age_days=age_days,
            )
        )

    async def _persist(
        self,
        db: Session,
        comment: Comment,
        account: PlatformAccount,
        verdict: _Verdict,
        classified_text: str,
    ) -> PipelineOutcome | None:
        # An edit synced while the verdict was being made wins; its rerun decides.
        db.refresh(comment, ["text", "moderation_status"])
        if comment.text != classified_text:
            logger.info("Comment %s was edited during classification, verdict dropped", comment.remote_id)
            return None

        decision = ModerationDecision(
            comment_id=comment.id,
            category=verdict.category.value,
            severity=verdict.severity,
            confidence=verdict.confidence,
            rationale=verdict.rationale,
            risk_score=verdict.risk_score,
            risk_formula=verdict.risk_formula,
            model_name=verdict.model,
            action_taken=verdict.action.value,
            is_degraded_mode=verdict.degraded,
            injection_suspected=verdict.injection_suspected,
        )
        db.add(decision)
        db.flush()

        outcome: ActionOutcome = await self.executor.execute(comment, verdict.action, account.access_token)

        db.add(
            EvidenceRecord(
                decision_id=decision.id,
                raw_text=comment.text,
                raw_commenter_id=comment.commenter_id,
                raw_commenter_username=comment.commenter_username,
                request_payload=verdict.request_payload,
                response_payload=verdict.response_payload,
                formula_inputs=verdict.formula_inputs,
                platform_confirmation=outcome.as_evidence(),
            )
        )
        for hit in verdict.watchlist_hits:
            self.watchlist.record_detection(db, hit, comment, verdict.action, outcome.success)
        status = ACTION_STATUS[verdict.action]
        comment.moderation_status = status.value

        if verdict.track:
            record = self.suspicious.track(
                db,
                TrackedDecision(
                    account_id=account.id,
                    comment_id=comment.id,
                    commenter_id=comment.commenter_id,
                    commenter_username=comment.commenter_username,
                    category=verdict.category,
                    risk_score=verdict.risk_score,
                    was_deleted=verdict.action == ActionTaken.DELETED and outcome.success,
                ),
            )
            if verdict.result is not None and verdict.result.identifiers:
                self.suspicious.store_identifiers(db, record, comment.id, verdict.result.identifiers)

        db.commit()
        logger.info(
            "Comment %s: %s (%s, risk %d)",
            comment.remote_id,
            verdict.action.value,
            verdict.category.value,
            verdict.risk_score,
        )
        return PipelineOutcome(
            comment_id=comment.id,
            decision_id=decision.id,
            action=verdict.action,
            status=status,
            risk_score=verdict.risk_score,
            action_succeeded=outcome.success,
        )
