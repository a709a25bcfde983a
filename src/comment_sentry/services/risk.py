"""Deterministic risk scoring and per-category threshold resolution.

Nothing in this module touches the database or the network. The pipeline
feeds it classifier output plus commenter history and acts on the result.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import asdict, dataclass, fields, replace
from typing import Any

from comment_sentry.core.enums import Category

RISK_MIN = 0
RISK_MAX = 100
DELETE_RISK = 70
ESCALATE_RISK = 85

REPEAT_OFFENDER_STEP = 10
REPEAT_OFFENDER_CAP = 30
VELOCITY_LIMIT = 5
VELOCITY_BONUS = 20
ESTABLISHED_ACCOUNT_DAYS = 365
ESTABLISHED_ACCOUNT_ADJUSTMENT = -10

DEFAULT_GLOBAL_THRESHOLD = 70


@dataclass(frozen=True)
class RiskInputs:
    """Inputs to the risk formula."""

    severity: int
    confidence: float
    repeat_offender_count: int = 0
    comment_velocity: float = 0.0
    account_age_days: float = 0.0


@dataclass(frozen=True)
class RiskResult:
    """Risk score together with every term that produced it."""

    base_score: int
    repeat_offender_bonus: int
    velocity_bonus: int
    age_adjustment: int
    risk_score: int
    should_delete: bool
    should_escalate: bool

    @property
    def formula(self) -> str:
        """Human-readable trace stored alongside the decision."""
        return (
            f"base({self.base_score}) + repeat({self.repeat_offender_bonus}) + "
            f"velocity({self.velocity_bonus}) + age({self.age_adjustment}) "
            f"= {self.risk_score}"
        )

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["formula"] = self.formula
        return data


def calculate_risk_score(inputs: RiskInputs) -> RiskResult:
    """Compute ``clamp(0, 100, severity*confidence + bonuses + adjustment)``.

    Args:
        inputs: Classifier severity/confidence and the commenter's history.

    Returns:
        The clamped score and its components.
    """
    base_score = round(inputs.severity * inputs.confidence)
    repeat_bonus = min(inputs.repeat_offender_count * REPEAT_OFFENDER_STEP, REPEAT_OFFENDER_CAP)
    velocity_bonus = VELOCITY_BONUS if inputs.comment_velocity > VELOCITY_LIMIT else 0
    age_adjustment = (
        ESTABLISHED_ACCOUNT_ADJUSTMENT
        if inputs.account_age_days > ESTABLISHED_ACCOUNT_DAYS
        else 0
    )

    raw = base_score + repeat_bonus + velocity_bonus + age_adjustment
    risk_score = max(RISK_MIN, min(RISK_MAX, raw))

    return RiskResult(
        base_score=base_score,
        repeat_offender_bonus=repeat_bonus,
        velocity_bonus=velocity_bonus,
        age_adjustment=age_adjustment,
        risk_score=risk_score,
        should_delete=risk_score > DELETE_RISK,
        should_escalate=risk_score > ESCALATE_RISK,
    )


def formula_explanation() -> str:
    """Describe the risk formula for dashboards and evidence exports."""
    return (
        "risk = clamp(0, 100, severity x confidence"
        f" + min(repeat_offenses x {REPEAT_OFFENDER_STEP}, {REPEAT_OFFENDER_CAP})"
        f" + ({VELOCITY_BONUS} if velocity > {VELOCITY_LIMIT}/day)"
        f" + ({ESTABLISHED_ACCOUNT_ADJUSTMENT} if account age > {ESTABLISHED_ACCOUNT_DAYS} days));"
        f" delete when > {DELETE_RISK}, escalate when > {ESCALATE_RISK}"
    )


@dataclass(frozen=True)
class CategoryThresholds:
    """Effective enable flags and risk thresholds for one category."""

    auto_delete: bool
    delete_threshold: int
    auto_hide: bool
    hide_threshold: int
    auto_flag: bool
    flag_threshold: int

    def merged(self, override: Mapping[str, Any]) -> CategoryThresholds:
        """Apply a partial override, ignoring unknown keys and null values."""
        known = {f.name for f in fields(self)}
        changes: dict[str, Any] = {}
        for key, value in override.items():
            if key not in known or value is None:
                continue
            current = getattr(self, key)
            changes[key] = bool(value) if isinstance(current, bool) else int(value)
        return replace(self, **changes) if changes else self


DEFAULT_CATEGORY_THRESHOLDS: dict[Category, CategoryThresholds] = {
    Category.BLACKMAIL: CategoryThresholds(True, 70, False, 60, True, 50),
    Category.THREAT: CategoryThresholds(True, 70, False, 60, True, 50),
    Category.HARASSMENT: CategoryThresholds(True, 75, False, 65, True, 55),
    Category.DEFAMATION: CategoryThresholds(True, 75, False, 65, True, 55),
    Category.SPAM: CategoryThresholds(False, 85, False, 75, True, 65),
}


def global_default_thresholds(global_threshold: int = DEFAULT_GLOBAL_THRESHOLD) -> CategoryThresholds:
    """Thresholds applied when no valid harmful category is available."""
    return CategoryThresholds(
        auto_delete=False,
        delete_threshold=global_threshold,
        auto_hide=False,
        hide_threshold=global_threshold,
        auto_flag=True,
        flag_threshold=global_threshold,
    )


def resolve_thresholds(
    category: Category | str | None,
    overrides: Mapping[str, Mapping[str, Any]] | None = None,
    global_threshold: int = DEFAULT_GLOBAL_THRESHOLD,
) -> CategoryThresholds:
    """Resolve the effective thresholds for a category.

    Account-specific overrides win over the built-in defaults. Any value that is
    not one of the harmful categories resolves to the global default.
    """
    parsed = Category.parse(category)
    if parsed is None or parsed not in DEFAULT_CATEGORY_THRESHOLDS:
        return global_default_thresholds(global_threshold)

    base = DEFAULT_CATEGORY_THRESHOLDS[parsed]
    override = (overrides or {}).get(parsed.value)
    if not override:
        return base
    return base.merged(override)


# Risk assigned when a custom filter or precedent forces the action.
CUSTOM_FILTER_RISK = {"delete": 80, "hide": 65, "flag": 50}
HIGH_SEVERITY_CATEGORIES = frozenset({Category.BLACKMAIL, Category.THREAT})


def custom_filter_risk(action: str, category: Category | str | None) -> int:
    """Risk score for an action forced by a custom filter match."""
    score = CUSTOM_FILTER_RISK.get(action, CUSTOM_FILTER_RISK["flag"])
    if Category.parse(category) in HIGH_SEVERITY_CATEGORIES:
        score += 10
    return min(RISK_MAX, score)
