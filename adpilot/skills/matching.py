"""Skill matching — does a skill apply to this entity, and which one wins.

Matching is deterministic: candidates are ordered by priority (highest
first) and then by registration order, so exactly one skill is credited
with every verdict and every proposed action.
"""

from __future__ import annotations

import fnmatch
import operator
import re
from typing import Any, Callable, Iterable

from adpilot.skills.schema import Condition, RuleSkill, SkillBase, SkillScope
from adpilot.tuning import ClassifierThresholds, ThresholdOverrides

_OPS: dict[str, Callable[[Any, Any], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_PLACEHOLDER = re.compile(r"\{([a-zA-Z0-9_]+)\}")


def matches_scope(scope: SkillScope, facts: dict[str, Any]) -> bool:
    """Every declared filter must match; a declared filter on a missing attribute fails."""
    if scope.products:
        product = str(facts.get("product") or "").lower()
        if not product or not any(fnmatch.fnmatchcase(product, p.lower()) for p in scope.products):
            return False
    if scope.platforms:
        platform = str(facts.get("platform") or "").lower()
        if not platform or not any(p.lower() in platform for p in scope.platforms):
            return False
    if scope.accounts:
        if str(facts.get("account_id") or "") not in scope.accounts:
            return False
    if scope.channels:
        channel = str(facts.get("channel") or "").lower()
        if not channel or channel not in {c.lower() for c in scope.channels}:
            return False
    return True


def evaluate_condition(condition: Condition, facts: dict[str, Any]) -> bool:
    """A condition on a missing field, or on incomparable types, is false."""
    if condition.field not in facts:
        return False
    actual = facts[condition.field]
    if actual is None:
        return False
    expected = condition.value
    if hasattr(actual, "value") and isinstance(expected, str):
        actual = actual.value  # enums compare by their string value
    try:
        return bool(_OPS[condition.op](actual, expected))
    except TypeError:
        return False


def evaluate_conditions(
    conditions: list[Condition],
    facts: dict[str, Any],
    combinator: str = "and",
) -> bool:
    if not conditions:
        return True
    results = (evaluate_condition(c, facts) for c in conditions)
    return any(results) if combinator == "or" else all(results)


def matches(skill: SkillBase, facts: dict[str, Any]) -> bool:
    if not skill.active:
        return False
    if not matches_scope(skill.scope, facts):
        return False
    if isinstance(skill, RuleSkill):
        return evaluate_conditions(skill.conditions, facts, skill.combinator)
    return True


def resolution_order(skills: Iterable[SkillBase]) -> list[SkillBase]:
    return sorted(skills, key=lambda s: (-s.priority, s.order))


def first_match(skills: Iterable[SkillBase], facts: dict[str, Any]) -> SkillBase | None:
    for skill in resolution_order(skills):
        if matches(skill, facts):
            return skill
    return None


def merge_thresholds(
    defaults: ClassifierThresholds,
    overrides: ThresholdOverrides | None,
) -> ClassifierThresholds:
    """Override values win field-by-field; None keeps the default."""
    if overrides is None:
        return defaults
    update = {k: v for k, v in overrides.model_dump().items() if v is not None}
    return defaults.model_copy(update=update)


def render_reason(template: str, facts: dict[str, Any]) -> str:
    """Fill `{field}` placeholders from facts; unknown names are left as-is."""
    def _sub(m: re.Match) -> str:
        value = facts.get(m.group(1))
        if value is None:
            return m.group(0)
        if isinstance(value, float):
            return f"{value:.2f}"
        return str(getattr(value, "value", value))
    return _PLACEHOLDER.sub(_sub, template)


def describe_conditions(skill: RuleSkill) -> str:
    if not skill.conditions:
        return "always"
    return f" {skill.combinator.upper()} ".join(str(c) for c in skill.conditions)
