"""Seed skills — the starting rulebook registered on a fresh workspace.

Screening guardrails, decision rules, the default tuning config and the
knowledge policy. Evolution and human edits take it from here.
"""

from __future__ import annotations

import logging

from adpilot.skills.schema import (
    ActionEffect,
    Condition,
    ConfigSkill,
    HistoryCheck,
    MetaSkill,
    RuleSkill,
    SkillBase,
    VerdictEffect,
)
from adpilot.skills.store import SkillStore
from adpilot.types import ActionType, Label, Verdict

_logger = logging.getLogger(__name__)


def _c(field: str, op: str, value) -> Condition:
    return Condition(field=field, op=op, value=value)


def screening_rules() -> list[RuleSkill]:
    return [
        RuleSkill(
            name="cold-start",
            description="Too little spend to say anything yet",
            priority=100,
            conditions=[_c("total_spend_3d", "<", 5)],
            effect=VerdictEffect(
                verdict=Verdict.SKIP, urgency=1,
                reason_template="only ${total_spend_3d} spent in 3 days",
            ),
        ),
        RuleSkill(
            name="low-confidence-low-spend",
            description="Unreliable data on a small entity; wait for more",
            priority=90,
            conditions=[_c("confidence", "<", 0.3), _c("total_spend_3d", "<", 30)],
            effect=VerdictEffect(
                verdict=Verdict.SKIP, urgency=1,
                reason_template="data confidence {confidence} at ${total_spend_3d} spend",
            ),
        ),
        RuleSkill(
            name="severe-loss-guard",
            description="Sustained loss well below break-even",
            priority=80,
            conditions=[_c("total_spend_3d", ">", 50), _c("avg_roas_3d", "<", 0.2)],
            effect=VerdictEffect(
                verdict=Verdict.NEEDS_DECISION, urgency=5,
                reason_template="3-day roas {avg_roas_3d} on ${total_spend_3d}",
            ),
        ),
        RuleSkill(
            name="zero-conversion-guard",
            description="Real money spent with nothing to show for it",
            priority=75,
            conditions=[
                _c("today_spend", ">", 50),
                _c("today_conversions", "==", 0),
                _c("today_roas", "==", 0),
            ],
            effect=VerdictEffect(
                verdict=Verdict.NEEDS_DECISION, urgency=5,
                reason_template="${today_spend} spent today, zero conversions",
            ),
        ),
        RuleSkill(
            name="mild-loss-check",
            priority=60,
            conditions=[_c("total_spend_3d", ">", 30), _c("avg_roas_3d", "<", 0.8)],
            effect=VerdictEffect(
                verdict=Verdict.NEEDS_DECISION, urgency=3,
                reason_template="3-day roas {avg_roas_3d} below 0.8",
            ),
        ),
        RuleSkill(
            name="high-potential-check",
            priority=50,
            conditions=[_c("total_spend_3d", ">", 30), _c("avg_roas_3d", ">=", 2.5)],
            effect=VerdictEffect(
                verdict=Verdict.NEEDS_DECISION, urgency=2,
                reason_template="3-day roas {avg_roas_3d}, room to scale",
            ),
        ),
        RuleSkill(
            name="rising-trend-check",
            priority=40,
            conditions=[
                _c("trend", "==", "rising"),
                _c("avg_roas_3d", ">=", 1.5),
                _c("total_spend_3d", ">", 30),
            ],
            effect=VerdictEffect(
                verdict=Verdict.NEEDS_DECISION, urgency=2,
                reason_template="roas trending up from {avg_roas_3d}",
            ),
        ),
        RuleSkill(
            name="below-benchmark-watch",
            description="Under the portfolio's bottom quartile; escalate on a break from its own history",
            priority=20,
            conditions=[
                _c("total_spend_3d", ">", 30),
                _c("below_benchmark_p25", "==", True),
            ],
            effect=VerdictEffect(
                verdict=Verdict.WATCH, urgency=2,
                reason_template="roas {avg_roas_3d} below P25 benchmark {benchmark_p25}",
                history_check=HistoryCheck(field="roas", stddev_threshold=2.0, min_samples=5),
            ),
        ),
    ]


def decision_rules() -> list[RuleSkill]:
    return [
        RuleSkill(
            name="pause-severe-loss",
            priority=100,
            effect=ActionEffect(
                trigger_labels=[Label.LOSS_SEVERE],
                action_type=ActionType.PAUSE,
                auto=True,
                reason_template="severe loss: 3-day roas {avg_roas_3d} on ${total_spend_3d}",
                guidance=["Pause immediately when 3-day roas is under the severe floor."],
            ),
        ),
        RuleSkill(
            name="pause-zero-conversion",
            priority=95,
            conditions=[_c("total_spend_3d", ">", 100), _c("total_conversions_3d", "==", 0)],
            effect=ActionEffect(
                action_type=ActionType.PAUSE,
                auto=True,
                reason_template="${total_spend_3d} over 3 days with zero conversions",
                guidance=["Pause when more than $100 over 3 days produced no conversions."],
            ),
        ),
        RuleSkill(
            name="pause-mild-loss",
            priority=80,
            effect=ActionEffect(
                trigger_labels=[Label.LOSS_MILD],
                action_type=ActionType.PAUSE,
                auto=False,
                reason_template="mild loss: 3-day roas {avg_roas_3d}",
                guidance=["Mild losses need a human to confirm the pause."],
            ),
        ),
        RuleSkill(
            name="pause-declining",
            priority=70,
            effect=ActionEffect(
                trigger_labels=[Label.DECLINING],
                action_type=ActionType.PAUSE,
                auto=False,
                reason_template="declining: roas {yesterday_roas} -> {today_roas}",
                guidance=["A sharp decline from a healthy level warrants a reviewed pause."],
            ),
        ),
        RuleSkill(
            name="scale-high-potential",
            priority=60,
            conditions=[_c("estimated_daily_spend", "<", 200)],
            effect=ActionEffect(
                trigger_labels=[Label.HIGH_POTENTIAL],
                action_type=ActionType.ADJUST_BUDGET,
                auto=False,
                budget_change_pct=25.0,
                reason_template="high potential: 3-day roas {avg_roas_3d}, est. ${estimated_daily_spend}/day",
                guidance=["Scale winners by 25% while daily spend is under $200."],
            ),
        ),
        RuleSkill(
            name="scale-stable-good",
            priority=50,
            effect=ActionEffect(
                trigger_labels=[Label.STABLE_GOOD],
                action_type=ActionType.ADJUST_BUDGET,
                auto=False,
                budget_change_pct=15.0,
                reason_template="stable and profitable at roas {avg_roas_3d}",
                guidance=["Nudge stable, profitable entities up by 15%."],
            ),
        ),
    ]


def seed_skills() -> list[SkillBase]:
    return [
        ConfigSkill(name="tuning", description="Pipeline thresholds"),
        MetaSkill(name="knowledge-policy", description="Knowledge decay and promotion"),
        *screening_rules(),
        *decision_rules(),
    ]


async def bootstrap(store: SkillStore) -> int:
    """Register any seed skill not yet present (matched by name)."""
    added = 0
    for skill in seed_skills():
        if await store.find_by_name(skill.name) is None:
            await store.register(skill, reason="seed")
            added += 1
    if added:
        _logger.info("Seeded %d skills", added)
    return added
