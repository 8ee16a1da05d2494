"""Classifier — one performance label per needs_decision entity.

A strictly ordered cascade; the first matching branch wins and every
entity gets exactly one label. Pure rules, no reasoning service.
"""

from __future__ import annotations

import logging
from collections import Counter

from pydantic import BaseModel

from adpilot.skills.matching import first_match, merge_thresholds
from adpilot.skills.schema import RuleSkill, ThresholdEffect
from adpilot.tuning import ClassifierThresholds
from adpilot.types import CampaignMetrics, Label

_logger = logging.getLogger(__name__)

LOW_DAY_WINDOW = 3


class Classification(BaseModel):
    entity_id: str
    label: Label
    reason: str
    skill_id: str | None = None


def count_low_days(metrics: CampaignMetrics, roas_floor: float, min_spend: float) -> int:
    """Days in the 3-day window that spent above `min_spend` at a ratio under `roas_floor`."""
    window = metrics.daily[-LOW_DAY_WINDOW:]
    return sum(1 for d in window if d.spend > min_spend and d.roas < roas_floor)


def classify(metrics: CampaignMetrics, t: ClassifierThresholds) -> tuple[Label, str]:
    spend = metrics.total_spend_3d
    roas = metrics.avg_roas_3d

    if spend < t.observe_max_spend:
        return Label.OBSERVING, f"3-day spend ${spend:.2f} < ${t.observe_max_spend:.0f}, not enough data"

    if roas < t.loss_severe_roas and spend >= t.loss_severe_min_spend:
        low_days = count_low_days(metrics, t.loss_severe_roas, t.low_day_min_spend)
        if low_days >= t.loss_severe_min_days:
            return Label.LOSS_SEVERE, (
                f"ROAS {roas:.2f} < {t.loss_severe_roas} for {low_days} days, "
                f"3-day spend ${spend:.2f} >= ${t.loss_severe_min_spend:.0f}"
            )

    if metrics.day_before_roas > t.stable_good_min and metrics.roas_trend_pct < -t.decline_drop_pct:
        return Label.DECLINING, (
            f"ROAS fell from {metrics.day_before_roas:.2f} to {metrics.yesterday_roas:.2f} "
            f"({metrics.roas_trend_pct:.0f}%, limit -{t.decline_drop_pct:.0f}%)"
        )
    if metrics.yesterday_roas > t.stable_good_min and metrics.today_roas < t.loss_mild_roas:
        return Label.DECLINING, (
            f"ROAS dropped from {metrics.yesterday_roas:.2f} yesterday to {metrics.today_roas:.2f} today "
            f"(< {t.loss_mild_roas})"
        )

    if roas < t.loss_mild_roas and spend >= t.loss_mild_min_spend:
        low_days = count_low_days(metrics, t.loss_mild_roas, t.low_day_min_spend)
        if low_days >= t.loss_mild_min_days:
            return Label.LOSS_MILD, f"ROAS {roas:.2f} < {t.loss_mild_roas} for {low_days} days"

    if roas >= t.high_potential_roas:
        return Label.HIGH_POTENTIAL, f"ROAS {roas:.2f} >= {t.high_potential_roas}"
    if roas >= t.high_potential_trend_roas and metrics.roas_trend_pct > t.trend_up_pct:
        return Label.HIGH_POTENTIAL, (
            f"ROAS {roas:.2f} >= {t.high_potential_trend_roas} with uptrend "
            f"{metrics.roas_trend_pct:.0f}% > {t.trend_up_pct:.0f}%"
        )

    if t.stable_good_min <= roas < t.stable_good_max:
        return Label.STABLE_GOOD, f"ROAS {roas:.2f} within {t.stable_good_min}-{t.stable_good_max}"

    return Label.STABLE_NORMAL, f"ROAS {roas:.2f}, no notable trend"


class Classifier:
    def __init__(self, defaults: ClassifierThresholds | None = None) -> None:
        self._defaults = defaults or ClassifierThresholds()

    def thresholds_for(
        self,
        metrics: CampaignMetrics,
        rules: list[RuleSkill],
    ) -> tuple[ClassifierThresholds, RuleSkill | None]:
        threshold_rules = [r for r in rules if isinstance(r.effect, ThresholdEffect)]
        skill = first_match(threshold_rules, metrics.facts())
        if isinstance(skill, RuleSkill) and isinstance(skill.effect, ThresholdEffect):
            return merge_thresholds(self._defaults, skill.effect.thresholds), skill
        return self._defaults, None

    def classify_one(self, metrics: CampaignMetrics, rules: list[RuleSkill] | None = None) -> Classification:
        thresholds, skill = self.thresholds_for(metrics, rules or [])
        label, reason = classify(metrics, thresholds)
        if skill is not None:
            reason = f"{reason} (thresholds from {skill.name})"
        return Classification(
            entity_id=metrics.entity_id,
            label=label,
            reason=reason,
            skill_id=skill.id if skill else None,
        )

    def classify_all(
        self,
        metrics: list[CampaignMetrics],
        rules: list[RuleSkill] | None = None,
    ) -> list[Classification]:
        results = [self.classify_one(m, rules) for m in metrics]
        if results:
            _logger.info("Classified %d entities: %s", len(results), dict(Counter(r.label.value for r in results)))
        return results
