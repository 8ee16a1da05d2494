"""Screener — triage every entity into needs_decision, watch or skip.

Rule skills with a verdict effect are checked first, in resolution
order, and the first match decides; these are the guardrails that
bypass heuristics. With no matching rule a fixed table over anomaly
severity, data confidence, trend and spend decides instead.

Entities that already have an open action are not screened at all.
"""

from __future__ import annotations

import logging
from collections import Counter

from pydantic import BaseModel, Field

from adpilot.monitor.benchmarks import Benchmarks
from adpilot.monitor.signal import EntitySignal
from adpilot.monitor.trend import stddev
from adpilot.skills.matching import first_match, render_reason
from adpilot.skills.schema import HistoryCheck, RuleSkill, VerdictEffect
from adpilot.tuning import ScreenerConfig
from adpilot.types import TrendDirection, Verdict

_logger = logging.getLogger(__name__)


class ScreeningResult(BaseModel):
    entity_id: str
    verdict: Verdict
    reason: str = ""
    skill_id: str | None = None
    urgency: int = 0
    forced: bool = False


class ScreeningReport(BaseModel):
    results: list[ScreeningResult] = Field(default_factory=list)
    excluded: list[str] = Field(default_factory=list)

    def by_verdict(self, verdict: Verdict) -> list[ScreeningResult]:
        return [r for r in self.results if r.verdict == verdict]

    @property
    def needs_decision(self) -> list[ScreeningResult]:
        return self.by_verdict(Verdict.NEEDS_DECISION)

    def skill_hits(self) -> dict[str, int]:
        return dict(Counter(r.skill_id for r in self.results if r.skill_id))

    def counts(self) -> dict[str, int]:
        return {v.value: len(self.by_verdict(v)) for v in Verdict}


def history_deviation(signal: EntitySignal, check: HistoryCheck) -> float | None:
    """How many standard deviations the current value sits from the entity's own mean."""
    valid = [s for s in signal.history if s.spend > 0]
    if len(valid) < check.min_samples:
        return None
    if check.field == "spend_rate":
        values = [s.spend_rate for s in valid]
        current = signal.metrics.spend_per_hour
    else:
        values = [s.roas for s in valid]
        current = signal.metrics.today_roas
    sd = stddev(values)
    if sd == 0:
        return None
    mean = sum(values) / len(values)
    return abs(current - mean) / sd


class Screener:
    def __init__(self, config: ScreenerConfig | None = None) -> None:
        self._config = config or ScreenerConfig()

    def screen(
        self,
        signals: list[EntitySignal],
        rules: list[RuleSkill],
        benchmarks: Benchmarks | None = None,
        excluded_ids: set[str] | None = None,
        forced: dict[str, str] | None = None,
    ) -> ScreeningReport:
        """Screen a batch.

        `forced` maps entity id to a reason; those entities go straight to
        needs_decision (used by audit rescreen corrections).
        """
        excluded_ids = excluded_ids or set()
        forced = forced or {}
        verdict_rules = [
            r for r in rules if isinstance(r.effect, VerdictEffect)
        ]

        report = ScreeningReport()
        for signal in signals:
            if signal.entity_id in excluded_ids:
                report.excluded.append(signal.entity_id)
                continue
            report.results.append(
                self.screen_one(signal, verdict_rules, benchmarks, forced.get(signal.entity_id))
            )

        _logger.info(
            "Screened %d entities: %s (excluded %d with open actions)",
            len(report.results), report.counts(), len(report.excluded),
        )
        return report

    def screen_one(
        self,
        signal: EntitySignal,
        rules: list[RuleSkill],
        benchmarks: Benchmarks | None = None,
        forced_reason: str | None = None,
    ) -> ScreeningResult:
        if forced_reason:
            return ScreeningResult(
                entity_id=signal.entity_id,
                verdict=Verdict.NEEDS_DECISION,
                reason=f"rescreen: {forced_reason}",
                urgency=4,
                forced=True,
            )

        facts = signal.facts(benchmarks)
        rule = first_match(rules, facts)
        if isinstance(rule, RuleSkill) and isinstance(rule.effect, VerdictEffect):
            return self._apply_rule(signal, rule, rule.effect, facts)

        return self._default(signal)

    def _apply_rule(
        self,
        signal: EntitySignal,
        rule: RuleSkill,
        effect: VerdictEffect,
        facts: dict,
    ) -> ScreeningResult:
        reason = render_reason(effect.reason_template, facts) or rule.description or rule.name
        verdict = effect.verdict
        urgency = effect.urgency

        if verdict == Verdict.WATCH and effect.history_check is not None:
            deviation = history_deviation(signal, effect.history_check)
            if deviation is not None and deviation >= effect.history_check.stddev_threshold:
                verdict = Verdict.NEEDS_DECISION
                urgency = max(urgency, 3)
                reason = f"{reason}; {effect.history_check.field} {deviation:.1f} sd from its own history"

        return ScreeningResult(
            entity_id=signal.entity_id,
            verdict=verdict,
            reason=f"[{rule.name}] {reason}",
            skill_id=rule.id,
            urgency=urgency,
        )

    def _default(self, signal: EntitySignal) -> ScreeningResult:
        cfg = self._config
        m = signal.metrics
        severity = signal.max_severity

        if severity >= cfg.severity_threshold:
            worst = max(signal.anomalies, key=lambda a: a.severity)
            verdict, reason, urgency = Verdict.NEEDS_DECISION, f"anomaly severity {severity}: {worst.message}", severity
        elif signal.quality.confidence < cfg.crash_confidence and signal.trend.direction == TrendDirection.CRASHING:
            verdict, reason, urgency = (
                Verdict.NEEDS_DECISION,
                f"crashing trend ({signal.trend.note}) on low-confidence data",
                4,
            )
        elif m.total_spend_3d < cfg.skip_spend_floor:
            verdict, reason, urgency = Verdict.SKIP, f"3-day spend ${m.total_spend_3d:.2f} below floor", 0
        elif (
            signal.trend.direction == TrendDirection.INSUFFICIENT_DATA
            and m.total_spend_3d < cfg.low_spend_ceiling
        ):
            verdict, reason, urgency = Verdict.SKIP, "insufficient data at low spend", 0
        else:
            verdict, reason, urgency = Verdict.WATCH, f"trend {signal.trend.direction.value}, severity {severity}", 1

        return ScreeningResult(
            entity_id=signal.entity_id,
            verdict=verdict,
            reason=reason,
            urgency=urgency,
        )
