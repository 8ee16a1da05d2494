"""Evolution engine — slow-cadence review of how skills are performing.

Reads the rolling outcome counters that reflection keeps on each skill
and the reflections of the lookback window, then:
  1. disables skills that are wrong more often than right
  2. demotes auto-executing skills with mediocre accuracy to approval-required
  3. proposes (never applies) fixes for action types with a high error rate
  4. proposes tighter review criteria when reviewers reject too much
  5. optionally asks the reasoning service what the wrong calls have in common

All mutations go through the librarian, which records each one as a
knowledge entry with the statistics that justified it. Nothing here
re-enables a disabled skill.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any

import orjson
from pydantic import BaseModel, Field

from adpilot.actions.store import ActionStore
from adpilot.knowledge.librarian import Librarian
from adpilot.learning.store import Reflection, ReflectionStore
from adpilot.llm.base import BaseLLMProvider, LLMMessage
from adpilot.llm.parsing import parse_json_list
from adpilot.skills.schema import ActionEffect, RuleSkill
from adpilot.skills.store import SkillStore
from adpilot.tuning import EvolutionConfig
from adpilot.types import ActionStatus, Assessment, new_id, utcnow

_logger = logging.getLogger(__name__)

ANALYSIS_PROMPT = """These ad-campaign actions were later judged wrong.
Find what they have in common and suggest concrete changes to the rules
that produced them.

Respond ONLY with JSON:
{"suggestions": [{"key": "short-slug", "suggestion": "...", "evidence": "..."}]}
"""


class EvolutionReport(BaseModel):
    """Summary of a single evolution run."""

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    skills_reviewed: int = 0
    disabled: list[str] = Field(default_factory=list)
    demoted: list[str] = Field(default_factory=list)
    proposals: list[str] = Field(default_factory=list)
    type_error_rates: dict[str, float] = Field(default_factory=dict)
    rejection_rate: float | None = None

    def __repr__(self) -> str:
        return (
            f"EvolutionReport(reviewed={self.skills_reviewed}, "
            f"disabled={len(self.disabled)}, demoted={len(self.demoted)}, "
            f"proposals={len(self.proposals)})"
        )


class EvolutionEngine:
    def __init__(
        self,
        skills: SkillStore,
        actions: ActionStore,
        reflections: ReflectionStore,
        librarian: Librarian,
        llm: BaseLLMProvider | None = None,
        config: EvolutionConfig | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._skills = skills
        self._actions = actions
        self._reflections = reflections
        self._librarian = librarian
        self._llm = llm
        self._config = config or EvolutionConfig()
        self._timeout = timeout

    async def run(self, days: int = 7, now: datetime | None = None) -> EvolutionReport:
        when = now or utcnow()
        since = when - timedelta(days=days)
        report = EvolutionReport(created_at=when)

        await self._review_skills(report)
        reflections = await self._reflections.since(since)
        await self._review_action_types(reflections, report)
        await self._review_rejections(since, report)
        await self._analyze_wrong(reflections, report)

        _logger.info("Evolution run: %r", report)
        return report

    async def _review_skills(self, report: EvolutionReport) -> None:
        cfg = self._config
        for skill in await self._skills.list_skills(active_only=True):
            stats = skill.stats
            if stats.outcomes < cfg.min_outcomes:
                continue
            report.skills_reviewed += 1
            accuracy = stats.accuracy or 0.0
            evidence: dict[str, Any] = {
                "correct": stats.correct,
                "wrong": stats.wrong,
                "accuracy": round(accuracy, 3),
                "triggered": stats.triggered,
            }

            if accuracy < cfg.disable_below:
                await self._librarian.disable_skill(
                    skill.id,
                    f"accuracy {accuracy:.0%} over {stats.outcomes} outcomes (< {cfg.disable_below:.0%})",
                    evidence,
                )
                report.disabled.append(skill.name)
            elif (
                accuracy < cfg.demote_below
                and isinstance(skill, RuleSkill)
                and isinstance(skill.effect, ActionEffect)
                and skill.effect.auto
            ):
                await self._librarian.demote_skill(
                    skill.id,
                    f"accuracy {accuracy:.0%} over {stats.outcomes} outcomes (< {cfg.demote_below:.0%})",
                    evidence,
                )
                report.demoted.append(skill.name)

    async def _review_action_types(self, reflections: list[Reflection], report: EvolutionReport) -> None:
        cfg = self._config
        judged: dict[str, list[Reflection]] = defaultdict(list)
        for r in reflections:
            if r.assessment != Assessment.UNCLEAR:
                judged[r.action_type.value].append(r)

        for action_type, items in judged.items():
            wrong = sum(1 for r in items if r.assessment == Assessment.WRONG)
            rate = wrong / len(items)
            report.type_error_rates[action_type] = round(rate, 3)
            if len(items) >= cfg.min_outcomes and rate > cfg.type_error_rate:
                entry = await self._librarian.log_proposal(
                    f"type-error:{action_type}",
                    f"{action_type} actions were wrong {wrong}/{len(items)} times ({rate:.0%}); "
                    f"tighten the conditions of the skills proposing them",
                    {"action_type": action_type, "wrong": wrong, "judged": len(items), "rate": round(rate, 3)},
                )
                report.proposals.append(entry.key)

    async def _review_rejections(self, since: datetime, report: EvolutionReport) -> None:
        cfg = self._config
        reviewed = [
            a for a in await self._actions.list_actions(since=since, limit=1000)
            if a.reviewed_at is not None
        ]
        if not reviewed:
            return
        rejected = sum(1 for a in reviewed if a.status == ActionStatus.REJECTED)
        rate = rejected / len(reviewed)
        report.rejection_rate = round(rate, 3)
        if len(reviewed) > cfg.rejection_min_reviewed and rate > cfg.rejection_rate:
            entry = await self._librarian.log_proposal(
                "rejection-rate",
                f"Reviewers rejected {rejected}/{len(reviewed)} proposals ({rate:.0%}); "
                f"tighten decision criteria before proposing",
                {"rejected": rejected, "reviewed": len(reviewed), "rate": round(rate, 3)},
            )
            report.proposals.append(entry.key)

    async def _analyze_wrong(self, reflections: list[Reflection], report: EvolutionReport) -> None:
        wrong = [r for r in reflections if r.assessment == Assessment.WRONG]
        if self._llm is None or len(wrong) < self._config.llm_min_wrong:
            return

        cases = [
            {
                "action": r.action_type.value,
                "label": r.label.value if r.label else None,
                "reason": r.reason,
                "lesson": r.lesson,
                "before": r.metrics_before,
                "after": r.metrics_after,
            }
            for r in wrong[-20:]
        ]
        try:
            response = await asyncio.wait_for(
                self._llm.complete(
                    [LLMMessage(role="user", content=orjson.dumps({"wrong_actions": cases}).decode())],
                    system=ANALYSIS_PROMPT,
                    max_tokens=1024,
                ),
                timeout=self._timeout,
            )
            suggestions = parse_json_list(response.content, "suggestions")
        except Exception as e:
            _logger.warning("Wrong-decision analysis unavailable: %s", e)
            return

        for item in suggestions:
            text = str(item.get("suggestion") or "").strip()
            if not text:
                continue
            key = str(item.get("key") or new_id())
            entry = await self._librarian.log_proposal(
                f"llm:{key}",
                text,
                {"evidence": str(item.get("evidence", "")), "wrong_cases": len(wrong)},
            )
            report.proposals.append(entry.key)
