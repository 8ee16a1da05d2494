"""Reflection engine — did an executed action actually help?

A few hours after execution each action is compared against the
entity's current numbers. The reasoning service judges first; when it
is unavailable the fixed rules below decide. Every action is reflected
at most once: the reflected flag is claimed with a compare-and-set and
the reflections table is keyed by action id, so a second pass over the
same action neither stores a second record nor counts twice.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import orjson
from pydantic import BaseModel

from adpilot.actions.model import Action
from adpilot.actions.store import ActionStore
from adpilot.exceptions import ReasoningUnavailableError, StrategyUnavailable
from adpilot.knowledge.librarian import Librarian
from adpilot.learning.store import Reflection, ReflectionStore
from adpilot.llm.base import BaseLLMProvider, LLMMessage
from adpilot.llm.parsing import parse_json
from adpilot.strategy import Strategy, StrategyChain
from adpilot.tuning import ReflectionConfig
from adpilot.types import ActionType, Assessment, CampaignMetrics, utcnow

_logger = logging.getLogger(__name__)

REFLECTION_PROMPT = """You review operational changes made to ad campaigns.
Given the action, the metrics when it was taken and the metrics now, judge
whether the action was right.

Respond ONLY with JSON:
{"assessment": "correct|wrong|unclear", "reason": "...", "lesson": "one sentence for next time"}
"""


class ReflectionRequest(BaseModel):
    action: Action
    after: CampaignMetrics | None = None


class ReflectionVerdict(BaseModel):
    assessment: Assessment
    reason: str = ""
    lesson: str = ""


def _before(action: Action) -> tuple[float, float]:
    m = action.metrics_before
    roas = float(m.get("roas_3d", m.get("roas_today", 0.0)) or 0.0)
    spend = float(m.get("spend_3d", m.get("spend_today", 0.0)) or 0.0)
    return roas, spend


class RuleReflectionStrategy(Strategy[ReflectionRequest, ReflectionVerdict]):
    name = "rules"

    def __init__(self, config: ReflectionConfig | None = None) -> None:
        self._config = config or ReflectionConfig()

    async def run(self, request: ReflectionRequest) -> ReflectionVerdict:
        return self.judge(request.action, request.after)

    def judge(self, action: Action, after: CampaignMetrics | None) -> ReflectionVerdict:
        if after is None:
            return ReflectionVerdict(assessment=Assessment.UNCLEAR, reason="no metrics after execution")

        cfg = self._config
        before_roas, before_spend = _before(action)
        after_roas = after.today_roas
        label = action.label.value if action.label else "unlabelled"

        if action.action_type == ActionType.PAUSE:
            if before_roas < cfg.pause_loss_roas and before_spend > cfg.pause_loss_min_spend:
                return ReflectionVerdict(
                    assessment=Assessment.CORRECT,
                    reason=f"paused at roas {before_roas:.2f} after ${before_spend:.2f} spend",
                    lesson=f"Pausing {label} entities below roas {cfg.pause_loss_roas} stopped real losses",
                )
            if after_roas >= cfg.pause_recovery_roas:
                return ReflectionVerdict(
                    assessment=Assessment.WRONG,
                    reason=f"roas recovered to {after_roas:.2f} after the pause",
                    lesson=f"Pausing {label} entities at roas {before_roas:.2f} was premature; they recovered",
                )
            return ReflectionVerdict(assessment=Assessment.UNCLEAR, reason="pause outcome inconclusive")

        if action.action_type == ActionType.ADJUST_BUDGET:
            if after_roas >= before_roas * cfg.budget_keep_ratio:
                return ReflectionVerdict(
                    assessment=Assessment.CORRECT,
                    reason=f"roas held at {after_roas:.2f} (was {before_roas:.2f}) on the new budget",
                    lesson=f"Budget changes on {label} entities held their return",
                )
            if after_roas < before_roas * cfg.budget_wrong_ratio:
                drop = round((1 - after_roas / before_roas) * 100) if before_roas > 0 else 0
                return ReflectionVerdict(
                    assessment=Assessment.WRONG,
                    reason=f"roas fell {drop}% from {before_roas:.2f} to {after_roas:.2f} after the budget change",
                    lesson=f"Scaling {label} entities cut roas by {drop}%; scale in smaller steps",
                )
            return ReflectionVerdict(assessment=Assessment.UNCLEAR, reason="budget outcome inconclusive")

        if after_roas >= cfg.resume_good_roas:
            return ReflectionVerdict(
                assessment=Assessment.CORRECT,
                reason=f"resumed entity returned roas {after_roas:.2f}",
                lesson=f"Resuming {label} entities paid off",
            )
        if after_roas < cfg.resume_bad_roas:
            return ReflectionVerdict(
                assessment=Assessment.WRONG,
                reason=f"resumed entity returned roas {after_roas:.2f}",
                lesson=f"Resuming {label} entities lost money again",
            )
        return ReflectionVerdict(assessment=Assessment.UNCLEAR, reason="resume outcome inconclusive")


class LLMReflectionStrategy(Strategy[ReflectionRequest, ReflectionVerdict]):
    name = "llm"

    def __init__(self, llm: BaseLLMProvider | None, timeout: float = 60.0) -> None:
        self._llm = llm
        self._timeout = timeout

    async def run(self, request: ReflectionRequest) -> ReflectionVerdict:
        if self._llm is None:
            raise StrategyUnavailable("no reasoning service configured")
        if request.after is None:
            raise StrategyUnavailable("no metrics after execution")

        action = request.action
        payload = {
            "action": action.action_type.value,
            "params": action.params,
            "reason": action.reason,
            "label": action.label.value if action.label else None,
            "executed_at": action.executed_at.isoformat() if action.executed_at else None,
            "before": action.metrics_before,
            "after": request.after.summary(),
        }
        try:
            response = await asyncio.wait_for(
                self._llm.complete(
                    [LLMMessage(role="user", content=orjson.dumps(payload).decode())],
                    system=REFLECTION_PROMPT,
                    max_tokens=512,
                ),
                timeout=self._timeout,
            )
            data = parse_json(response.content)
            return ReflectionVerdict(
                assessment=Assessment(str(data.get("assessment", "")).lower()),
                reason=str(data.get("reason", "")),
                lesson=str(data.get("lesson", "")),
            )
        except ReasoningUnavailableError as e:
            raise StrategyUnavailable(str(e)) from e
        except Exception as e:
            raise StrategyUnavailable(f"reflection call failed: {e}") from e


@dataclass
class ReflectionStats:
    total: int = 0
    correct: int = 0
    wrong: int = 0
    unclear: int = 0

    @property
    def accuracy(self) -> float | None:
        judged = self.correct + self.wrong
        return round(self.correct / judged, 3) if judged else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total, "correct": self.correct, "wrong": self.wrong,
            "unclear": self.unclear, "accuracy": self.accuracy,
        }


class ReflectionEngine:
    def __init__(
        self,
        actions: ActionStore,
        store: ReflectionStore,
        librarian: Librarian,
        llm: BaseLLMProvider | None = None,
        config: ReflectionConfig | None = None,
        min_hours: float = 2,
        max_hours: float = 24,
        timeout: float = 60.0,
    ) -> None:
        self._actions = actions
        self._store = store
        self._librarian = librarian
        self._min = timedelta(hours=min_hours)
        self._max = timedelta(hours=max_hours)
        self._chain: StrategyChain[ReflectionRequest, ReflectionVerdict] = StrategyChain([
            LLMReflectionStrategy(llm, timeout),
            RuleReflectionStrategy(config),
        ])

    async def assess(self, action: Action, after: CampaignMetrics | None) -> Reflection:
        """Judge one action. Pure: nothing is stored and no stats change."""
        outcome = await self._chain.run(ReflectionRequest(action=action, after=after))
        verdict = outcome.result
        return Reflection(
            action_id=action.id,
            entity_id=action.entity_id,
            skill_id=action.skill_id,
            action_type=action.action_type,
            label=action.label,
            assessment=verdict.assessment,
            lesson=verdict.lesson,
            reason=verdict.reason,
            strategy=outcome.strategy,
            metrics_before=action.metrics_before,
            metrics_after=after.summary() if after else {},
        )

    async def reflect(self, action: Action, after: CampaignMetrics | None) -> Reflection | None:
        """Reflect on one action exactly once. None if it was already claimed."""
        if not await self._actions.claim_reflection(action.id):
            return None
        try:
            reflection = await self.assess(action, after)
            saved = await self._store.save(reflection)
        except Exception:
            # Nothing was stored, so hand the action back for the next pass
            await self._actions.release_reflection(action.id)
            raise
        if not saved:
            return None
        await self._librarian.record_outcome(action, reflection.assessment, reflection.lesson)
        return reflection

    async def reflect_due(
        self,
        metrics_by_id: dict[str, CampaignMetrics],
        now: datetime | None = None,
    ) -> list[Reflection]:
        when = now or utcnow()
        due = await self._actions.executed_between(when - self._max, when - self._min)
        results = []
        for action in due:
            if action.reflected:
                continue
            reflection = await self.reflect(action, metrics_by_id.get(action.entity_id))
            if reflection is not None:
                results.append(reflection)
        if results:
            _logger.info(
                "Reflected on %d actions: %s",
                len(results), [f"{r.action_id}={r.assessment.value}" for r in results],
            )
        return results

    async def reflection_stats(self, days: int = 7, now: datetime | None = None) -> ReflectionStats:
        since = (now or utcnow()) - timedelta(days=days)
        stats = ReflectionStats()
        for r in await self._store.since(since):
            stats.total += 1
            if r.assessment == Assessment.CORRECT:
                stats.correct += 1
            elif r.assessment == Assessment.WRONG:
                stats.wrong += 1
            else:
                stats.unclear += 1
        return stats
