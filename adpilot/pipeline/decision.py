"""Decision engine — labelled entities in, candidate actions out.

The reasoning service gets a compact summary of every eligible entity
and a policy preamble assembled from the decision skills, experience
skills and trusted knowledge. When it is not configured, times out, or
replies with something unparseable, the decision skills are applied
directly as rules.

Either way the engine only proposes. Entities acted on inside the
cooldown window never reach either path, budgets are clamped to the
configured caps, and nothing here touches the ad platform.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import orjson
from pydantic import BaseModel, Field

from adpilot.actions.model import ActionProposal
from adpilot.exceptions import InvalidActionTypeError, ReasoningUnavailableError, StrategyUnavailable
from adpilot.llm.base import BaseLLMProvider, LLMMessage
from adpilot.llm.parsing import parse_json
from adpilot.skills.matching import matches, render_reason, resolution_order
from adpilot.skills.schema import ActionEffect, GoalSkill, RuleSkill
from adpilot.strategy import Strategy, StrategyChain, StrategyOutcome
from adpilot.tuning import DecisionConfig
from adpilot.types import ActionType, CampaignMetrics, Label, normalize_action_type

_logger = logging.getLogger(__name__)

POLICY_PREAMBLE = """You are the decision stage of an ad-campaign operations pipeline.
Every campaign below has already been screened and labelled. For each one,
decide whether to pause it, resume it, adjust its daily budget, or leave it alone.

Respond ONLY with JSON:
{"actions": [{"entity_id": "...", "action_type": "pause|resume|adjust_budget",
  "budget_change_pct": 20, "reason": "..."}],
 "summary": "one paragraph", "alerts": ["..."]}

Leave out campaigns that need no action. Campaigns flagged recently_operated
were changed in the last few days; be conservative with them.

Operating policy:
"""


class DecisionCandidate(BaseModel):
    metrics: CampaignMetrics
    label: Label
    label_reason: str = ""
    recently_operated: bool = False

    @property
    def entity_id(self) -> str:
        return self.metrics.entity_id

    def facts(self) -> dict[str, Any]:
        facts = self.metrics.facts()
        facts["label"] = self.label.value
        facts["recently_operated"] = self.recently_operated
        return facts

    def prompt_row(self) -> dict[str, Any]:
        row = self.metrics.summary()
        row.update({
            "label": self.label.value,
            "label_reason": self.label_reason,
            "estimated_daily_spend": round(self.metrics.estimated_daily_spend, 2),
            "roas_trend_pct": self.metrics.roas_trend_pct,
            "recently_operated": self.recently_operated,
        })
        return row


class DecisionRequest(BaseModel):
    candidates: list[DecisionCandidate]
    action_skills: list[RuleSkill] = Field(default_factory=list)
    goals: list[GoalSkill] = Field(default_factory=list)
    context: str = ""


class DecisionResult(BaseModel):
    proposals: list[ActionProposal] = Field(default_factory=list)
    summary: str = ""
    alerts: list[str] = Field(default_factory=list)


def matches_action_skill(skill: RuleSkill, facts: dict[str, Any]) -> bool:
    if not isinstance(skill.effect, ActionEffect):
        return False
    labels = skill.effect.trigger_labels
    if labels and facts.get("label") not in {l.value for l in labels}:
        return False
    return matches(skill, facts)


def first_action_skill(
    skills: list[RuleSkill],
    facts: dict[str, Any],
    action_type: ActionType | None = None,
) -> RuleSkill | None:
    for skill in resolution_order(skills):
        if not isinstance(skill, RuleSkill) or not isinstance(skill.effect, ActionEffect):
            continue
        if action_type is not None and skill.effect.action_type != action_type:
            continue
        if matches_action_skill(skill, facts):
            return skill
    return None


def budget_cap(goals: list[GoalSkill], facts: dict[str, Any], default: float) -> float:
    """The tightest daily budget cap among matching goal skills."""
    caps = [g.max_daily_budget for g in goals if g.max_daily_budget and matches(g, facts)]
    return min([default, *caps])


def budget_params(
    metrics: CampaignMetrics,
    change_pct: float,
    config: DecisionConfig,
    cap: float,
) -> dict[str, Any] | None:
    """New budget after clamping the change and the absolute cap. None when there is no baseline."""
    current = metrics.daily_budget
    if current <= 0:
        return None
    limit = config.max_budget_change_pct
    pct = max(-limit, min(limit, change_pct))
    new_budget = round(min(current * (1 + pct / 100), cap), 2)
    if new_budget == current:
        return None
    return {
        "previous_budget": current,
        "budget": new_budget,
        "change_pct": round((new_budget - current) / current * 100, 2),
    }


def policy_text(skills: list[RuleSkill], context: str = "") -> str:
    lines = []
    for skill in resolution_order(skills):
        if not isinstance(skill, RuleSkill) or not isinstance(skill.effect, ActionEffect):
            continue
        effect = skill.effect
        labels = ",".join(l.value for l in effect.trigger_labels) or "any"
        mode = "auto" if effect.auto else "needs approval"
        lines.append(f"- {skill.name} [{labels}] -> {effect.action_type.value} ({mode})")
        for note in effect.guidance:
            lines.append(f"    {note}")
        for note in skill.learned_notes[-3:]:
            lines.append(f"    learned: {note}")
    if context:
        lines.append("\nLessons and preferences:")
        lines.append(context)
    return "\n".join(lines)


class RuleDecisionStrategy(Strategy[DecisionRequest, DecisionResult]):
    """Apply the decision skills directly: first matching skill per entity."""

    name = "rules"

    def __init__(self, config: DecisionConfig | None = None) -> None:
        self._config = config or DecisionConfig()

    async def run(self, request: DecisionRequest) -> DecisionResult:
        result = DecisionResult()
        for candidate in request.candidates:
            facts = candidate.facts()
            skill = first_action_skill(request.action_skills, facts)
            if skill is None:
                continue
            proposal = self._propose(candidate, skill, facts, request.goals)
            if proposal is not None:
                result.proposals.append(proposal)

        result.summary = f"{len(result.proposals)} proposals from {len(request.candidates)} candidates (rules)"
        return result

    def _propose(
        self,
        candidate: DecisionCandidate,
        skill: RuleSkill,
        facts: dict[str, Any],
        goals: list[GoalSkill],
    ) -> ActionProposal | None:
        effect = skill.effect
        assert isinstance(effect, ActionEffect)
        m = candidate.metrics

        params: dict[str, Any] = {}
        if effect.action_type == ActionType.ADJUST_BUDGET:
            if (
                candidate.label == Label.HIGH_POTENTIAL
                and m.estimated_daily_spend >= self._config.high_potential_max_daily_spend
            ):
                return None
            cap = budget_cap(goals, facts, self._config.max_daily_budget)
            params = budget_params(m, effect.budget_change_pct or 0.0, self._config, cap)
            if params is None:
                _logger.debug("No budget change possible for %s", m.entity_id)
                return None

        reason = render_reason(effect.reason_template, facts) or skill.description or skill.name
        return ActionProposal(
            entity_id=m.entity_id,
            entity_name=m.entity_name,
            account_id=m.account_id,
            platform=m.platform,
            action_type=effect.action_type,
            params=params,
            reason=f"[{skill.name}] {reason}",
            skill_id=skill.id,
            auto=effect.auto,
            label=candidate.label,
            metrics_before=m.summary(),
        )


class LLMDecisionStrategy(Strategy[DecisionRequest, DecisionResult]):
    """Ask the reasoning service for the action list."""

    name = "llm"

    def __init__(
        self,
        llm: BaseLLMProvider | None,
        config: DecisionConfig | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._llm = llm
        self._config = config or DecisionConfig()
        self._timeout = timeout

    async def run(self, request: DecisionRequest) -> DecisionResult:
        if self._llm is None:
            raise StrategyUnavailable("no reasoning service configured")

        rows = [c.prompt_row() for c in request.candidates]
        system = POLICY_PREAMBLE + policy_text(request.action_skills, request.context)
        message = orjson.dumps({"campaigns": rows}, option=orjson.OPT_INDENT_2).decode()

        try:
            response = await asyncio.wait_for(
                self._llm.complete([LLMMessage(role="user", content=message)], system=system, max_tokens=4096),
                timeout=self._timeout,
            )
            data = parse_json(response.content)
        except ReasoningUnavailableError as e:
            raise StrategyUnavailable(str(e)) from e
        except Exception as e:
            raise StrategyUnavailable(f"reasoning call failed: {e}") from e

        if isinstance(data, list):
            data = {"actions": data}
        if not isinstance(data, dict):
            raise StrategyUnavailable("reasoning reply is not an object")
        items = data.get("actions", [])
        if not isinstance(items, list):
            raise StrategyUnavailable("reasoning reply has no action list")

        by_id = {c.entity_id: c for c in request.candidates}
        result = DecisionResult(
            summary=str(data.get("summary", "")),
            alerts=[str(a) for a in data.get("alerts", []) if a],
        )
        for item in items:
            if not isinstance(item, dict):
                continue
            proposal = self._proposal(item, by_id, request)
            if proposal is not None:
                result.proposals.append(proposal)
        return result

    def _proposal(
        self,
        item: dict[str, Any],
        by_id: dict[str, DecisionCandidate],
        request: DecisionRequest,
    ) -> ActionProposal | None:
        entity_id = str(item.get("entity_id") or item.get("campaign_id") or "")
        candidate = by_id.get(entity_id)
        if candidate is None:
            # Unknown or cooling down
            _logger.warning("Discarding proposal for ineligible entity %r", entity_id)
            return None
        try:
            kind = normalize_action_type(str(item.get("action_type") or item.get("type") or ""))
        except InvalidActionTypeError as e:
            _logger.warning("Discarding proposal for %s: %s", entity_id, e)
            return None

        m = candidate.metrics
        facts = candidate.facts()
        params: dict[str, Any] = {}
        if kind == ActionType.ADJUST_BUDGET:
            change = item.get("budget_change_pct")
            if change is None and item.get("new_budget") and m.daily_budget > 0:
                change = (float(item["new_budget"]) - m.daily_budget) / m.daily_budget * 100
            try:
                change_pct = float(change or 0.0)
            except (TypeError, ValueError):
                return None
            cap = budget_cap(request.goals, facts, self._config.max_daily_budget)
            params = budget_params(m, change_pct, self._config, cap)
            if params is None:
                return None

        # Auto-execution is granted by the matching decision skill, never by the model
        skill = first_action_skill(request.action_skills, facts, kind)
        return ActionProposal(
            entity_id=entity_id,
            entity_name=m.entity_name,
            account_id=m.account_id,
            platform=m.platform,
            action_type=kind,
            params=params,
            reason=str(item.get("reason") or "reasoning service proposal"),
            skill_id=skill.id if skill else None,
            auto=skill.effect.auto if skill and isinstance(skill.effect, ActionEffect) else False,
            label=candidate.label,
            metrics_before=m.summary(),
        )


class DecisionEngine:
    def __init__(
        self,
        llm: BaseLLMProvider | None = None,
        config: DecisionConfig | None = None,
        timeout: float = 60.0,
    ) -> None:
        self._config = config or DecisionConfig()
        self._chain: StrategyChain[DecisionRequest, DecisionResult] = StrategyChain([
            LLMDecisionStrategy(llm, self._config, timeout),
            RuleDecisionStrategy(self._config),
        ])

    async def decide(
        self,
        candidates: list[DecisionCandidate],
        action_skills: list[RuleSkill],
        goals: list[GoalSkill] | None = None,
        context: str = "",
        cooling_down: set[str] | None = None,
        manual_only: set[str] | None = None,
    ) -> StrategyOutcome[DecisionResult]:
        """Propose actions for eligible candidates.

        `cooling_down` entities are dropped before either strategy sees
        them; proposals for `manual_only` entities always need approval.
        """
        cooling_down = cooling_down or set()
        manual_only = manual_only or set()
        eligible = [
            c for c in candidates
            if c.entity_id not in cooling_down and c.label != Label.OBSERVING
        ]
        skipped = len(candidates) - len(eligible)
        if skipped:
            _logger.info("Decision skipped %d candidates (cooldown or observing)", skipped)

        if not eligible:
            return StrategyOutcome(result=DecisionResult(summary="nothing eligible"), strategy="none")

        request = DecisionRequest(
            candidates=eligible,
            action_skills=[s for s in action_skills if isinstance(s.effect, ActionEffect)],
            goals=goals or [],
            context=context,
        )
        outcome = await self._chain.run(request)

        seen: set[tuple[str, ActionType]] = set()
        proposals = []
        for p in outcome.result.proposals:
            key = (p.entity_id, p.action_type)
            if key in seen:
                continue
            seen.add(key)
            if p.entity_id in manual_only and p.auto:
                p = p.model_copy(update={"auto": False, "reason": f"{p.reason} (audit override: needs approval)"})
            proposals.append(p)
        outcome.result.proposals = proposals

        _logger.info(
            "Decision via %s: %d proposals (%d auto)",
            outcome.strategy, len(proposals), sum(1 for p in proposals if p.auto),
        )
        return outcome
