"""Skill schema — five shapes of agent memory as one discriminated union.

- rule: scope + condition list + an effect (screener verdict,
  classifier threshold overrides, or a decision action)
- experience: a lesson learned from outcomes, with confidence
- goal: per-product targets (roas floor, budget cap)
- meta: knowledge decay and promotion policy
- config: the versioned TuningConfig

Each shape only carries the fields that make sense for it, so a rule
without an effect or an experience with conditions cannot be built.
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from adpilot.tuning import KnowledgePolicy, ThresholdOverrides, TuningConfig
from adpilot.types import ActionType, Label, Verdict, new_id, normalize_action_type, utcnow

Operator = Literal["<", "<=", ">", ">=", "==", "!="]


class Condition(BaseModel):
    """`field op value`, evaluated against an entity's facts."""

    field: str
    op: Operator
    value: float | bool | str

    def __str__(self) -> str:
        return f"{self.field} {self.op} {self.value}"


class SkillScope(BaseModel):
    """Which entities a skill applies to. Empty lists are wildcards.

    Product patterns accept `*` globs and match case-insensitively;
    platforms match as case-insensitive substrings.
    """

    products: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)
    accounts: list[str] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)

    @property
    def is_wildcard(self) -> bool:
        return not (self.products or self.platforms or self.accounts or self.channels)


class SkillStats(BaseModel):
    triggered: int = 0
    correct: int = 0
    wrong: int = 0
    unclear: int = 0
    last_triggered_at: datetime | None = None

    @property
    def outcomes(self) -> int:
        return self.correct + self.wrong

    @property
    def accuracy(self) -> float | None:
        if self.outcomes == 0:
            return None
        return self.correct / self.outcomes


# ── Rule effects ─────────────────────────────────────────────────────────────


class HistoryCheck(BaseModel):
    """Escalate a `watch` to `needs_decision` on a deviation from the entity's own history."""

    field: Literal["roas", "spend_rate"] = "roas"
    stddev_threshold: float = 2.0
    min_samples: int = 5


class VerdictEffect(BaseModel):
    type: Literal["verdict"] = "verdict"
    verdict: Verdict
    urgency: int = Field(default=3, ge=1, le=5)
    reason_template: str = ""
    history_check: HistoryCheck | None = None


class ThresholdEffect(BaseModel):
    type: Literal["thresholds"] = "thresholds"
    thresholds: ThresholdOverrides = Field(default_factory=ThresholdOverrides)


class ActionEffect(BaseModel):
    type: Literal["action"] = "action"
    trigger_labels: list[Label] = Field(default_factory=list)  # empty = any label
    action_type: ActionType
    auto: bool = False
    budget_change_pct: float | None = None
    reason_template: str = ""
    guidance: list[str] = Field(default_factory=list)  # surfaced in the decision preamble

    @field_validator("action_type", mode="before")
    @classmethod
    def _normalize(cls, v):
        return normalize_action_type(v)


RuleEffect = Annotated[
    Union[VerdictEffect, ThresholdEffect, ActionEffect],
    Field(discriminator="type"),
]


# ── Skill shapes ─────────────────────────────────────────────────────────────


class SkillBase(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    description: str = ""
    version: int = 1
    enabled: bool = True
    archived: bool = False
    priority: int = 0
    order: int = 0  # registration order, assigned by the store
    scope: SkillScope = Field(default_factory=SkillScope)
    stats: SkillStats = Field(default_factory=SkillStats)
    learned_notes: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def active(self) -> bool:
        return self.enabled and not self.archived


class RuleSkill(SkillBase):
    kind: Literal["rule"] = "rule"
    conditions: list[Condition] = Field(default_factory=list)
    combinator: Literal["and", "or"] = "and"
    effect: RuleEffect


class ExperienceSkill(SkillBase):
    kind: Literal["experience"] = "experience"
    scenario: str = ""
    outcome: str = ""
    lesson: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    validations: int = 0
    source_key: str = ""  # knowledge key this was promoted from


class GoalSkill(SkillBase):
    kind: Literal["goal"] = "goal"
    target_roas: float | None = None
    min_roas: float | None = None
    max_daily_budget: float | None = None


class MetaSkill(SkillBase):
    kind: Literal["meta"] = "meta"
    policy: KnowledgePolicy = Field(default_factory=KnowledgePolicy)


class ConfigSkill(SkillBase):
    kind: Literal["config"] = "config"
    config: TuningConfig = Field(default_factory=TuningConfig)


Skill = Annotated[
    Union[RuleSkill, ExperienceSkill, GoalSkill, MetaSkill, ConfigSkill],
    Field(discriminator="kind"),
]

SKILL_ADAPTER: TypeAdapter = TypeAdapter(Skill)


def parse_skill(data: dict | str | bytes) -> SkillBase:
    if isinstance(data, (str, bytes)):
        return SKILL_ADAPTER.validate_json(data)
    return SKILL_ADAPTER.validate_python(data)
