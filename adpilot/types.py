"""Core types shared across all adpilot subsystems."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, TypeAlias

from pydantic import BaseModel, ConfigDict, Field

from adpilot.exceptions import InvalidActionTypeError

# ── ID Types ──────────────────────────────────────────────────────────────────

EntityId: TypeAlias = str
SkillId: TypeAlias = str
ActionId: TypeAlias = str


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Pipeline vocabulary ──────────────────────────────────────────────────────


class Verdict(str, Enum):
    NEEDS_DECISION = "needs_decision"
    WATCH = "watch"
    SKIP = "skip"


class Label(str, Enum):
    OBSERVING = "observing"
    LOSS_SEVERE = "loss_severe"
    DECLINING = "declining"
    LOSS_MILD = "loss_mild"
    HIGH_POTENTIAL = "high_potential"
    STABLE_GOOD = "stable_good"
    STABLE_NORMAL = "stable_normal"


class TrendDirection(str, Enum):
    RISING = "rising"
    STABLE = "stable"
    DECLINING = "declining"
    CRASHING = "crashing"
    RECOVERING = "recovering"
    INSUFFICIENT_DATA = "insufficient_data"


class Assessment(str, Enum):
    CORRECT = "correct"
    WRONG = "wrong"
    UNCLEAR = "unclear"


# ── Actions ──────────────────────────────────────────────────────────────────


class ActionType(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    ADJUST_BUDGET = "adjust_budget"


class ActionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    EXECUTING = "executing"
    REJECTED = "rejected"
    EXPIRED = "expired"
    EXECUTED = "executed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({
    ActionStatus.EXECUTED,
    ActionStatus.REJECTED,
    ActionStatus.FAILED,
    ActionStatus.EXPIRED,
})

# An executing action is in flight on the platform and still blocks its entity
OPEN_STATUSES = frozenset({ActionStatus.PENDING, ActionStatus.APPROVED, ActionStatus.EXECUTING})

_ACTION_ALIASES: dict[str, ActionType] = {
    "pause": ActionType.PAUSE,
    "pause_campaign": ActionType.PAUSE,
    "stop": ActionType.PAUSE,
    "resume": ActionType.RESUME,
    "resume_campaign": ActionType.RESUME,
    "activate": ActionType.RESUME,
    "adjust_budget": ActionType.ADJUST_BUDGET,
    "increase_budget": ActionType.ADJUST_BUDGET,
    "decrease_budget": ActionType.ADJUST_BUDGET,
    "set_budget": ActionType.ADJUST_BUDGET,
    "budget": ActionType.ADJUST_BUDGET,
}


def normalize_action_type(value: str | ActionType) -> ActionType:
    """Map every spelling of an action type onto the canonical enum."""
    if isinstance(value, ActionType):
        return value
    key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    try:
        return _ACTION_ALIASES[key]
    except KeyError:
        raise InvalidActionTypeError(f"Unknown action type: {value!r}") from None


# ── Metrics ──────────────────────────────────────────────────────────────────


class DailyPoint(BaseModel):
    """One reporting day for one entity."""

    model_config = ConfigDict(frozen=True)

    date: str
    spend: float = 0.0
    revenue: float = 0.0
    conversions: int = 0

    @property
    def roas(self) -> float:
        return self.revenue / self.spend if self.spend > 0 else 0.0


class CampaignMetrics(BaseModel):
    """Windowed performance snapshot for one entity. Rebuilt every cycle."""

    model_config = ConfigDict(frozen=True)

    entity_id: EntityId
    entity_name: str = ""
    account_id: str = ""
    platform: str = ""
    product: str = ""
    channel: str = ""
    status: str = "ACTIVE"
    daily_budget: float = 0.0
    as_of: datetime = Field(default_factory=utcnow)
    hour: float = 24.0  # hours elapsed in the reporting day

    today_spend: float = 0.0
    today_revenue: float = 0.0
    today_conversions: int = 0
    today_roas: float = 0.0
    yesterday_spend: float = 0.0
    yesterday_roas: float = 0.0
    day_before_spend: float = 0.0
    day_before_roas: float = 0.0

    spend_trend_pct: float = 0.0
    roas_trend_pct: float = 0.0
    total_spend_3d: float = 0.0
    total_revenue_3d: float = 0.0
    total_conversions_3d: int = 0
    avg_roas_3d: float = 0.0
    estimated_daily_spend: float = 0.0
    spend_per_hour: float = 0.0

    daily: list[DailyPoint] = Field(default_factory=list)  # oldest first

    def facts(self) -> dict[str, Any]:
        """Flat attribute map used for skill scope and condition checks."""
        data = self.model_dump(exclude={"daily", "as_of"})
        data["spend"] = self.today_spend
        data["roas"] = self.today_roas
        data["conversions"] = self.today_conversions
        if self.yesterday_roas > 0:
            data["roas_drop_vs_yesterday"] = round(
                (self.yesterday_roas - self.today_roas) / self.yesterday_roas * 100, 2
            )
        else:
            data["roas_drop_vs_yesterday"] = 0.0
        return data

    def summary(self) -> dict[str, Any]:
        """Compact dict for prompts, notifications and action records."""
        return {
            "entity_id": self.entity_id,
            "name": self.entity_name,
            "spend_today": round(self.today_spend, 2),
            "roas_today": round(self.today_roas, 3),
            "roas_yesterday": round(self.yesterday_roas, 3),
            "spend_3d": round(self.total_spend_3d, 2),
            "roas_3d": round(self.avg_roas_3d, 3),
            "conversions_3d": self.total_conversions_3d,
            "daily_budget": self.daily_budget,
        }
