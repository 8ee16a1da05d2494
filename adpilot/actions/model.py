"""Action records and the proposals they are created from."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field, field_validator

from adpilot.types import (
    TERMINAL_STATUSES,
    ActionStatus,
    ActionType,
    Label,
    new_id,
    normalize_action_type,
    utcnow,
)


class ActionProposal(BaseModel):
    """A candidate action emitted by the decision engine. Never executed directly."""

    entity_id: str
    entity_name: str = ""
    account_id: str = ""
    platform: str = ""
    action_type: ActionType
    params: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    skill_id: str | None = None
    auto: bool = False
    label: Label | None = None
    metrics_before: dict[str, Any] = Field(default_factory=dict)

    @field_validator("action_type", mode="before")
    @classmethod
    def _normalize(cls, v):
        return normalize_action_type(v)


class Action(BaseModel):
    """A proposed or executed operational change with its own lifecycle."""

    id: str = Field(default_factory=new_id)
    entity_id: str
    entity_name: str = ""
    account_id: str = ""
    platform: str = ""
    action_type: ActionType
    params: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    skill_id: str | None = None
    auto: bool = False
    label: Label | None = None
    status: ActionStatus = ActionStatus.PENDING
    attempts: int = 0
    last_error: str = ""
    metrics_before: dict[str, Any] = Field(default_factory=dict)
    cycle_id: str = ""
    reviewer: str = ""
    review_note: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    reviewed_at: datetime | None = None
    executed_at: datetime | None = None
    reflected: bool = False
    audited: bool = False

    @field_validator("action_type", mode="before")
    @classmethod
    def _normalize(cls, v):
        return normalize_action_type(v)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_proposal(cls, proposal: ActionProposal, cycle_id: str = "") -> Action:
        return cls(**proposal.model_dump(), cycle_id=cycle_id)

    def describe(self) -> str:
        if self.action_type == ActionType.ADJUST_BUDGET:
            before = self.params.get("previous_budget")
            after = self.params.get("budget")
            return f"budget {before} -> {after}"
        return self.action_type.value
