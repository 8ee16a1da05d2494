"""Audit report, findings and corrective items."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from adpilot.types import new_id, utcnow


class FindingType(str, Enum):
    SCREENER_MISS = "screener_miss"
    SCREENER_OVERALERT = "screener_overalert"
    DECISION_WRONG = "decision_wrong"
    EXECUTION_FAILED = "execution_failed"


class CorrectiveKind(str, Enum):
    RESCREEN = "rescreen"
    OVERRIDE_DECISION = "override_decision"
    RETRY_EXECUTE = "retry_execute"


class Finding(BaseModel):
    type: FindingType
    severity: int = Field(default=3, ge=1, le=5)
    entity_id: str
    action_id: str | None = None
    skill_id: str | None = None
    message: str = ""
    suggested: CorrectiveKind | None = None


class CorrectiveItem(BaseModel):
    """A correction for the next cycle to apply. Only `processed` ever changes."""

    id: str = Field(default_factory=new_id)
    report_id: str
    kind: CorrectiveKind
    entity_id: str
    action_id: str | None = None
    reason: str = ""
    processed: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class CategoryTotals(BaseModel):
    checked: int = 0
    issues: int = 0

    @property
    def accuracy(self) -> float | None:
        if self.checked == 0:
            return None
        return round(1 - self.issues / self.checked, 3)


class AuditReport(BaseModel):
    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    snapshot_id: str | None = None
    screener: CategoryTotals = Field(default_factory=CategoryTotals)
    decision: CategoryTotals = Field(default_factory=CategoryTotals)
    execution: CategoryTotals = Field(default_factory=CategoryTotals)
    findings: list[Finding] = Field(default_factory=list)
    corrections: list[CorrectiveItem] = Field(default_factory=list)

    @property
    def overall_accuracy(self) -> float | None:
        checked = self.screener.checked + self.decision.checked + self.execution.checked
        if checked == 0:
            return None
        issues = self.screener.issues + self.decision.issues + self.execution.issues
        return round(1 - issues / checked, 3)
