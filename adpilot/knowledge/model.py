"""Knowledge entries — decayable facts keyed by a stable key."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from adpilot.types import new_id, utcnow


class KnowledgeCategory(str, Enum):
    LESSON = "lesson"
    AUDIT = "audit_finding"
    EVOLUTION = "evolution"
    PROPOSAL = "proposal"
    PREFERENCE = "preference"
    OBSERVATION = "observation"


class KnowledgeEntry(BaseModel):
    """A fact the system believes with some confidence.

    Confidence drifts down when nothing revalidates the entry and up
    each time it is seen again.
    """

    id: str = Field(default_factory=new_id)
    key: str
    category: KnowledgeCategory = KnowledgeCategory.OBSERVATION
    content: str
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    validations: int = 0
    high_priority: bool = False
    archived: bool = False
    source: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_validated_at: datetime = Field(default_factory=utcnow)
