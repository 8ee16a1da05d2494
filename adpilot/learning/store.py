"""Reflection records — at most one per executed action."""

from __future__ import annotations

from datetime import datetime
from typing import Any

import aiosqlite
from pydantic import BaseModel, Field

from adpilot.types import ActionType, Assessment, Label, utcnow


class Reflection(BaseModel):
    action_id: str
    entity_id: str
    skill_id: str | None = None
    action_type: ActionType
    label: Label | None = None
    assessment: Assessment
    lesson: str = ""
    reason: str = ""
    strategy: str = ""
    metrics_before: dict[str, Any] = Field(default_factory=dict)
    metrics_after: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ReflectionStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def save(self, reflection: Reflection) -> bool:
        """Insert a reflection. False when the action already has one."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "INSERT OR IGNORE INTO reflections "
                "(action_id, skill_id, action_type, assessment, strategy, created_at, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    reflection.action_id, reflection.skill_id, reflection.action_type.value,
                    reflection.assessment.value, reflection.strategy,
                    reflection.created_at.isoformat(), reflection.model_dump_json(),
                ),
            )
            await db.commit()
            return cursor.rowcount == 1

    async def get(self, action_id: str) -> Reflection | None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT payload FROM reflections WHERE action_id = ?", (action_id,))
            row = await cursor.fetchone()
        return Reflection.model_validate_json(row[0]) if row else None

    async def since(self, start: datetime, assessment: Assessment | None = None) -> list[Reflection]:
        sql = "SELECT payload FROM reflections WHERE created_at >= ?"
        params: list[Any] = [start.isoformat()]
        if assessment is not None:
            sql += " AND assessment = ?"
            params.append(assessment.value)
        sql += " ORDER BY created_at ASC"
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [Reflection.model_validate_json(r[0]) for r in rows]

    async def count(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM reflections")
            row = await cursor.fetchone()
        return row[0]
