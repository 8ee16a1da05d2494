"""Skill store — versioned skill records in SQLite.

Skills are never deleted. Every write that changes a skill's content
bumps the version and appends the full record to `skill_history`, so any
past configuration can be reconstructed. Counter-only writes (trigger
and outcome stats) update the record in place under the same version. Writes replace the whole JSON payload in one UPDATE,
which keeps concurrent readers from ever seeing half a record.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

import aiosqlite

from adpilot.exceptions import SkillNotFoundError
from adpilot.skills.schema import (
    ConfigSkill,
    MetaSkill,
    RuleSkill,
    SkillBase,
    parse_skill,
)
from adpilot.tuning import KnowledgePolicy, TuningConfig
from adpilot.types import utcnow

_logger = logging.getLogger(__name__)

SkillMutator = Callable[[SkillBase], "SkillBase | None"]

_BOOKKEEPING = {"stats", "version", "updated_at"}


def _content(skill: SkillBase) -> dict:
    return skill.model_dump(mode="json", exclude=_BOOKKEEPING)


class SkillStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._write_lock = asyncio.Lock()

    async def register(self, skill: SkillBase, reason: str = "registered") -> SkillBase:
        """Insert a new skill, assigning the next registration order."""
        async with self._write_lock:
            async with aiosqlite.connect(self._db_path) as db:
                cursor = await db.execute("SELECT COALESCE(MAX(seq), 0) FROM skills")
                row = await cursor.fetchone()
                skill = skill.model_copy(update={"order": row[0] + 1})
                await db.execute(
                    "INSERT INTO skills "
                    "(id, kind, name, enabled, archived, priority, seq, version, payload, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        skill.id, skill.kind, skill.name, int(skill.enabled),
                        int(skill.archived), skill.priority, skill.order,
                        skill.version, skill.model_dump_json(), skill.updated_at.isoformat(),
                    ),
                )
                await self._write_history(db, skill, reason)
                await db.commit()
        _logger.debug("Registered skill %s (%s)", skill.name, skill.kind)
        return skill

    async def get(self, skill_id: str) -> SkillBase:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT payload FROM skills WHERE id = ?", (skill_id,))
            row = await cursor.fetchone()
        if row is None:
            raise SkillNotFoundError(f"No skill with id {skill_id}")
        return parse_skill(row[0])

    async def find_by_name(self, name: str) -> SkillBase | None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT payload FROM skills WHERE name = ? ORDER BY seq LIMIT 1", (name,)
            )
            row = await cursor.fetchone()
        return parse_skill(row[0]) if row else None

    async def list_skills(
        self,
        kind: str | None = None,
        active_only: bool = True,
    ) -> list[SkillBase]:
        """Skills in resolution order: priority descending, then registration order."""
        conditions = []
        params: list = []
        if kind:
            conditions.append("kind = ?")
            params.append(kind)
        if active_only:
            conditions.append("enabled = 1 AND archived = 0")
        where = " AND ".join(conditions) if conditions else "1=1"

        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT payload FROM skills WHERE {where} ORDER BY priority DESC, seq ASC",
                params,
            )
            rows = await cursor.fetchall()
        return [parse_skill(r[0]) for r in rows]

    async def rules(self, effect_type: str) -> list[RuleSkill]:
        """Active rule skills carrying the given effect type."""
        return [
            s for s in await self.list_skills(kind="rule")
            if isinstance(s, RuleSkill) and s.effect.type == effect_type
        ]

    async def update(self, skill_id: str, mutate: SkillMutator, reason: str) -> SkillBase:
        """Read-modify-write one skill under the store's write lock.

        `mutate` receives a deep copy and may change it in place or
        return a replacement.
        """
        async with self._write_lock:
            current = await self.get(skill_id)
            draft = current.model_copy(deep=True)
            result = mutate(draft)
            updated = result if result is not None else draft
            changed = _content(updated) != _content(current)
            updated = updated.model_copy(update={
                "id": current.id,
                "order": current.order,
                "version": current.version + 1 if changed else current.version,
                "updated_at": utcnow(),
            })
            async with aiosqlite.connect(self._db_path) as db:
                await db.execute(
                    "UPDATE skills SET name = ?, enabled = ?, archived = ?, priority = ?, "
                    "version = ?, payload = ?, updated_at = ? WHERE id = ?",
                    (
                        updated.name, int(updated.enabled), int(updated.archived),
                        updated.priority, updated.version, updated.model_dump_json(),
                        updated.updated_at.isoformat(), updated.id,
                    ),
                )
                if changed:
                    await self._write_history(db, updated, reason)
                await db.commit()
        if changed:
            _logger.info("Skill %s -> v%d: %s", updated.name, updated.version, reason)
        else:
            _logger.debug("Skill %s stats: %s", updated.name, reason)
        return updated

    async def history(self, skill_id: str) -> list[dict]:
        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(
                "SELECT version, reason, changed_at, payload FROM skill_history "
                "WHERE skill_id = ? ORDER BY version ASC",
                (skill_id,),
            )
            rows = await cursor.fetchall()
        return [
            {
                "version": r["version"],
                "reason": r["reason"],
                "changed_at": datetime.fromisoformat(r["changed_at"]),
                "skill": parse_skill(r["payload"]),
            }
            for r in rows
        ]

    async def count(self) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT COUNT(*) FROM skills")
            row = await cursor.fetchone()
        return row[0]

    async def tuning(self) -> TuningConfig:
        """The active config skill's TuningConfig, or defaults."""
        for skill in await self.list_skills(kind="config"):
            if isinstance(skill, ConfigSkill):
                return skill.config
        return TuningConfig()

    async def knowledge_policy(self) -> KnowledgePolicy:
        for skill in await self.list_skills(kind="meta"):
            if isinstance(skill, MetaSkill):
                return skill.policy
        return KnowledgePolicy()

    async def _write_history(self, db: aiosqlite.Connection, skill: SkillBase, reason: str) -> None:
        await db.execute(
            "INSERT INTO skill_history (skill_id, version, payload, reason, changed_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (skill.id, skill.version, skill.model_dump_json(), reason, utcnow().isoformat()),
        )
