"""Knowledge store — SQLite persistence for knowledge entries."""

from __future__ import annotations

from datetime import datetime

import aiosqlite

from adpilot.knowledge.model import KnowledgeCategory, KnowledgeEntry


class KnowledgeStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def get(self, key: str) -> KnowledgeEntry | None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT payload FROM knowledge WHERE key = ?", (key,))
            row = await cursor.fetchone()
        return KnowledgeEntry.model_validate_json(row[0]) if row else None

    async def save(self, entry: KnowledgeEntry) -> KnowledgeEntry:
        """Insert or replace the entry with this key."""
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO knowledge "
                "(id, key, category, confidence, validations, high_priority, archived, "
                "last_validated_at, updated_at, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET "
                "category = excluded.category, confidence = excluded.confidence, "
                "validations = excluded.validations, high_priority = excluded.high_priority, "
                "archived = excluded.archived, last_validated_at = excluded.last_validated_at, "
                "updated_at = excluded.updated_at, payload = excluded.payload",
                (
                    entry.id, entry.key, entry.category.value, entry.confidence,
                    entry.validations, int(entry.high_priority), int(entry.archived),
                    entry.last_validated_at.isoformat(), entry.updated_at.isoformat(),
                    entry.model_dump_json(),
                ),
            )
            await db.commit()
        return entry

    async def list_entries(
        self,
        category: KnowledgeCategory | None = None,
        include_archived: bool = False,
        high_priority_only: bool = False,
        min_confidence: float = 0.0,
        limit: int = 100,
    ) -> list[KnowledgeEntry]:
        """Entries ordered by priority flag, then confidence."""
        conditions = ["confidence >= ?"]
        params: list = [min_confidence]
        if category is not None:
            conditions.append("category = ?")
            params.append(category.value)
        if not include_archived:
            conditions.append("archived = 0")
        if high_priority_only:
            conditions.append("high_priority = 1")
        params.append(limit)

        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT payload FROM knowledge WHERE {' AND '.join(conditions)} "
                "ORDER BY high_priority DESC, confidence DESC, updated_at DESC LIMIT ?",
                params,
            )
            rows = await cursor.fetchall()
        return [KnowledgeEntry.model_validate_json(r[0]) for r in rows]

    async def stale(self, validated_before: datetime) -> list[KnowledgeEntry]:
        """Live entries nobody has validated since the cutoff."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT payload FROM knowledge WHERE archived = 0 AND last_validated_at < ?",
                (validated_before.isoformat(),),
            )
            rows = await cursor.fetchall()
        return [KnowledgeEntry.model_validate_json(r[0]) for r in rows]

    async def count(self, include_archived: bool = False) -> int:
        sql = "SELECT COUNT(*) FROM knowledge"
        if not include_archived:
            sql += " WHERE archived = 0"
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(sql)
            row = await cursor.fetchone()
        return row[0]
