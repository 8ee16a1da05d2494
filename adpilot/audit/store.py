"""Audit store — reports and the corrective queue they feed."""

from __future__ import annotations

import aiosqlite

from adpilot.audit.model import AuditReport, CorrectiveItem


class AuditStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def save(self, report: AuditReport) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO audit_reports (id, created_at, payload) VALUES (?, ?, ?)",
                (report.id, report.created_at.isoformat(), report.model_dump_json()),
            )
            for item in report.corrections:
                await db.execute(
                    "INSERT INTO corrections "
                    "(id, report_id, kind, entity_id, action_id, processed, created_at, payload) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                    (
                        item.id, item.report_id, item.kind.value, item.entity_id,
                        item.action_id, int(item.processed), item.created_at.isoformat(),
                        item.model_dump_json(),
                    ),
                )
            await db.commit()

    async def recent(self, limit: int = 10) -> list[AuditReport]:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT payload FROM audit_reports ORDER BY created_at DESC LIMIT ?", (limit,)
            )
            rows = await cursor.fetchall()
        return [AuditReport.model_validate_json(r[0]) for r in rows]

    async def pending_corrections(self) -> list[CorrectiveItem]:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT payload FROM corrections WHERE processed = 0 ORDER BY created_at ASC"
            )
            rows = await cursor.fetchall()
        return [CorrectiveItem.model_validate_json(r[0]) for r in rows]

    async def mark_processed(self, item_ids: list[str]) -> int:
        if not item_ids:
            return 0
        marked = 0
        async with aiosqlite.connect(self._db_path) as db:
            for item_id in item_ids:
                cursor = await db.execute(
                    "SELECT payload FROM corrections WHERE id = ? AND processed = 0", (item_id,)
                )
                row = await cursor.fetchone()
                if row is None:
                    continue
                item = CorrectiveItem.model_validate_json(row[0]).model_copy(update={"processed": True})
                cursor = await db.execute(
                    "UPDATE corrections SET processed = 1, payload = ? WHERE id = ? AND processed = 0",
                    (item.model_dump_json(), item_id),
                )
                marked += cursor.rowcount
            await db.commit()
        return marked
