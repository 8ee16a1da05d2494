"""Cycle snapshots — one append-only record per pipeline cycle.

A snapshot is written when a cycle starts, updated after every phase,
and frozen once it is completed or failed. The auditor reads old
snapshots to check what the screener said a few hours ago.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

import aiosqlite
from pydantic import BaseModel, Field

from adpilot.exceptions import SnapshotClosedError
from adpilot.types import Label, TrendDirection, Verdict, new_id, utcnow


class SnapshotStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class CyclePhase(str, Enum):
    MONITOR = "monitor"
    SCREEN = "screen"
    CLASSIFY = "classify"
    DECIDE = "decide"
    EXECUTE = "execute"
    NOTIFY = "notify"
    REFLECT = "reflect"


class ScreeningRecord(BaseModel):
    entity_id: str
    verdict: Verdict
    skill_id: str | None = None
    reason: str = ""
    confidence: float = 1.0
    trend: TrendDirection = TrendDirection.INSUFFICIENT_DATA
    max_severity: int = 0
    label: Label | None = None
    spend_3d: float = 0.0
    roas_3d: float = 0.0


class Snapshot(BaseModel):
    id: str = Field(default_factory=new_id)
    started_at: datetime = Field(default_factory=utcnow)
    finished_at: datetime | None = None
    status: SnapshotStatus = SnapshotStatus.RUNNING
    last_phase: CyclePhase | None = None
    counts: dict[str, int] = Field(default_factory=dict)
    screening: list[ScreeningRecord] = Field(default_factory=list)
    actions: list[dict[str, Any]] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    decision_strategy: str = ""
    summary: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status != SnapshotStatus.RUNNING


class SnapshotStore:
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def create(self, snapshot: Snapshot | None = None) -> Snapshot:
        snapshot = snapshot or Snapshot()
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO snapshots (id, started_at, finished_at, status, last_phase, payload) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    snapshot.id, snapshot.started_at.isoformat(), None,
                    snapshot.status.value, "", snapshot.model_dump_json(),
                ),
            )
            await db.commit()
        return snapshot

    async def save(self, snapshot: Snapshot) -> Snapshot:
        """Persist progress. Only a running snapshot can be written."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "UPDATE snapshots SET finished_at = ?, status = ?, last_phase = ?, payload = ? "
                "WHERE id = ? AND status = ?",
                (
                    snapshot.finished_at.isoformat() if snapshot.finished_at else None,
                    snapshot.status.value,
                    snapshot.last_phase.value if snapshot.last_phase else "",
                    snapshot.model_dump_json(),
                    snapshot.id,
                    SnapshotStatus.RUNNING.value,
                ),
            )
            await db.commit()
            if cursor.rowcount != 1:
                raise SnapshotClosedError(f"Snapshot {snapshot.id} is closed or missing")
        return snapshot

    async def complete(self, snapshot: Snapshot, summary: str = "") -> Snapshot:
        done = snapshot.model_copy(update={
            "status": SnapshotStatus.COMPLETED,
            "finished_at": utcnow(),
            "summary": summary or snapshot.summary,
        })
        return await self.save(done)

    async def fail(self, snapshot: Snapshot, error: str) -> Snapshot:
        failed = snapshot.model_copy(update={
            "status": SnapshotStatus.FAILED,
            "finished_at": utcnow(),
            "errors": [*snapshot.errors, error],
        })
        return await self.save(failed)

    async def get(self, snapshot_id: str) -> Snapshot | None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute("SELECT payload FROM snapshots WHERE id = ?", (snapshot_id,))
            row = await cursor.fetchone()
        return Snapshot.model_validate_json(row[0]) if row else None

    async def recent(self, limit: int = 20) -> list[Snapshot]:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT payload FROM snapshots ORDER BY started_at DESC LIMIT ?", (limit,)
            )
            rows = await cursor.fetchall()
        return [Snapshot.model_validate_json(r[0]) for r in rows]

    async def latest_completed_between(self, start: datetime, end: datetime) -> Snapshot | None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT payload FROM snapshots WHERE status = ? AND started_at >= ? AND started_at <= ? "
                "ORDER BY started_at DESC LIMIT 1",
                (SnapshotStatus.COMPLETED.value, start.isoformat(), end.isoformat()),
            )
            row = await cursor.fetchone()
        return Snapshot.model_validate_json(row[0]) if row else None
