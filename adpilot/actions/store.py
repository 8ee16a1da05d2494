"""Action store — the approval queue and the audit trail of every action.

Creation is serialized per (entity, action type) with an in-process lock
and an existence check right before the insert; a partial unique index
backs that up at the database level. Status changes are compare-and-set
on the current status, so two writers can never both move an action out
of the same state.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from datetime import datetime
from typing import Any

import aiosqlite

from adpilot.actions.model import Action, ActionProposal
from adpilot.actions.state_machine import validate_transition
from adpilot.events.bus import EventBus
from adpilot.exceptions import ActionNotFoundError, ActionStateError, DuplicateActionError
from adpilot.types import OPEN_STATUSES, ActionStatus, ActionType, utcnow

_logger = logging.getLogger(__name__)

_OPEN = tuple(s.value for s in OPEN_STATUSES)


def _from_row(row) -> Action:
    # The flag columns are authoritative; claims update them with a CAS
    action = Action.model_validate_json(row[0])
    return action.model_copy(update={"reflected": bool(row[1]), "audited": bool(row[2])})


class ActionStore:
    def __init__(self, db_path: str, event_bus: EventBus | None = None) -> None:
        self._db_path = db_path
        self._bus = event_bus
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}

    def _key_lock(self, entity_id: str, action_type: ActionType) -> asyncio.Lock:
        key = (entity_id, action_type.value)
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    # ── Creation ─────────────────────────────────────────────────

    async def create(self, proposal: ActionProposal, cycle_id: str = "") -> Action:
        """Queue a proposal as a pending action.

        Raises DuplicateActionError if an open action already exists for
        the same entity and normalized type.
        """
        action = Action.from_proposal(proposal, cycle_id=cycle_id)
        async with self._key_lock(action.entity_id, action.action_type):
            existing = await self.find_open(action.entity_id, action.action_type)
            if existing is not None:
                raise DuplicateActionError(
                    f"Action {existing.id} ({existing.status.value}) already open for "
                    f"{action.entity_id}/{action.action_type.value}"
                )
            try:
                await self._insert(action)
            except sqlite3.IntegrityError as e:
                raise DuplicateActionError(
                    f"Open action already exists for {action.entity_id}/{action.action_type.value}"
                ) from e

        _logger.info(
            "Queued %s for %s (auto=%s, id=%s)",
            action.action_type.value, action.entity_id, action.auto, action.id,
        )
        await self._emit("action.created", action)
        return action

    async def _insert(self, action: Action) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO actions "
                "(id, entity_id, action_type, status, auto, skill_id, created_at, "
                "updated_at, executed_at, reflected, audited, payload) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    action.id, action.entity_id, action.action_type.value,
                    action.status.value, int(action.auto), action.skill_id,
                    action.created_at.isoformat(), action.updated_at.isoformat(),
                    action.executed_at.isoformat() if action.executed_at else None,
                    int(action.reflected), int(action.audited), action.model_dump_json(),
                ),
            )
            await db.commit()

    # ── Reads ────────────────────────────────────────────────────

    async def get(self, action_id: str) -> Action:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT payload, reflected, audited FROM actions WHERE id = ?", (action_id,)
            )
            row = await cursor.fetchone()
        if row is None:
            raise ActionNotFoundError(f"No action with id {action_id}")
        return _from_row(row)

    async def _select(self, where: str, params: list[Any], order: str = "created_at DESC",
                      limit: int | None = None) -> list[Action]:
        sql = f"SELECT payload, reflected, audited FROM actions WHERE {where} ORDER BY {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params = [*params, limit]
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
        return [_from_row(r) for r in rows]

    async def list_actions(
        self,
        status: ActionStatus | None = None,
        entity_id: str = "",
        since: datetime | None = None,
        limit: int = 100,
    ) -> list[Action]:
        conditions = []
        params: list[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(status.value)
        if entity_id:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        if since is not None:
            conditions.append("updated_at >= ?")
            params.append(since.isoformat())
        where = " AND ".join(conditions) if conditions else "1=1"
        return await self._select(where, params, limit=limit)

    async def find_open(self, entity_id: str, action_type: ActionType) -> Action | None:
        found = await self._select(
            f"entity_id = ? AND action_type = ? AND status IN ({','.join('?' * len(_OPEN))})",
            [entity_id, action_type.value, *_OPEN],
            limit=1,
        )
        return found[0] if found else None

    async def open_entity_ids(self) -> set[str]:
        """Entities with a pending or approved action waiting."""
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                f"SELECT DISTINCT entity_id FROM actions WHERE status IN ({','.join('?' * len(_OPEN))})",
                _OPEN,
            )
            rows = await cursor.fetchall()
        return {r[0] for r in rows}

    async def recently_executed_entities(self, since: datetime) -> set[str]:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "SELECT DISTINCT entity_id FROM actions WHERE status = ? AND executed_at >= ?",
                (ActionStatus.EXECUTED.value, since.isoformat()),
            )
            rows = await cursor.fetchall()
        return {r[0] for r in rows}

    async def executed_between(
        self,
        start: datetime,
        end: datetime,
        statuses: tuple[ActionStatus, ...] = (ActionStatus.EXECUTED,),
    ) -> list[Action]:
        placeholders = ",".join("?" * len(statuses))
        return await self._select(
            f"status IN ({placeholders}) AND executed_at >= ? AND executed_at <= ?",
            [*(s.value for s in statuses), start.isoformat(), end.isoformat()],
            order="executed_at ASC",
        )

    async def stale_pending(self, created_before: datetime) -> list[Action]:
        return await self._select(
            "status = ? AND created_at < ?",
            [ActionStatus.PENDING.value, created_before.isoformat()],
            order="created_at ASC",
        )

    async def stale_executing(self, updated_before: datetime) -> list[Action]:
        """Actions claimed for execution that never reported back."""
        return await self._select(
            "status = ? AND updated_at < ?",
            [ActionStatus.EXECUTING.value, updated_before.isoformat()],
            order="updated_at ASC",
        )

    # ── Writes ───────────────────────────────────────────────────

    async def transition(self, action_id: str, target: ActionStatus, **changes: Any) -> Action:
        """Move an action to `target`, guarded by the state machine and a CAS on status."""
        current = await self.get(action_id)
        validate_transition(current, target)
        now = utcnow()
        updated = current.model_copy(update={**changes, "status": target, "updated_at": now})
        if target in (ActionStatus.EXECUTED, ActionStatus.FAILED) and updated.executed_at is None:
            updated = updated.model_copy(update={"executed_at": now})

        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "UPDATE actions SET status = ?, updated_at = ?, executed_at = ?, payload = ? "
                "WHERE id = ? AND status = ?",
                (
                    updated.status.value, updated.updated_at.isoformat(),
                    updated.executed_at.isoformat() if updated.executed_at else None,
                    updated.model_dump_json(), action_id, current.status.value,
                ),
            )
            await db.commit()
            if cursor.rowcount != 1:
                raise ActionStateError(
                    f"Action {action_id} changed state concurrently; "
                    f"expected {current.status.value}"
                )

        _logger.info(
            "Action %s: %s -> %s", action_id, current.status.value, target.value,
        )
        await self._emit(f"action.{target.value}", updated)
        return updated

    async def record_attempt(self, action_id: str, error: str = "") -> Action:
        """Count an execution attempt without changing status."""
        current = await self.get(action_id)
        updated = current.model_copy(update={
            "attempts": current.attempts + 1,
            "last_error": error or current.last_error,
            "updated_at": utcnow(),
        })
        await self._write_payload(updated, expected_status=current.status)
        return updated

    async def claim_reflection(self, action_id: str) -> bool:
        """Mark an action reflected. False if someone already did."""
        return await self._claim_flag(action_id, "reflected")

    async def claim_audit(self, action_id: str) -> bool:
        return await self._claim_flag(action_id, "audited")

    async def release_reflection(self, action_id: str) -> None:
        """Undo a reflection claim whose reflection was never stored."""
        current = await self.get(action_id)
        updated = current.model_copy(update={"reflected": False})
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "UPDATE actions SET reflected = 0, payload = ? WHERE id = ? AND reflected = 1",
                (updated.model_dump_json(), action_id),
            )
            await db.commit()

    async def _claim_flag(self, action_id: str, flag: str) -> bool:
        current = await self.get(action_id)
        if getattr(current, flag):
            return False
        updated = current.model_copy(update={flag: True})
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                f"UPDATE actions SET {flag} = 1, payload = ? WHERE id = ? AND {flag} = 0",
                (updated.model_dump_json(), action_id),
            )
            await db.commit()
            return cursor.rowcount == 1

    async def _write_payload(self, action: Action, expected_status: ActionStatus) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "UPDATE actions SET updated_at = ?, payload = ? WHERE id = ? AND status = ?",
                (
                    action.updated_at.isoformat(), action.model_dump_json(),
                    action.id, expected_status.value,
                ),
            )
            await db.commit()
            if cursor.rowcount != 1:
                raise ActionStateError(f"Action {action.id} changed state concurrently")

    async def _emit(self, topic: str, action: Action) -> None:
        if self._bus:
            await self._bus.emit(topic, {
                "action_id": action.id,
                "entity_id": action.entity_id,
                "action_type": action.action_type.value,
                "status": action.status.value,
                "auto": action.auto,
            }, source="action_store")
