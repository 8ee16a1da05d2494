"""Migration 002: at most one open action per (entity, action type).

A partial unique index backs up the store's per-key lock, so even two
processes racing on the same database cannot both queue the same action.
"""

from __future__ import annotations

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    await db.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_actions_open "
        "ON actions(entity_id, action_type) "
        "WHERE status IN ('pending', 'approved')"
    )
