"""Migration 003: an action being executed still counts as open.

Rebuilds the open-action index so an in-flight `executing` action keeps
its (entity, action type) slot until the platform call settles.
"""

from __future__ import annotations

import aiosqlite


async def upgrade(db: aiosqlite.Connection) -> None:
    await db.execute("DROP INDEX IF EXISTS idx_actions_open")
    await db.execute(
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_actions_open "
        "ON actions(entity_id, action_type) "
        "WHERE status IN ('pending', 'approved', 'executing')"
    )
