"""Migration 001: baseline schema.

Every persisted surface keeps its full pydantic record in a JSON
`payload` column; the scalar columns beside it exist for filtering,
ordering and compare-and-set updates.
"""

from __future__ import annotations

import aiosqlite

_TABLES = [
    """
    CREATE TABLE IF NOT EXISTS skills (
        id TEXT PRIMARY KEY,
        kind TEXT NOT NULL,
        name TEXT NOT NULL,
        enabled INTEGER NOT NULL DEFAULT 1,
        archived INTEGER NOT NULL DEFAULT 0,
        priority INTEGER NOT NULL DEFAULT 0,
        seq INTEGER NOT NULL,
        version INTEGER NOT NULL DEFAULT 1,
        payload TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS skill_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        skill_id TEXT NOT NULL,
        version INTEGER NOT NULL,
        payload TEXT NOT NULL,
        reason TEXT DEFAULT '',
        changed_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS samples (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        entity_id TEXT NOT NULL,
        taken_at TEXT NOT NULL,
        spend REAL DEFAULT 0,
        spend_rate REAL DEFAULT 0,
        roas REAL DEFAULT 0,
        revenue REAL DEFAULT 0,
        conversions INTEGER DEFAULT 0,
        confidence REAL DEFAULT 1.0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS actions (
        id TEXT PRIMARY KEY,
        entity_id TEXT NOT NULL,
        action_type TEXT NOT NULL,
        status TEXT NOT NULL,
        auto INTEGER NOT NULL DEFAULT 0,
        skill_id TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        executed_at TEXT,
        reflected INTEGER NOT NULL DEFAULT 0,
        audited INTEGER NOT NULL DEFAULT 0,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reflections (
        action_id TEXT PRIMARY KEY,
        skill_id TEXT,
        action_type TEXT NOT NULL,
        assessment TEXT NOT NULL,
        strategy TEXT DEFAULT '',
        created_at TEXT NOT NULL,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS knowledge (
        id TEXT PRIMARY KEY,
        key TEXT NOT NULL UNIQUE,
        category TEXT NOT NULL,
        confidence REAL NOT NULL,
        validations INTEGER NOT NULL DEFAULT 0,
        high_priority INTEGER NOT NULL DEFAULT 0,
        archived INTEGER NOT NULL DEFAULT 0,
        last_validated_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS snapshots (
        id TEXT PRIMARY KEY,
        started_at TEXT NOT NULL,
        finished_at TEXT,
        status TEXT NOT NULL,
        last_phase TEXT DEFAULT '',
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_reports (
        id TEXT PRIMARY KEY,
        created_at TEXT NOT NULL,
        payload TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS corrections (
        id TEXT PRIMARY KEY,
        report_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        action_id TEXT,
        processed INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        payload TEXT NOT NULL
    )
    """,
]

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_skill_history ON skill_history(skill_id, version)",
    "CREATE INDEX IF NOT EXISTS idx_samples_entity ON samples(entity_id, taken_at)",
    "CREATE INDEX IF NOT EXISTS idx_actions_entity ON actions(entity_id, action_type, status)",
    "CREATE INDEX IF NOT EXISTS idx_actions_status ON actions(status, executed_at)",
    "CREATE INDEX IF NOT EXISTS idx_snapshots_started ON snapshots(started_at)",
    "CREATE INDEX IF NOT EXISTS idx_corrections_open ON corrections(processed)",
]


async def upgrade(db: aiosqlite.Connection) -> None:
    for ddl in _TABLES:
        await db.execute(ddl)
    for ddl in _INDEXES:
        await db.execute(ddl)
