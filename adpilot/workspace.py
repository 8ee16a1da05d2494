"""Workspace — one database, every store that lives in it.

The orchestrator, the daemons and the CLI all reach persisted state
through this facade, so there is exactly one place that knows which
stores exist and how the schema gets created.
"""

from __future__ import annotations

import logging
from pathlib import Path

from adpilot.actions.store import ActionStore
from adpilot.audit.store import AuditStore
from adpilot.events.bus import EventBus
from adpilot.knowledge.librarian import Librarian
from adpilot.knowledge.store import KnowledgeStore
from adpilot.learning.store import ReflectionStore
from adpilot.migrations.runner import apply_migrations
from adpilot.monitor.timeseries import SampleStore
from adpilot.skills.seeds import bootstrap
from adpilot.skills.store import SkillStore
from adpilot.snapshots import SnapshotStore

_logger = logging.getLogger(__name__)


class Workspace:
    def __init__(self, db_path: str, event_bus: EventBus | None = None) -> None:
        self.db_path = db_path
        self.event_bus = event_bus or EventBus()
        self.skills = SkillStore(db_path)
        self.actions = ActionStore(db_path, event_bus=self.event_bus)
        self.samples = SampleStore(db_path)
        self.snapshots = SnapshotStore(db_path)
        self.audits = AuditStore(db_path)
        self.knowledge = KnowledgeStore(db_path)
        self.reflections = ReflectionStore(db_path)
        self.librarian = Librarian(self.skills, self.knowledge, event_bus=self.event_bus)
        self._initialized = False

    async def initialize(self, seed: bool = True) -> None:
        """Create or upgrade the schema and register any missing seed skills."""
        if self._initialized:
            return
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        applied = await apply_migrations(self.db_path)
        if applied:
            _logger.info("Schema of %s upgraded to version %d", self.db_path, applied[-1])
        if seed:
            await bootstrap(self.skills)
        self._initialized = True
