"""Approval desk — the human front door to the action queue.

The only code path that moves an action from pending to approved or
rejected. Stale pending actions expire after a TTL so the queue never
fills with proposals built on numbers nobody looks at any more.

Usage:
    desk = ApprovalDesk(store, executor)
    for action in await desk.pending():
        ...
    await desk.approve(action.id, reviewer="ops", execute=True)
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from adpilot.actions.executor import ActionExecutor
from adpilot.actions.model import Action
from adpilot.actions.store import ActionStore
from adpilot.exceptions import ActionStateError
from adpilot.types import ActionStatus, utcnow

_logger = logging.getLogger(__name__)


class ApprovalDesk:
    def __init__(
        self,
        store: ActionStore,
        executor: ActionExecutor | None = None,
        ttl_hours: int = 24,
    ) -> None:
        self._store = store
        self._executor = executor
        self._ttl = timedelta(hours=ttl_hours)

    async def pending(self, limit: int = 100) -> list[Action]:
        """Actions waiting for a human, oldest first. Auto actions are not listed."""
        actions = await self._store.list_actions(status=ActionStatus.PENDING, limit=limit)
        return sorted((a for a in actions if not a.auto), key=lambda a: a.created_at)

    async def failed(self, since: datetime | None = None, limit: int = 50) -> list[Action]:
        """Failed executions, surfaced for a human to retry or dismiss."""
        return await self._store.list_actions(status=ActionStatus.FAILED, since=since, limit=limit)

    async def approve(
        self,
        action_id: str,
        reviewer: str = "",
        note: str = "",
        execute: bool = False,
    ) -> Action:
        action = await self._store.transition(
            action_id, ActionStatus.APPROVED,
            reviewer=reviewer, review_note=note, reviewed_at=utcnow(),
        )
        _logger.info("Action %s approved by %s", action_id, reviewer or "unknown")
        if execute and self._executor is not None:
            action = await self._executor.execute(action_id)
        return action

    async def reject(self, action_id: str, reviewer: str = "", note: str = "") -> Action:
        action = await self._store.transition(
            action_id, ActionStatus.REJECTED,
            reviewer=reviewer, review_note=note, reviewed_at=utcnow(),
        )
        _logger.info("Action %s rejected by %s: %s", action_id, reviewer or "unknown", note)
        return action

    async def expire_stale(self, now: datetime | None = None) -> list[Action]:
        """Expire pending actions older than the TTL."""
        cutoff = (now or utcnow()) - self._ttl
        expired = []
        for action in await self._store.stale_pending(cutoff):
            try:
                expired.append(await self._store.transition(
                    action.id, ActionStatus.EXPIRED, review_note="approval window elapsed",
                ))
            except ActionStateError as e:
                # Reviewed between the read and the write
                _logger.debug("Not expiring %s: %s", action.id, e)
        if expired:
            _logger.info("Expired %d stale pending actions", len(expired))
        return expired

    async def fail_interrupted(self, now: datetime | None = None) -> list[Action]:
        """Fail executions that were claimed but never settled within the TTL.

        The process running them died mid-call, so whether the platform
        applied the change is unknown. Failing them puts them in front of
        a human instead of leaving the entity blocked forever.
        """
        cutoff = (now or utcnow()) - self._ttl
        failed = []
        for action in await self._store.stale_executing(cutoff):
            try:
                failed.append(await self._store.transition(
                    action.id, ActionStatus.FAILED,
                    last_error="execution interrupted; platform state unknown",
                ))
            except ActionStateError as e:
                _logger.debug("Not failing %s: %s", action.id, e)
        if failed:
            _logger.warning("Failed %d interrupted executions", len(failed))
        return failed
