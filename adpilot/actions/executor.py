"""Action executor — applies actions on the platform with bounded retries.

Usage:
    executor = ActionExecutor(store, HttpPlatformExecutor(url, token))
    action = await executor.execute(action_id)   # executed or failed

The action is claimed as `executing` before the first platform call, so
a concurrent execute of the same action raises ActionStateError instead
of applying it twice. Attempt n that fails waits `backoff_seconds * n`
before attempt n+1. After `max_attempts` failures the action is `failed`
carrying the last attempt's error verbatim.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from adpilot.actions.model import Action
from adpilot.actions.platform import ACTIVE, PAUSED, PlatformExecutor
from adpilot.actions.state_machine import is_executable
from adpilot.actions.store import ActionStore
from adpilot.exceptions import ActionStateError, ConfigurationError, PlatformError
from adpilot.types import ActionStatus, ActionType

_logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class ActionExecutor:
    def __init__(
        self,
        store: ActionStore,
        platform: PlatformExecutor | None,
        max_attempts: int = 3,
        backoff_seconds: float = 30.0,
        call_timeout: float = 30.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._platform = platform
        self._max_attempts = max(1, max_attempts)
        self._backoff = backoff_seconds
        self._timeout = call_timeout
        self._sleep = sleep

    @property
    def configured(self) -> bool:
        return self._platform is not None

    async def execute(self, action_id: str) -> Action:
        if self._platform is None:
            raise ConfigurationError("No platform executor configured")

        action = await self._store.get(action_id)
        if not is_executable(action):
            raise ActionStateError(
                f"Action {action.id} is {action.status.value}"
                f"{' (auto)' if action.auto else ''} and cannot be executed"
            )

        # The status CAS lets exactly one caller through to the platform
        action = await self._store.transition(action.id, ActionStatus.EXECUTING)

        last_error = ""
        for attempt in range(1, self._max_attempts + 1):
            try:
                await asyncio.wait_for(self._apply(action), timeout=self._timeout)
            except (PlatformError, asyncio.TimeoutError) as e:
                last_error = str(e) or f"timed out after {self._timeout}s"
                _logger.warning(
                    "Action %s attempt %d/%d failed: %s",
                    action.id, attempt, self._max_attempts, last_error,
                )
                await self._store.record_attempt(action.id, last_error)
                if attempt < self._max_attempts:
                    await self._sleep(self._backoff * attempt)
                continue

            return await self._store.transition(
                action.id, ActionStatus.EXECUTED, attempts=attempt, last_error="",
            )

        return await self._store.transition(
            action.id, ActionStatus.FAILED,
            attempts=self._max_attempts, last_error=last_error,
        )

    async def execute_approved(self) -> list[Action]:
        """Run every approved action waiting in the queue."""
        results = []
        for action in await self._store.list_actions(status=ActionStatus.APPROVED, limit=500):
            try:
                results.append(await self.execute(action.id))
            except ActionStateError as e:
                _logger.info("Skipping action %s: %s", action.id, e)
        return results

    async def _apply(self, action: Action) -> None:
        assert self._platform is not None
        if action.action_type == ActionType.PAUSE:
            await self._platform.set_status(action.entity_id, PAUSED, account_id=action.account_id)
        elif action.action_type == ActionType.RESUME:
            await self._platform.set_status(action.entity_id, ACTIVE, account_id=action.account_id)
        elif action.action_type == ActionType.ADJUST_BUDGET:
            budget = action.params.get("budget")
            if budget is None:
                raise PlatformError("adjust_budget action has no target budget")
            await self._platform.set_budget(action.entity_id, float(budget), account_id=action.account_id)
