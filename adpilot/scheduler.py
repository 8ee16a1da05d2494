"""Background schedules — the pipeline cycle, the auditor, evolution and decay.

Each job runs in its own asyncio task on its own interval, so a slow
evolution run never holds up the hourly cycle. A job that raises is
logged and retried on the next tick.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from adpilot.events.bus import EventBus

logger = structlog.get_logger()

Job = Callable[[], Awaitable[Any]]


class PeriodicDaemon:
    """Runs one job on a fixed interval until stopped."""

    def __init__(
        self,
        name: str,
        job: Job,
        interval_seconds: float,
        event_bus: EventBus | None = None,
        run_immediately: bool = True,
    ) -> None:
        self.name = name
        self._job = job
        self._interval = interval_seconds
        self._event_bus = event_bus
        self._run_immediately = run_immediately
        self._running = False
        self._task: asyncio.Task | None = None
        self._runs = 0
        self._failures = 0
        self._last_result: Any = None

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("daemon_started", daemon=self.name, interval_seconds=self._interval)
        await self._emit("daemon.started", {"interval_seconds": self._interval})

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("daemon_stopped", daemon=self.name, runs=self._runs, failures=self._failures)
        await self._emit("daemon.stopped", {"runs": self._runs, "failures": self._failures})

    async def run_once(self) -> Any:
        result = await self._job()
        self._runs += 1
        self._last_result = result
        return result

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def runs(self) -> int:
        return self._runs

    @property
    def failures(self) -> int:
        return self._failures

    @property
    def last_result(self) -> Any:
        return self._last_result

    async def _run_loop(self) -> None:
        if not self._run_immediately:
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                return
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._failures += 1
                logger.error("daemon_job_failed", daemon=self.name, error=str(e))
                await self._emit("daemon.error", {"error": str(e)})

            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                break

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._event_bus:
            await self._event_bus.emit(topic, {"daemon": self.name, **data}, source="scheduler")


class Scheduler:
    """A named group of daemons started and stopped together."""

    def __init__(self, event_bus: EventBus | None = None) -> None:
        self._event_bus = event_bus
        self._daemons: dict[str, PeriodicDaemon] = {}

    def add(
        self,
        name: str,
        job: Job,
        interval_seconds: float,
        run_immediately: bool = True,
    ) -> PeriodicDaemon:
        daemon = PeriodicDaemon(name, job, interval_seconds, self._event_bus, run_immediately)
        self._daemons[name] = daemon
        return daemon

    def get(self, name: str) -> PeriodicDaemon | None:
        return self._daemons.get(name)

    @property
    def daemons(self) -> list[PeriodicDaemon]:
        return list(self._daemons.values())

    async def start(self) -> None:
        for daemon in self._daemons.values():
            await daemon.start()

    async def stop(self) -> None:
        for daemon in self._daemons.values():
            await daemon.stop()
