"""Tests for the periodic daemons."""

import asyncio

import pytest

from adpilot.events.bus import EventBus
from adpilot.scheduler import PeriodicDaemon, Scheduler


@pytest.mark.asyncio
async def test_run_once_records_result():
    async def job():
        return 42

    daemon = PeriodicDaemon("cycle", job, interval_seconds=60)
    assert await daemon.run_once() == 42
    assert daemon.runs == 1
    assert daemon.last_result == 42


@pytest.mark.asyncio
async def test_loop_survives_failures():
    bus = EventBus()
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("source down")
        return "ok"

    daemon = PeriodicDaemon("cycle", flaky, interval_seconds=0.01, event_bus=bus)
    await daemon.start()
    await asyncio.sleep(0.1)
    await daemon.stop()

    assert daemon.failures == 1
    assert daemon.runs >= 1
    assert not daemon.is_running
    assert bus.history("daemon.error")[0].data["error"] == "source down"
    assert bus.history("daemon.stopped")


@pytest.mark.asyncio
async def test_delayed_start_waits_an_interval():
    calls = []

    async def job():
        calls.append(1)

    daemon = PeriodicDaemon("audit", job, interval_seconds=10, run_immediately=False)
    await daemon.start()
    await asyncio.sleep(0.05)
    await daemon.stop()
    assert calls == []


@pytest.mark.asyncio
async def test_scheduler_starts_and_stops_all():
    async def job():
        return None

    scheduler = Scheduler()
    scheduler.add("cycle", job, 10)
    scheduler.add("decay", job, 10, run_immediately=False)
    await scheduler.start()
    assert all(d.is_running for d in scheduler.daemons)
    await scheduler.stop()
    assert not any(d.is_running for d in scheduler.daemons)
    assert scheduler.get("decay").name == "decay"
    assert scheduler.get("missing") is None
