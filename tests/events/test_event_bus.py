"""Tests for the event bus."""

import pytest

from adpilot.events.bus import Event, EventBus


@pytest.mark.asyncio
async def test_emit_and_subscribe():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("cycle.completed", handler)
    await bus.emit("cycle.completed", {"cycle_id": "s1"}, source="orchestrator")

    assert len(received) == 1
    assert received[0].data["cycle_id"] == "s1"
    assert received[0].source == "orchestrator"


@pytest.mark.asyncio
async def test_wildcard_subscribe():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event.topic)

    bus.subscribe("action.*", handler)
    await bus.emit("action.approved")
    await bus.emit("action.failed")
    await bus.emit("skill.disabled")  # not an action

    assert received == ["action.approved", "action.failed"]


@pytest.mark.asyncio
async def test_failing_handler_does_not_reach_emitter():
    bus = EventBus()
    received = []

    async def broken(event: Event):
        raise RuntimeError("boom")

    async def ok(event: Event):
        received.append(event)

    bus.subscribe("*", broken)
    bus.subscribe("*", ok)
    await bus.emit("audit.completed")
    assert len(received) == 1


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    received = []

    async def handler(event: Event):
        received.append(event)

    bus.subscribe("x", handler)
    assert bus.subscriber_count == 1
    bus.unsubscribe("x", handler)
    await bus.emit("x")
    assert received == []
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_history_newest_first_and_bounded():
    bus = EventBus(history_limit=3)
    for i in range(5):
        await bus.emit(f"cycle.phase{i}")
    await bus.emit("audit.completed")

    assert [e.topic for e in bus.history()] == ["audit.completed", "cycle.phase4", "cycle.phase3"]
    assert [e.topic for e in bus.history("cycle.*", limit=1)] == ["cycle.phase4"]
    assert set(bus.topics()) == {"audit.completed", "cycle.phase4", "cycle.phase3"}
