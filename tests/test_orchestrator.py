"""End-to-end cycle tests: static metrics in, actions and a snapshot out."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from adpilot.actions.executor import ActionExecutor
from adpilot.audit.model import AuditReport, CorrectiveItem, CorrectiveKind
from adpilot.exceptions import MetricsUnavailableError
from adpilot.monitor.collector import MetricsCollector
from adpilot.monitor.sources import MetricsSource, StaticMetricsSource
from adpilot.notify import NotificationSink, Notifier
from adpilot.orchestrator import Orchestrator
from adpilot.snapshots import CyclePhase, SnapshotStatus
from adpilot.types import ActionStatus, ActionType, Verdict, utcnow

from tests.conftest import FakePlatform, make_samples

# Action timestamps come from the wall clock, so cycles run on today's date
TODAY = utcnow().replace(hour=12, minute=0, second=0, microsecond=0)

SEVERE_DAYS = [(40.0, 6.0, 1)] * 3
QUIET_DAYS = [(1.0, 0.0, 0)] * 3


class _DownSource(MetricsSource):
    name = "down"

    async def fetch(self, scope, date_range):
        raise MetricsUnavailableError("connection refused")


class _Inbox(NotificationSink):
    name = "inbox"

    def __init__(self):
        self.summaries = []

    async def send(self, summary):
        self.summaries.append(summary)


class _BlockingSink(NotificationSink):
    name = "blocking"

    def __init__(self):
        self.started = asyncio.Event()

    async def send(self, summary):
        self.started.set()
        await asyncio.sleep(10)


def _orchestrator(workspace, sources, platform=None, inbox=None):
    executor = ActionExecutor(workspace.actions, platform, sleep=_no_sleep)
    return Orchestrator(
        workspace,
        MetricsCollector(sources, timeout=1.0),
        executor=executor,
        notifier=Notifier([inbox or _Inbox()]),
    )


async def _no_sleep(seconds):
    return None


def _source():
    return StaticMetricsSource(
        make_samples("c1", SEVERE_DAYS, now=TODAY, entity_name="Loser", account_id="a1")
        + make_samples("c2", QUIET_DAYS, now=TODAY, entity_name="Quiet", account_id="a1")
    )


async def test_cycle_pauses_severe_loser(workspace):
    platform = FakePlatform()
    inbox = _Inbox()
    result = await _orchestrator(workspace, [_source()], platform, inbox).run_cycle(TODAY)

    assert result.ok
    snap = result.snapshot
    assert snap.status == SnapshotStatus.COMPLETED
    assert snap.last_phase == CyclePhase.REFLECT
    assert snap.counts["entities"] == 2
    assert snap.decision_strategy == "rules"

    verdicts = {r.entity_id: r.verdict for r in snap.screening}
    assert verdicts == {"c1": Verdict.NEEDS_DECISION, "c2": Verdict.SKIP}

    [action] = result.actions
    assert action.entity_id == "c1"
    assert action.action_type == ActionType.PAUSE
    assert action.status == ActionStatus.EXECUTED
    assert platform.calls == [{"op": "set_status", "entity_id": "c1", "status": "PAUSED"}]

    [summary] = inbox.summaries
    assert summary.executed[0]["entity_id"] == "c1"
    assert workspace.event_bus.history("cycle.completed")


async def test_second_cycle_respects_cooldown(workspace):
    platform = FakePlatform()
    orchestrator = _orchestrator(workspace, [_source()], platform)
    await orchestrator.run_cycle(TODAY)
    second = await orchestrator.run_cycle(TODAY)

    assert second.ok
    assert second.actions == []
    assert len(platform.calls) == 1


async def test_auto_actions_wait_without_platform(workspace):
    result = await _orchestrator(workspace, [_source()]).run_cycle(TODAY)

    assert result.ok
    [action] = result.actions
    assert action.status == ActionStatus.PENDING
    assert any("no platform executor configured" in e for e in result.snapshot.errors)


async def test_cycle_fails_when_no_source_answers(workspace):
    result = await _orchestrator(workspace, [_DownSource()]).run_cycle(TODAY)

    assert not result.ok
    snap = result.snapshot
    assert snap.status == SnapshotStatus.FAILED
    assert snap.last_phase is None
    assert "last completed phase: none" in snap.errors[0]
    assert workspace.event_bus.history("cycle.failed")


async def test_partial_source_failure_is_recorded(workspace):
    result = await _orchestrator(workspace, [_source(), _DownSource()], FakePlatform()).run_cycle(TODAY)
    assert result.ok
    assert any(e.startswith("source down") for e in result.snapshot.errors)


async def test_rescreen_correction_forces_decision(workspace):
    report = AuditReport()
    report.corrections.append(CorrectiveItem(
        report_id=report.id, kind=CorrectiveKind.RESCREEN, entity_id="c2", reason="missed earlier",
    ))
    await workspace.audits.save(report)

    result = await _orchestrator(workspace, [_source()], FakePlatform()).run_cycle(TODAY)

    record = next(r for r in result.snapshot.screening if r.entity_id == "c2")
    assert record.verdict == Verdict.NEEDS_DECISION
    assert record.reason == "rescreen: missed earlier"
    assert await workspace.audits.pending_corrections() == []


async def test_override_correction_requires_approval(workspace):
    report = AuditReport()
    report.corrections.append(CorrectiveItem(
        report_id=report.id, kind=CorrectiveKind.OVERRIDE_DECISION, entity_id="c1",
    ))
    await workspace.audits.save(report)

    platform = FakePlatform()
    result = await _orchestrator(workspace, [_source()], platform).run_cycle(TODAY)

    [action] = result.actions
    assert action.auto is False
    assert action.status == ActionStatus.PENDING
    assert platform.calls == []


async def test_samples_persisted_for_history(workspace):
    await _orchestrator(workspace, [_source()], FakePlatform()).run_cycle(TODAY)
    history = await workspace.samples.history("c1")
    assert len(history) >= 1


@pytest.mark.parametrize("days,expected", [(SEVERE_DAYS, 1), (QUIET_DAYS, 0)])
async def test_action_count_by_entity_health(workspace, days, expected):
    source = StaticMetricsSource(make_samples("c9", days, now=TODAY))
    result = await _orchestrator(workspace, [source], FakePlatform()).run_cycle(TODAY)
    assert len(result.actions) == expected


async def test_unexpected_error_fails_snapshot_and_propagates(workspace, monkeypatch):
    monkeypatch.setattr(
        workspace.samples, "append_many", AsyncMock(side_effect=RuntimeError("database is locked")),
    )
    with pytest.raises(RuntimeError):
        await _orchestrator(workspace, [_source()], FakePlatform()).run_cycle(TODAY)

    [snap] = await workspace.snapshots.recent()
    assert snap.status == SnapshotStatus.FAILED
    assert snap.last_phase is None
    assert "database is locked" in snap.errors[-1]
    assert workspace.event_bus.history("cycle.failed")


async def test_cancelled_cycle_records_last_phase(workspace):
    sink = _BlockingSink()
    orchestrator = Orchestrator(
        workspace,
        MetricsCollector([_source()], timeout=1.0),
        executor=ActionExecutor(workspace.actions, FakePlatform(), sleep=_no_sleep),
        notifier=Notifier([sink], timeout=30.0),
    )
    task = asyncio.create_task(orchestrator.run_cycle(TODAY))
    await asyncio.wait_for(sink.started.wait(), timeout=5.0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    [snap] = await workspace.snapshots.recent()
    assert snap.status == SnapshotStatus.FAILED
    assert snap.last_phase == CyclePhase.EXECUTE
    assert "cycle cancelled (last completed phase: execute)" in snap.errors
    assert workspace.event_bus.history("cycle.failed")


async def test_auto_action_left_pending_runs_once_platform_is_back(workspace):
    first = await _orchestrator(workspace, [_source()]).run_cycle(TODAY)
    [waiting] = first.actions
    assert waiting.status == ActionStatus.PENDING

    platform = FakePlatform()
    second = await _orchestrator(workspace, [_source()], platform).run_cycle(TODAY)

    assert second.ok
    assert (await workspace.actions.get(waiting.id)).status == ActionStatus.EXECUTED
    assert platform.calls == [{"op": "set_status", "entity_id": "c1", "status": "PAUSED"}]
    assert ActionStatus.EXECUTED in {a.status for a in second.actions}
