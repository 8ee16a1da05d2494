"""Tests for the approval desk."""

from datetime import timedelta

import pytest

from adpilot.actions.approval import ApprovalDesk
from adpilot.actions.executor import ActionExecutor
from adpilot.actions.model import ActionProposal
from adpilot.actions.store import ActionStore
from adpilot.exceptions import ActionStateError
from adpilot.types import ActionStatus, utcnow

from tests.conftest import FakePlatform


@pytest.fixture
def store(migrated_db):
    return ActionStore(migrated_db)


@pytest.fixture
def platform():
    return FakePlatform()


@pytest.fixture
def desk(store, platform):
    return ApprovalDesk(store, ActionExecutor(store, platform), ttl_hours=24)


async def _queue(store, entity_id="c1", auto=False):
    return await store.create(ActionProposal(entity_id=entity_id, action_type="pause", auto=auto))


async def test_pending_lists_manual_actions_only(store, desk):
    manual = await _queue(store, "c1")
    await _queue(store, "c2", auto=True)
    assert [a.id for a in await desk.pending()] == [manual.id]


async def test_approve_records_reviewer(store, desk, platform):
    action = await _queue(store)
    approved = await desk.approve(action.id, reviewer="ops", note="looks right")
    assert approved.status == ActionStatus.APPROVED
    assert approved.reviewer == "ops"
    assert approved.reviewed_at is not None
    assert platform.calls == []


async def test_approve_and_execute(store, desk, platform):
    action = await _queue(store)
    executed = await desk.approve(action.id, reviewer="ops", execute=True)
    assert executed.status == ActionStatus.EXECUTED
    assert len(platform.calls) == 1


async def test_reject(store, desk):
    action = await _queue(store)
    rejected = await desk.reject(action.id, reviewer="ops", note="seasonal dip")
    assert rejected.status == ActionStatus.REJECTED
    assert rejected.review_note == "seasonal dip"


async def test_cannot_review_twice(store, desk):
    action = await _queue(store)
    await desk.reject(action.id)
    with pytest.raises(ActionStateError):
        await desk.approve(action.id)


async def test_expire_stale(store, desk):
    action = await _queue(store)
    assert await desk.expire_stale() == []
    expired = await desk.expire_stale(now=utcnow() + timedelta(hours=25))
    assert [a.id for a in expired] == [action.id]
    assert (await store.get(action.id)).status == ActionStatus.EXPIRED


async def test_failed_lists_failures(store, desk):
    action = await _queue(store, auto=True)
    await store.transition(action.id, ActionStatus.EXECUTING)
    await store.transition(action.id, ActionStatus.FAILED, last_error="boom")
    assert [a.last_error for a in await desk.failed()] == ["boom"]


async def test_expire_stale_leaves_executing_actions(store, desk):
    action = await _queue(store, auto=True)
    await store.transition(action.id, ActionStatus.EXECUTING)
    assert await desk.expire_stale(now=utcnow() + timedelta(hours=25)) == []
    assert (await store.get(action.id)).status == ActionStatus.EXECUTING


async def test_interrupted_execution_fails_after_ttl(store, desk):
    action = await _queue(store, auto=True)
    await store.transition(action.id, ActionStatus.EXECUTING)
    assert await desk.fail_interrupted() == []

    failed = await desk.fail_interrupted(now=utcnow() + timedelta(hours=25))
    assert [a.id for a in failed] == [action.id]
    assert failed[0].status == ActionStatus.FAILED
    assert "interrupted" in failed[0].last_error
    assert [a.id for a in await desk.failed()] == [action.id]
