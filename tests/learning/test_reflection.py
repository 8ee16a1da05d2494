"""Tests for reflection: rule judgement, reasoning path and once-only bookkeeping."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from adpilot.actions.model import Action, ActionProposal
from adpilot.learning.reflection import ReflectionEngine, RuleReflectionStrategy
from adpilot.types import ActionStatus, ActionType, Assessment, CampaignMetrics, Label, utcnow

from tests.conftest import MockLLMProvider


def _action(action_type=ActionType.PAUSE, roas=0.15, spend=120.0):
    return Action(
        entity_id="c1",
        action_type=action_type,
        label=Label.LOSS_SEVERE,
        metrics_before={"roas_3d": roas, "spend_3d": spend},
    )


def _after(roas):
    return CampaignMetrics(entity_id="c1", today_roas=roas)


# ── Rule judgement ─────────────────────────────────────────────


@pytest.mark.parametrize("before, after, expected", [
    # a pause on a real loss is right even if the numbers bounce back
    ((0.15, 120.0), 2.0, Assessment.CORRECT),
    ((0.9, 60.0), 1.6, Assessment.WRONG),
    ((0.9, 60.0), 1.0, Assessment.UNCLEAR),
    ((0.3, 20.0), 0.3, Assessment.UNCLEAR),
])
def test_pause_judgement(before, after, expected):
    verdict = RuleReflectionStrategy().judge(_action(ActionType.PAUSE, *before), _after(after))
    assert verdict.assessment == expected


@pytest.mark.parametrize("after, expected", [
    (1.7, Assessment.CORRECT),
    (1.0, Assessment.WRONG),
    (1.4, Assessment.UNCLEAR),
])
def test_budget_judgement(after, expected):
    verdict = RuleReflectionStrategy().judge(_action(ActionType.ADJUST_BUDGET, 2.0, 60.0), _after(after))
    assert verdict.assessment == expected


def test_budget_wrong_reports_drop():
    verdict = RuleReflectionStrategy().judge(_action(ActionType.ADJUST_BUDGET, 2.0, 60.0), _after(1.0))
    assert "50%" in verdict.reason


@pytest.mark.parametrize("after, expected", [
    (1.2, Assessment.CORRECT),
    (0.3, Assessment.WRONG),
    (0.7, Assessment.UNCLEAR),
])
def test_resume_judgement(after, expected):
    verdict = RuleReflectionStrategy().judge(_action(ActionType.RESUME, 0.0, 0.0), _after(after))
    assert verdict.assessment == expected


def test_missing_after_metrics_is_unclear():
    verdict = RuleReflectionStrategy().judge(_action(), None)
    assert verdict.assessment == Assessment.UNCLEAR


# ── Engine ─────────────────────────────────────────────────────


async def _executed(workspace, skill_name="pause-severe-loss"):
    skill = await workspace.skills.find_by_name(skill_name)
    action = await workspace.actions.create(ActionProposal(
        entity_id="c1",
        action_type="pause",
        auto=True,
        label=Label.LOSS_SEVERE,
        skill_id=skill.id,
        metrics_before={"roas_3d": 0.15, "spend_3d": 120.0},
    ))
    await workspace.actions.transition(action.id, ActionStatus.EXECUTING)
    return await workspace.actions.transition(action.id, ActionStatus.EXECUTED), skill


def _engine(workspace, llm=None):
    return ReflectionEngine(workspace.actions, workspace.reflections, workspace.librarian, llm=llm)


async def test_reflect_updates_skill_and_knowledge(workspace):
    action, skill = await _executed(workspace)
    reflection = await _engine(workspace).reflect(action, _after(0.1))

    assert reflection.assessment == Assessment.CORRECT
    assert reflection.strategy == "rules"
    assert (await workspace.skills.get(skill.id)).stats.correct == 1
    assert await workspace.knowledge.get("lesson:pause:loss_severe:correct") is not None


async def test_reflect_is_once_only(workspace):
    action, skill = await _executed(workspace)
    engine = _engine(workspace)
    assert await engine.reflect(action, _after(0.1)) is not None
    assert await engine.reflect(action, _after(0.1)) is None

    assert await workspace.reflections.count() == 1
    assert (await workspace.skills.get(skill.id)).stats.correct == 1


async def test_failed_save_releases_the_claim(workspace, monkeypatch):
    action, skill = await _executed(workspace)
    engine = _engine(workspace)
    monkeypatch.setattr(workspace.reflections, "save", AsyncMock(side_effect=RuntimeError("disk full")))
    with pytest.raises(RuntimeError):
        await engine.reflect(action, _after(0.1))
    assert not (await workspace.actions.get(action.id)).reflected
    assert (await workspace.skills.get(skill.id)).stats.correct == 0

    monkeypatch.undo()
    reflection = await engine.reflect(action, _after(0.1))
    assert reflection is not None
    assert await workspace.reflections.count() == 1


async def test_assess_is_pure(workspace):
    action, skill = await _executed(workspace)
    reflection = await _engine(workspace).assess(action, _after(0.1))
    assert reflection.assessment == Assessment.CORRECT
    assert await workspace.reflections.count() == 0
    assert not (await workspace.actions.get(action.id)).reflected


async def test_reflect_due_respects_window(workspace):
    action, _ = await _executed(workspace)
    engine = _engine(workspace)
    metrics = {"c1": _after(0.1)}

    assert await engine.reflect_due(metrics, now=utcnow()) == []
    done = await engine.reflect_due(metrics, now=utcnow() + timedelta(hours=3))
    assert [r.action_id for r in done] == [action.id]
    assert await engine.reflect_due(metrics, now=utcnow() + timedelta(hours=4)) == []


async def test_reasoning_service_judges_first(workspace):
    action, skill = await _executed(workspace)
    llm = MockLLMProvider(['{"assessment": "wrong", "reason": "it recovered", "lesson": "wait a day"}'])
    reflection = await _engine(workspace, llm).reflect(action, _after(0.1))

    assert reflection.strategy == "llm"
    assert reflection.assessment == Assessment.WRONG
    updated = await workspace.skills.get(skill.id)
    assert updated.stats.wrong == 1
    assert updated.learned_notes[-1] == "wait a day"


async def test_bad_reasoning_reply_falls_back(workspace):
    action, _ = await _executed(workspace)
    llm = MockLLMProvider(['{"assessment": "maybe"}'])
    reflection = await _engine(workspace, llm).reflect(action, _after(0.1))
    assert reflection.strategy == "rules"
    assert reflection.assessment == Assessment.CORRECT


async def test_reflection_stats(workspace):
    action, _ = await _executed(workspace)
    engine = _engine(workspace)
    await engine.reflect(action, _after(0.1))
    stats = await engine.reflection_stats(days=1)
    assert stats.to_dict() == {"total": 1, "correct": 1, "wrong": 0, "unclear": 0, "accuracy": 1.0}
