"""Tests for the evolution engine."""

from adpilot.actions.model import ActionProposal
from adpilot.learning.evolution import EvolutionEngine
from adpilot.learning.store import Reflection
from adpilot.knowledge.model import KnowledgeCategory
from adpilot.skills.schema import RuleSkill
from adpilot.types import ActionStatus, ActionType, Assessment, utcnow

from tests.conftest import MockLLMProvider


def _engine(workspace, llm=None):
    return EvolutionEngine(
        workspace.skills, workspace.actions, workspace.reflections, workspace.librarian, llm=llm,
    )


async def _set_stats(workspace, name, correct, wrong):
    skill = await workspace.skills.find_by_name(name)

    def _stats(s):
        s.stats.correct = correct
        s.stats.wrong = wrong

    return await workspace.skills.update(skill.id, _stats, reason="test")


async def _reflections(workspace, assessments, action_type=ActionType.PAUSE):
    for i, assessment in enumerate(assessments):
        await workspace.reflections.save(Reflection(
            action_id=f"a{i}", entity_id=f"c{i}", action_type=action_type,
            assessment=assessment, reason="r", lesson="l",
        ))


async def test_inaccurate_skill_disabled_and_stays_disabled(workspace):
    skill = await _set_stats(workspace, "pause-mild-loss", correct=1, wrong=4)
    report = await _engine(workspace).run()

    assert report.disabled == ["pause-mild-loss"]
    disabled = await workspace.skills.get(skill.id)
    assert disabled.enabled is False
    assert (await workspace.knowledge.get(f"evolution:{skill.id}:disabled")).category == KnowledgeCategory.EVOLUTION

    # A later run never turns it back on
    await _set_stats(workspace, "pause-mild-loss", correct=50, wrong=0)
    again = await _engine(workspace).run()
    assert again.disabled == []
    assert (await workspace.skills.get(skill.id)).enabled is False


async def test_mediocre_auto_skill_demoted(workspace):
    skill = await _set_stats(workspace, "pause-severe-loss", correct=6, wrong=4)
    report = await _engine(workspace).run()

    assert report.demoted == ["pause-severe-loss"]
    demoted = await workspace.skills.get(skill.id)
    assert isinstance(demoted, RuleSkill)
    assert demoted.effect.auto is False
    assert demoted.enabled is True


async def test_too_few_outcomes_not_reviewed(workspace):
    await _set_stats(workspace, "pause-mild-loss", correct=0, wrong=2)
    report = await _engine(workspace).run()
    assert report.skills_reviewed == 0
    assert report.disabled == []


async def test_action_type_error_rate_proposal(workspace):
    await _reflections(workspace, [Assessment.WRONG, Assessment.WRONG, Assessment.CORRECT, Assessment.UNCLEAR])
    report = await _engine(workspace).run()

    assert report.type_error_rates == {"pause": 0.667}
    assert "proposal:type-error:pause" in report.proposals
    entry = await workspace.knowledge.get("proposal:type-error:pause")
    assert entry.category == KnowledgeCategory.PROPOSAL


async def test_rejection_rate_proposal(workspace):
    for i in range(6):
        action = await workspace.actions.create(ActionProposal(entity_id=f"c{i}", action_type="pause"))
        target = ActionStatus.REJECTED if i % 2 else ActionStatus.APPROVED
        await workspace.actions.transition(action.id, target, reviewed_at=utcnow())

    report = await _engine(workspace).run()
    assert report.rejection_rate == 0.5
    assert "proposal:rejection-rate" in report.proposals


async def test_reasoning_analysis_of_wrong_calls(workspace):
    await _reflections(workspace, [Assessment.WRONG] * 3)
    llm = MockLLMProvider(['{"suggestions": [{"key": "weekend", "suggestion": "Hold pauses on weekends"}]}'])
    report = await _engine(workspace, llm).run()

    assert "proposal:llm:weekend" in report.proposals
    assert len(llm.calls) == 1


async def test_reasoning_failure_does_not_break_run(workspace):
    await _reflections(workspace, [Assessment.WRONG] * 3)
    llm = MockLLMProvider(["not json at all"])
    report = await _engine(workspace, llm).run()
    assert not any(p.startswith("proposal:llm:") for p in report.proposals)
