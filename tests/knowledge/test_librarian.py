"""Tests for the librarian: outcomes, knowledge validation, promotion and decay."""

from datetime import timedelta

import pytest

from adpilot.actions.model import Action
from adpilot.audit.model import AuditReport, Finding, FindingType
from adpilot.knowledge.model import KnowledgeCategory, KnowledgeEntry
from adpilot.skills.schema import ExperienceSkill
from adpilot.types import ActionStatus, ActionType, Assessment, Label, utcnow


async def test_record_triggers_bumps_stats(workspace):
    skill = await workspace.skills.find_by_name("cold-start")
    await workspace.librarian.record_triggers({skill.id: 3, "unused": 0})
    refreshed = await workspace.skills.get(skill.id)
    assert refreshed.stats.triggered == 3
    assert refreshed.stats.last_triggered_at is not None


async def test_record_outcome_counts_and_learns(workspace):
    skill = await workspace.skills.find_by_name("pause-mild-loss")
    action = Action(entity_id="c1", action_type=ActionType.PAUSE, skill_id=skill.id,
                    label=Label.LOSS_MILD, status=ActionStatus.EXECUTED)

    entry = await workspace.librarian.record_outcome(action, Assessment.WRONG, "paused too early")
    refreshed = await workspace.skills.get(skill.id)
    assert refreshed.stats.wrong == 1
    assert refreshed.learned_notes[-1] == "paused too early"
    assert entry.key == "lesson:pause:loss_mild:wrong"
    assert entry.category == KnowledgeCategory.LESSON

    assert await workspace.librarian.record_outcome(action, Assessment.UNCLEAR, "") is None
    assert (await workspace.skills.get(skill.id)).stats.unclear == 1


async def test_learn_validates_existing_entry(workspace):
    lib = workspace.librarian
    first = await lib.learn("obs:x", KnowledgeCategory.OBSERVATION, "x happens", confidence=0.5)
    second = await lib.learn("obs:x", KnowledgeCategory.OBSERVATION, "x happens again")
    assert first.validations == 1
    assert second.validations == 2
    assert second.confidence == 0.55
    assert second.content == "x happens again"
    assert await workspace.knowledge.count() == 1


async def test_promotion_registers_experience_skill(workspace):
    lib = workspace.librarian
    for _ in range(5):
        entry = await lib.learn(
            "lesson:pause:loss_severe:correct", KnowledgeCategory.LESSON,
            "Pausing severe losers stops the bleed", metadata={"assessment": "correct"},
        )

    assert entry.high_priority
    assert entry.confidence >= 0.9
    experiences = await workspace.skills.list_skills(kind="experience")
    assert [s.name for s in experiences] == ["experience:lesson:pause:loss_severe:correct"]
    assert isinstance(experiences[0], ExperienceSkill)
    assert workspace.event_bus.history("knowledge.promoted")

    # A sixth validation does not register a second skill
    await lib.learn("lesson:pause:loss_severe:correct", KnowledgeCategory.LESSON, "again")
    assert len(await workspace.skills.list_skills(kind="experience")) == 1

    context = await lib.decision_context()
    assert "[experience" in context
    assert "Pausing severe losers stops the bleed" in context


async def test_non_lesson_promotion_has_no_skill(workspace):
    for _ in range(5):
        await workspace.librarian.learn("audit:x:c1", KnowledgeCategory.AUDIT, "missed")
    assert await workspace.skills.list_skills(kind="experience") == []


async def test_decay_lowers_then_archives(workspace):
    now = utcnow()
    await workspace.knowledge.save(KnowledgeEntry(
        key="obs:old", content="old fact", confidence=0.35,
        last_validated_at=now - timedelta(days=31),
    ))

    report = await workspace.librarian.decay(now)
    assert (report.examined, report.decayed, report.archived) == (1, 1, 0)
    entry = await workspace.knowledge.get("obs:old")
    assert entry.confidence == 0.25
    assert not entry.archived

    report = await workspace.librarian.decay(now)
    assert report.archived == 1
    assert (await workspace.knowledge.get("obs:old")).archived

    # Archived entries are left alone
    assert (await workspace.librarian.decay(now)).examined == 0


async def test_fresh_entries_do_not_decay(workspace):
    await workspace.librarian.learn("obs:new", KnowledgeCategory.OBSERVATION, "new fact")
    report = await workspace.librarian.decay()
    assert report.examined == 0


async def test_archiving_lesson_archives_its_experience(workspace):
    lib = workspace.librarian
    key = "lesson:adjust_budget:high_potential:correct"
    for _ in range(5):
        entry = await lib.learn(key, KnowledgeCategory.LESSON, "scale winners")
    now = utcnow()
    await workspace.knowledge.save(entry.model_copy(update={
        "confidence": 0.2, "last_validated_at": now - timedelta(days=40),
    }))

    await lib.decay(now)
    assert await workspace.skills.list_skills(kind="experience") == []
    archived = await workspace.skills.list_skills(kind="experience", active_only=False)
    assert archived[0].archived


async def test_learn_preferences_needs_repeats(workspace):
    rejected = [
        Action(entity_id=f"c{i}", action_type=ActionType.PAUSE, label=Label.LOSS_MILD,
               status=ActionStatus.REJECTED, review_note="seasonal dip")
        for i in range(2)
    ] + [Action(entity_id="c9", action_type=ActionType.RESUME, status=ActionStatus.REJECTED)]

    entries = await workspace.librarian.learn_preferences(rejected)
    assert [e.key for e in entries] == ["preference:reject:pause:loss_mild"]
    assert "seasonal dip" in entries[0].content


async def test_ingest_audit_notes_skill(workspace):
    skill = await workspace.skills.find_by_name("cold-start")
    report = AuditReport(findings=[Finding(
        type=FindingType.SCREENER_MISS, severity=4, entity_id="c1",
        skill_id=skill.id, message="let a loser through",
    )])
    assert await workspace.librarian.ingest_audit(report) == 1

    entry = await workspace.knowledge.get("audit:screener_miss:c1")
    assert entry.category == KnowledgeCategory.AUDIT
    assert entry.confidence == pytest.approx(0.7)
    refreshed = await workspace.skills.get(skill.id)
    assert refreshed.learned_notes[-1] == "audit: let a loser through"


async def test_skill_report_lists_all(workspace):
    rows = await workspace.librarian.skill_report()
    names = {r["name"] for r in rows}
    assert {"cold-start", "pause-severe-loss", "tuning"} <= names
    assert all(r["accuracy"] is None for r in rows)
