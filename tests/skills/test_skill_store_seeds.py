"""Tests for the versioned skill store and seed bootstrap."""

import pytest

from adpilot.exceptions import SkillNotFoundError
from adpilot.skills.schema import ConfigSkill, GoalSkill, RuleSkill
from adpilot.skills.seeds import bootstrap, seed_skills
from adpilot.skills.store import SkillStore
from adpilot.tuning import TuningConfig


@pytest.fixture
def store(migrated_db):
    return SkillStore(migrated_db)


async def test_register_assigns_registration_order(store):
    a = await store.register(GoalSkill(name="a"))
    b = await store.register(GoalSkill(name="b"))
    assert (a.order, b.order) == (1, 2)
    assert await store.count() == 2


async def test_get_unknown_raises(store):
    with pytest.raises(SkillNotFoundError):
        await store.get("missing")


async def test_update_bumps_version_and_keeps_history(store):
    skill = await store.register(GoalSkill(name="shoes", max_daily_budget=100))

    def _raise_cap(s):
        s.max_daily_budget = 150

    updated = await store.update(skill.id, _raise_cap, reason="raise cap")
    assert updated.version == 2
    assert updated.order == skill.order

    fetched = await store.get(skill.id)
    assert fetched.max_daily_budget == 150

    history = await store.history(skill.id)
    assert [h["version"] for h in history] == [1, 2]
    assert history[0]["skill"].max_daily_budget == 100
    assert history[1]["reason"] == "raise cap"


async def test_stats_only_update_keeps_version_and_history(store):
    skill = await store.register(GoalSkill(name="shoes"))

    def _count(s):
        s.stats.triggered += 3

    updated = await store.update(skill.id, _count, reason="triggered x3")
    assert updated.version == 1
    assert (await store.get(skill.id)).stats.triggered == 3
    assert [h["version"] for h in await store.history(skill.id)] == [1]


async def test_list_skills_filters_inactive(store):
    skill = await store.register(GoalSkill(name="g"))
    await store.update(skill.id, lambda s: s.model_copy(update={"enabled": False}), reason="off")
    assert await store.list_skills(kind="goal") == []
    assert len(await store.list_skills(kind="goal", active_only=False)) == 1


async def test_tuning_defaults_without_config_skill(store):
    assert await store.tuning() == TuningConfig()


async def test_bootstrap_is_idempotent(store):
    added = await bootstrap(store)
    assert added == len(seed_skills())
    assert await bootstrap(store) == 0
    assert await store.count() == len(seed_skills())


async def test_seeded_rules_in_resolution_order(store):
    await bootstrap(store)
    verdict_rules = await store.rules("verdict")
    assert verdict_rules[0].name == "cold-start"
    assert [r.priority for r in verdict_rules] == sorted((r.priority for r in verdict_rules), reverse=True)

    action_rules = await store.rules("action")
    assert action_rules[0].name == "pause-severe-loss"
    assert all(isinstance(r, RuleSkill) for r in action_rules)


async def test_seeded_config_skill_is_the_tuning(store):
    await bootstrap(store)
    config = await store.find_by_name("tuning")
    assert isinstance(config, ConfigSkill)
    assert (await store.tuning()).classifier.loss_severe_roas == 0.2
