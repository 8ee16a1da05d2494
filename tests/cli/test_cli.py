"""Tests for the adpilot CLI against a temporary workspace."""

import pytest
from rich.console import Console
from typer.testing import CliRunner

from adpilot import __version__
from adpilot.actions.model import ActionProposal
from adpilot.cli.context import PilotContext, run_async
from adpilot.cli.main import app
from adpilot.config import PilotSettings
from adpilot.monitor.sources import StaticMetricsSource
from adpilot.types import utcnow

from tests.conftest import make_samples

runner = CliRunner()


@pytest.fixture
def ctx(tmp_path, monkeypatch):
    monkeypatch.setattr("adpilot.cli.main.console", Console(width=200))
    cfg = PilotSettings(
        anthropic_api_key="",
        workspace_dir=tmp_path,
        db_path=tmp_path / "adpilot.db",
    )
    source = StaticMetricsSource(make_samples("c1", [(40.0, 6.0, 1)] * 3, now=utcnow()))
    context = PilotContext(config=cfg, sources=[source], platform=None, sinks=[])
    PilotContext._instance = context
    yield context
    PilotContext.reset()


def _pending_action(ctx, entity_id="c7"):
    async def _create():
        ws = await ctx.ensure_workspace()
        return await ws.actions.create(ActionProposal(entity_id=entity_id, action_type="pause", reason="losing"))
    return run_async(_create())


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_run_cycle(ctx):
    result = runner.invoke(app, ["run"])
    assert result.exit_code == 0, result.output
    assert "completed" in result.output

    listed = runner.invoke(app, ["snapshots"])
    assert listed.exit_code == 0
    assert "completed" in listed.output


def test_pending_and_approve(ctx):
    action = _pending_action(ctx)

    listed = runner.invoke(app, ["pending"])
    assert listed.exit_code == 0
    assert action.id in listed.output

    approved = runner.invoke(app, ["approve", action.id, "--no-execute", "-r", "ops"])
    assert approved.exit_code == 0, approved.output
    assert "approved" in approved.output

    assert "Nothing waiting" in runner.invoke(app, ["pending"]).output


def test_reject_twice_fails(ctx):
    action = _pending_action(ctx)
    assert runner.invoke(app, ["reject", action.id, "-m", "seasonal"]).exit_code == 0
    again = runner.invoke(app, ["reject", action.id])
    assert again.exit_code == 1


def test_skills_and_knowledge(ctx):
    skills = runner.invoke(app, ["skills"])
    assert skills.exit_code == 0
    assert "cold-start" in skills.output

    knowledge = runner.invoke(app, ["knowledge"])
    assert knowledge.exit_code == 0
    assert "No knowledge yet" in knowledge.output


def test_decay_and_evolve(ctx):
    decay = runner.invoke(app, ["decay"])
    assert decay.exit_code == 0
    assert "0 stale entries" in decay.output

    evolve = runner.invoke(app, ["evolve"])
    assert evolve.exit_code == 0
    assert "Reviewed" in evolve.output


def test_audit(ctx):
    result = runner.invoke(app, ["audit"])
    assert result.exit_code == 0, result.output
    assert "screener" in result.output
