"""Shared test fixtures — fake reasoning service, fake platform, temp workspaces."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from adpilot.actions.platform import PlatformExecutor
from adpilot.exceptions import PlatformError
from adpilot.llm.base import BaseLLMProvider, LLMResponse
from adpilot.migrations.runner import apply_migrations
from adpilot.monitor.analyzer import build_metrics
from adpilot.monitor.sources import RawSample
from adpilot.types import CampaignMetrics
from adpilot.workspace import Workspace

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class MockLLMProvider(BaseLLMProvider):
    """Reasoning service that returns canned responses. No API calls."""

    def __init__(self, responses: list[str] | None = None, error: Exception | None = None):
        self._responses = responses or []
        self._error = error
        self._call_count = 0
        self.calls: list[dict] = []

    async def complete(self, messages, system=None, max_tokens=2048):
        self.calls.append({"messages": messages, "system": system, "max_tokens": max_tokens})
        if self._error is not None:
            raise self._error
        if self._call_count < len(self._responses):
            content = self._responses[self._call_count]
            self._call_count += 1
        else:
            content = "{}"
        return LLMResponse(content=content, stop_reason="end_turn", input_tokens=10, output_tokens=5)


class FakePlatform(PlatformExecutor):
    """Platform that fails the first `fail_times` calls with numbered errors."""

    def __init__(self, fail_times: int = 0):
        self.fail_times = fail_times
        self.calls: list[dict] = []

    async def _call(self, call: dict) -> dict:
        self.calls.append(call)
        if len(self.calls) <= self.fail_times:
            raise PlatformError(f"platform error #{len(self.calls)}")
        return {"code": 0}

    async def set_status(self, entity_id, status, account_id=""):
        return await self._call({"op": "set_status", "entity_id": entity_id, "status": status})

    async def set_budget(self, entity_id, amount, account_id=""):
        return await self._call({"op": "set_budget", "entity_id": entity_id, "amount": amount})


def make_samples(
    entity_id: str,
    days: list[tuple[float, float, int]],
    now: datetime = NOW,
    **identity,
) -> list[RawSample]:
    """(spend, revenue, conversions) per day, oldest first, the last one being today."""
    today = now.date()
    samples = []
    for i, (spend, revenue, conversions) in enumerate(days):
        day = today - timedelta(days=len(days) - 1 - i)
        samples.append(RawSample(
            entity_id=entity_id,
            date=day.isoformat(),
            spend=spend,
            revenue=revenue,
            conversions=conversions,
            **identity,
        ))
    return samples


@pytest.fixture
def mock_llm():
    return MockLLMProvider()


@pytest.fixture
def fake_platform():
    return FakePlatform()


@pytest.fixture
def make_metrics():
    def _factory(
        entity_id: str = "c1",
        days: list[tuple[float, float, int]] | None = None,
        now: datetime = NOW,
        **identity,
    ) -> CampaignMetrics:
        samples = make_samples(entity_id, days or [(40.0, 80.0, 2)] * 3, now=now, **identity)
        return build_metrics(samples, as_of=now)[0]
    return _factory


@pytest.fixture
def db_path():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        path = f.name
    yield path
    os.unlink(path)


@pytest_asyncio.fixture
async def migrated_db(db_path):
    await apply_migrations(db_path)
    return db_path


@pytest_asyncio.fixture
async def workspace(db_path):
    ws = Workspace(db_path)
    await ws.initialize()
    return ws
