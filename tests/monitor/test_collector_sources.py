"""Tests for metrics sources and the collector."""

import asyncio
from datetime import date
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from adpilot.exceptions import MetricsUnavailableError
from adpilot.monitor.collector import MetricsCollector
from adpilot.monitor.sources import (
    DateRange,
    FetchScope,
    HttpMetricsSource,
    MetricsSource,
    RawSample,
    StaticMetricsSource,
)

from tests.conftest import NOW, make_samples


class _FailingSource(MetricsSource):
    name = "broken"

    async def fetch(self, scope, date_range):
        raise MetricsUnavailableError("connection refused")


class _SlowSource(MetricsSource):
    name = "slow"

    async def fetch(self, scope, date_range):
        await asyncio.sleep(10)
        return []


def _mock_client(response=None, error=None):
    instance = AsyncMock()
    if error is not None:
        instance.get = AsyncMock(side_effect=error)
    else:
        instance.get = AsyncMock(return_value=response)
    instance.__aenter__ = AsyncMock(return_value=instance)
    instance.__aexit__ = AsyncMock(return_value=False)
    return instance


def test_date_range_last_days():
    r = DateRange.last_days(3, today=date(2026, 10, 19))
    assert r.start == date(2026, 10, 17)
    assert r.end == date(2026, 10, 19)


async def test_static_source_filters_dates_and_accounts():
    source = StaticMetricsSource([
        RawSample(entity_id="c1", date="2026-10-19", account_id="a1"),
        RawSample(entity_id="c2", date="2026-10-19", account_id="a2"),
        RawSample(entity_id="c1", date="2026-09-01", account_id="a1"),
    ], name="replay")
    rows = await source.fetch(
        FetchScope(account_ids=["a1"]), DateRange.last_days(7, today=date(2026, 10, 19)),
    )
    assert [r.entity_id for r in rows] == ["c1"]
    assert rows[0].source == "replay"


async def test_http_source_parses_payload():
    response = MagicMock()
    response.json.return_value = {"samples": [
        {"entity_id": "c1", "date": "2026-10-19", "spend": 12.5},
        {"entity_id": "c2", "date": "2026-10-19", "spend": "not a number"},
        "garbage",
    ]}
    response.raise_for_status = MagicMock(return_value=None)

    with patch("adpilot.monitor.sources.httpx.AsyncClient") as MockClient:
        instance = _mock_client(response)
        MockClient.return_value = instance
        source = HttpMetricsSource("http://metrics.local/", name="api", token="t0k")
        rows = await source.fetch(FetchScope(account_ids=["a1"]), DateRange.last_days(7, today=date(2026, 10, 19)))

    assert len(rows) == 1
    assert rows[0].spend == 12.5
    assert rows[0].source == "api"
    args, kwargs = instance.get.call_args
    assert args[0] == "http://metrics.local/samples"
    assert ("account_id", "a1") in kwargs["params"]
    assert kwargs["headers"] == {"Authorization": "Bearer t0k"}


async def test_collector_counts_rows_a_source_dropped():
    response = MagicMock()
    response.json.return_value = [
        {"entity_id": "c1", "date": NOW.date().isoformat(), "spend": 40.0, "revenue": 80.0, "conversions": 2},
        {"entity_id": "c2", "date": NOW.date().isoformat(), "clicks": "many"},
        "garbage",
    ]
    response.raise_for_status = MagicMock(return_value=None)

    with patch("adpilot.monitor.sources.httpx.AsyncClient") as MockClient:
        MockClient.return_value = _mock_client(response)
        collector = MetricsCollector([HttpMetricsSource("http://metrics.local", name="api")])
        result = await collector.collect(NOW)

    assert result.sources_ok == ["api"]
    assert result.dropped == 2
    assert [m.entity_id for m in result.metrics] == ["c1"]


async def test_http_source_error_becomes_unavailable():
    with patch("adpilot.monitor.sources.httpx.AsyncClient") as MockClient:
        MockClient.return_value = _mock_client(error=httpx.ConnectError("refused"))
        source = HttpMetricsSource("http://metrics.local", name="api")
        with pytest.raises(MetricsUnavailableError, match="api"):
            await source.fetch(FetchScope(), DateRange.last_days(7, today=date(2026, 10, 19)))


async def test_collector_fuses_sources():
    primary = StaticMetricsSource(make_samples("c1", [(40.0, 80.0, 2)]), name="primary", priority=10)
    secondary = StaticMetricsSource(
        make_samples("c1", [(99.0, 99.0, 9)]) + make_samples("c2", [(20.0, 10.0, 1)]),
        name="secondary", priority=1,
    )
    collector = MetricsCollector([secondary, primary])
    result = await collector.collect(NOW)

    by_id = {m.entity_id: m for m in result.metrics}
    assert by_id["c1"].today_spend == 40.0
    assert by_id["c2"].today_spend == 20.0
    assert result.sources_ok == ["primary", "secondary"]


async def test_collector_skips_failing_source():
    good = StaticMetricsSource(make_samples("c1", [(40.0, 80.0, 2)]), name="good")
    collector = MetricsCollector([_FailingSource(), good])
    result = await collector.collect(NOW)
    assert [m.entity_id for m in result.metrics] == ["c1"]
    assert result.sources_failed == {"broken": "connection refused"}


async def test_collector_times_out_slow_source():
    good = StaticMetricsSource(make_samples("c1", [(40.0, 80.0, 2)]), name="good")
    collector = MetricsCollector([_SlowSource(), good], timeout=0.05)
    result = await collector.collect(NOW)
    assert "slow" in result.sources_failed
    assert len(result.metrics) == 1


async def test_collector_raises_when_every_source_fails():
    collector = MetricsCollector([_FailingSource()])
    with pytest.raises(MetricsUnavailableError, match="All metrics sources failed"):
        await collector.collect(NOW)


async def test_collector_without_sources():
    with pytest.raises(MetricsUnavailableError):
        await MetricsCollector([]).collect(NOW)
