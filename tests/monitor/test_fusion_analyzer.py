"""Tests for multi-source fusion and metrics aggregation."""

from datetime import datetime, timezone

from adpilot.monitor.analyzer import DAILY_WINDOW, build_metrics, reporting_clock
from adpilot.monitor.fusion import fuse, is_valid
from adpilot.monitor.sources import RawSample

from tests.conftest import NOW, make_samples


def test_is_valid():
    assert is_valid(RawSample(entity_id="c1", date="2026-10-19", spend=1.0))
    assert not is_valid(RawSample(entity_id="", date="2026-10-19"))
    assert not is_valid(RawSample(entity_id="c1", date="2026-13-01"))
    assert not is_valid(RawSample(entity_id="c1", date="2026-10-19", spend=-1.0))


def test_higher_priority_wins_and_lower_fills_gaps():
    high = RawSample(entity_id="c1", date="2026-10-19", spend=10.0, source="api")
    low = RawSample(
        entity_id="c1", date="2026-10-19", spend=99.0, revenue=30.0,
        entity_name="Spring sale", source="export",
    )
    result = fuse([(1, [low]), (5, [high])])
    assert len(result.samples) == 1
    merged = result.samples[0]
    assert merged.spend == 10.0
    assert merged.revenue == 30.0
    assert merged.entity_name == "Spring sale"
    assert result.sources == ["api", "export"]


def test_malformed_rows_dropped_and_counted():
    rows = [
        RawSample(entity_id="", date="2026-10-19"),
        RawSample(entity_id="c1", date="yesterday"),
        RawSample(entity_id="c1", date="2026-10-19", revenue=-5.0),
        RawSample(entity_id="c1", date="2026-10-19", spend=5.0),
    ]
    result = fuse([(0, rows)])
    assert result.dropped == 3
    assert len(result.samples) == 1


def test_reporting_clock_applies_offset():
    day, hour = reporting_clock(datetime(2026, 10, 19, 22, 30, tzinfo=timezone.utc), utc_offset_hours=8)
    assert day.isoformat() == "2026-10-20"
    assert hour == 6.5


def test_build_metrics_windows():
    samples = make_samples("c1", [(10.0, 20.0, 1), (20.0, 10.0, 0), (40.0, 80.0, 2)])
    [m] = build_metrics(samples, as_of=NOW)

    assert m.hour == 12.0
    assert m.today_spend == 40.0
    assert m.today_roas == 2.0
    assert m.yesterday_roas == 0.5
    assert m.day_before_roas == 2.0
    assert m.spend_trend_pct == 100.0
    assert m.roas_trend_pct == -75.0
    assert m.total_spend_3d == 70.0
    assert m.total_conversions_3d == 3
    assert m.avg_roas_3d == round(110 / 70, 4)
    assert m.estimated_daily_spend == 80.0
    assert [p.date for p in m.daily] == sorted(p.date for p in m.daily)


def test_daily_series_capped_at_window():
    samples = make_samples("c1", [(10.0, 10.0, 1)] * 10)
    [m] = build_metrics(samples, as_of=NOW)
    assert len(m.daily) == DAILY_WINDOW


def test_missing_days_count_as_zero():
    samples = make_samples("c1", [(40.0, 80.0, 2)])
    [m] = build_metrics(samples, as_of=NOW)
    assert m.yesterday_spend == 0.0
    assert m.roas_trend_pct == 0.0
    assert m.total_spend_3d == 40.0


def test_identity_from_latest_row_carrying_it():
    samples = make_samples("c1", [(10.0, 10.0, 1)] * 2)
    samples[0] = samples[0].model_copy(update={"entity_name": "Old name", "account_id": "a1"})
    samples[1] = samples[1].model_copy(update={"entity_name": "New name"})
    [m] = build_metrics(samples, as_of=NOW)
    assert m.entity_name == "New name"
    assert m.account_id == "a1"
    assert m.status == "ACTIVE"
