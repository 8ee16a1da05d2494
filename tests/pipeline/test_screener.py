"""Tests for the screener: guardrail rules first, default table after."""

from adpilot.monitor.benchmarks import Benchmarks, RoasBenchmark
from adpilot.monitor.signal import build_signal
from adpilot.monitor.timeseries import Sample
from adpilot.pipeline.screener import Screener
from adpilot.skills.seeds import screening_rules
from adpilot.tuning import TuningConfig
from adpilot.types import Verdict


def _signal(make_metrics, days, history=None, **identity):
    metrics = make_metrics(days=days, **identity)
    return build_signal(metrics, history or [], [metrics], TuningConfig())


def test_cold_start_is_skipped(make_metrics):
    signal = _signal(make_metrics, [(1.0, 0.0, 0)] * 3)
    result = Screener().screen_one(signal, screening_rules())
    assert result.verdict == Verdict.SKIP
    assert result.reason == "[cold-start] only $3.00 spent in 3 days"
    assert result.skill_id is not None


def test_severe_loss_needs_decision(make_metrics):
    signal = _signal(make_metrics, [(40.0, 6.0, 1)] * 3)
    result = Screener().screen_one(signal, screening_rules())
    assert result.verdict == Verdict.NEEDS_DECISION
    assert result.urgency == 5
    assert result.reason.startswith("[severe-loss-guard]")


def test_first_matching_rule_wins(make_metrics):
    # Matches both severe-loss-guard and mild-loss-check; the higher priority decides
    rules = screening_rules()
    signal = _signal(make_metrics, [(40.0, 6.0, 1)] * 3)
    result = Screener().screen_one(signal, list(reversed(rules)))
    assert result.reason.startswith("[severe-loss-guard]")


def test_default_table_watches_steady_entities(make_metrics):
    signal = _signal(make_metrics, [(20.0, 30.0, 1)] * 3)
    result = Screener().screen_one(signal, screening_rules())
    assert result.verdict == Verdict.WATCH
    assert result.skill_id is None


def test_default_table_skips_thin_data(make_metrics):
    signal = _signal(make_metrics, [(5.0, 6.0, 1)] * 3)
    result = Screener().screen_one(signal, screening_rules())
    assert result.verdict == Verdict.SKIP
    assert result.reason == "insufficient data at low spend"


def _below_benchmark(make_metrics, history):
    signal = _signal(make_metrics, [(20.0, 20.0, 1)] * 3, history=history)
    benchmarks = Benchmarks(overall=RoasBenchmark(p25=2.0, p50=2.5, p75=3.0, count=5))
    return Screener().screen_one(signal, screening_rules(), benchmarks)


def test_below_benchmark_watch(make_metrics):
    result = _below_benchmark(make_metrics, [])
    assert result.verdict == Verdict.WATCH
    assert result.reason.startswith("[below-benchmark-watch]")


def test_watch_escalates_on_break_from_own_history(make_metrics):
    history = [
        Sample(entity_id="c1", spend=20.0, spend_rate=2.0, roas=r)
        for r in (3.0, 3.1, 2.9, 3.0, 3.0)
    ]
    result = _below_benchmark(make_metrics, history)
    assert result.verdict == Verdict.NEEDS_DECISION
    assert result.urgency == 3
    assert "sd from its own history" in result.reason


def test_forced_rescreen(make_metrics):
    signal = _signal(make_metrics, [(1.0, 0.0, 0)] * 3)
    result = Screener().screen_one(signal, screening_rules(), forced_reason="audit miss")
    assert result.verdict == Verdict.NEEDS_DECISION
    assert result.forced is True
    assert result.reason == "rescreen: audit miss"


def test_screen_batch_excludes_open_entities(make_metrics):
    a = _signal(make_metrics, [(40.0, 6.0, 1)] * 3)
    b = build_signal(make_metrics("c2", [(1.0, 0.0, 0)] * 3), [], [], TuningConfig())
    report = Screener().screen([a, b], screening_rules(), excluded_ids={"c1"})

    assert report.excluded == ["c1"]
    assert [r.entity_id for r in report.results] == ["c2"]
    assert report.counts() == {"needs_decision": 0, "watch": 0, "skip": 1}
    assert sum(report.skill_hits().values()) == 1
