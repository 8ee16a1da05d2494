"""Entity signal — everything the screener needs to know about one entity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from adpilot.monitor.anomaly import Anomaly, detect_anomalies, max_severity
from adpilot.monitor.benchmarks import Benchmarks
from adpilot.monitor.quality import QualityScore, assess_metrics
from adpilot.monitor.timeseries import Sample
from adpilot.monitor.trend import TrendResult, analyze_trend
from adpilot.tuning import TuningConfig
from adpilot.types import CampaignMetrics


@dataclass
class EntitySignal:
    metrics: CampaignMetrics
    quality: QualityScore
    trend: TrendResult
    anomalies: list[Anomaly] = field(default_factory=list)
    history: list[Sample] = field(default_factory=list)

    @property
    def entity_id(self) -> str:
        return self.metrics.entity_id

    @property
    def max_severity(self) -> int:
        return max_severity(self.anomalies)

    def facts(self, benchmarks: Benchmarks | None = None) -> dict[str, Any]:
        facts = self.metrics.facts()
        facts.update({
            "confidence": self.quality.confidence,
            "reliable": self.quality.reliable,
            "trend": self.trend.direction.value,
            "slope": self.trend.slope,
            "volatility": self.trend.volatility,
            "max_severity": self.max_severity,
            "anomalies": ",".join(a.kind.value for a in self.anomalies),
        })
        if benchmarks is not None:
            bench = benchmarks.for_product(self.metrics.product)
            facts["benchmark_p25"] = bench.p25
            facts["benchmark_p50"] = bench.p50
            facts["below_benchmark_p25"] = bench.count > 0 and self.metrics.avg_roas_3d < bench.p25
        return facts


def build_signal(
    metrics: CampaignMetrics,
    history: list[Sample],
    peers: list[CampaignMetrics],
    tuning: TuningConfig,
) -> EntitySignal:
    """Quality, trend and anomalies for one entity.

    `history` holds earlier samples only; the current reading is appended
    for the trend so today's value counts as the newest point.
    """
    last_spend = history[-1].spend if history else None
    quality = assess_metrics(metrics, last_spend=last_spend, config=tuning.quality)
    current = Sample.from_metrics(metrics, confidence=quality.confidence)
    trend = analyze_trend([*history, current], config=tuning.trend)
    anomalies = detect_anomalies(metrics, history, peers, config=tuning.anomaly)
    return EntitySignal(
        metrics=metrics,
        quality=quality,
        trend=trend,
        anomalies=anomalies,
        history=history,
    )
