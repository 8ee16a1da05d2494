"""Benchmarks — roas percentiles across the managed portfolio.

Shared, read-only input to screening and decision. Computed once per
cycle from the entities that spent enough to be meaningful.
"""

from __future__ import annotations

from collections import defaultdict

from pydantic import BaseModel, Field

from adpilot.types import CampaignMetrics

MIN_SPEND = 30.0


class RoasBenchmark(BaseModel):
    p25: float = 0.0
    p50: float = 0.0
    p75: float = 0.0
    count: int = 0


class Benchmarks(BaseModel):
    overall: RoasBenchmark = Field(default_factory=RoasBenchmark)
    by_product: dict[str, RoasBenchmark] = Field(default_factory=dict)

    def for_product(self, product: str) -> RoasBenchmark:
        bench = self.by_product.get(product)
        if bench is None or bench.count < 3:
            return self.overall
        return bench


def percentile(values: list[float], pct: float) -> float:
    """Linear-interpolated percentile, pct in [0, 100]."""
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    k = (len(ordered) - 1) * pct / 100
    lo = int(k)
    hi = min(lo + 1, len(ordered) - 1)
    return ordered[lo] + (ordered[hi] - ordered[lo]) * (k - lo)


def _benchmark(values: list[float]) -> RoasBenchmark:
    return RoasBenchmark(
        p25=round(percentile(values, 25), 4),
        p50=round(percentile(values, 50), 4),
        p75=round(percentile(values, 75), 4),
        count=len(values),
    )


def compute_benchmarks(metrics: list[CampaignMetrics], min_spend: float = MIN_SPEND) -> Benchmarks:
    eligible = [m for m in metrics if m.total_spend_3d >= min_spend]
    grouped: dict[str, list[float]] = defaultdict(list)
    for m in eligible:
        grouped[m.product].append(m.avg_roas_3d)
    return Benchmarks(
        overall=_benchmark([m.avg_roas_3d for m in eligible]),
        by_product={product: _benchmark(vals) for product, vals in grouped.items() if product},
    )
