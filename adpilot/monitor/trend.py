"""Trend analysis over an entity's recent samples.

Pure functions. The ratio metric (roas) is regressed against sample
index with ordinary least squares; slope, acceleration and volatility
then map onto a small fixed vocabulary of directions.
"""

from __future__ import annotations

import math

from pydantic import BaseModel

from adpilot.monitor.timeseries import Sample
from adpilot.tuning import TrendConfig
from adpilot.types import TrendDirection


class TrendResult(BaseModel):
    direction: TrendDirection = TrendDirection.INSUFFICIENT_DATA
    slope: float = 0.0
    acceleration: float = 0.0
    volatility: float = 0.0
    points: int = 0
    confidence: float = 0.0
    projected_daily_spend: float | None = None
    note: str = ""


def ols_slope(values: list[float]) -> float:
    """Least-squares slope of values against their index."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2
    mean_y = sum(values) / n
    num = sum((i - mean_x) * (v - mean_y) for i, v in enumerate(values))
    den = sum((i - mean_x) ** 2 for i in range(n))
    return num / den if den else 0.0


def stddev(values: list[float]) -> float:
    """Population standard deviation."""
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return math.sqrt(sum((v - mean) ** 2 for v in values) / len(values))


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def analyze_trend(samples: list[Sample], config: TrendConfig | None = None) -> TrendResult:
    """Classify the roas trajectory of chronologically ordered samples."""
    cfg = config or TrendConfig()
    valid = [s for s in samples if s.spend > 0]
    if len(valid) < cfg.min_points:
        return TrendResult(
            points=len(valid),
            note=f"only {len(valid)} valid samples, need {cfg.min_points}",
        )

    values = [s.roas for s in valid]
    n = len(values)
    slope = ols_slope(values)

    acceleration = 0.0
    if n >= 4:
        half = n // 2
        acceleration = ols_slope(values[half:]) - ols_slope(values[:half])

    volatility = stddev(values)
    older = _mean(values[:3])
    recent = _mean(values[-3:])

    if slope < cfg.crash_slope and older > 0 and recent < older * cfg.crash_ratio:
        direction = TrendDirection.CRASHING
        note = f"roas collapsed from {older:.2f} to {recent:.2f}"
    elif older > 0 and recent > older * cfg.recover_ratio and slope > cfg.recover_slope:
        direction = TrendDirection.RECOVERING
        note = f"roas recovering from {older:.2f} to {recent:.2f}"
    elif slope > cfg.rising_slope:
        direction = TrendDirection.RISING
        note = f"roas rising, slope {slope:.3f}"
    elif slope < cfg.declining_slope:
        direction = TrendDirection.DECLINING
        note = f"roas declining, slope {slope:.3f}"
    else:
        direction = TrendDirection.STABLE
        note = "roas stable"

    confidence = min(1.0, n / cfg.full_confidence_points)
    if volatility > cfg.volatility_bound:
        confidence *= cfg.volatility_factor

    rates = [s.spend_rate for s in valid[-3:]]
    projected = round(_mean(rates) * 24, 2) if rates else None

    return TrendResult(
        direction=direction,
        slope=round(slope, 4),
        acceleration=round(acceleration, 4),
        volatility=round(volatility, 4),
        points=n,
        confidence=round(confidence, 2),
        projected_daily_spend=projected,
        note=note,
    )
