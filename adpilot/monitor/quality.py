"""Data quality — how much to trust today's numbers for one entity.

Confidence starts at 1.0 and each independent penalty multiplies it
down. Early in the reporting day, at tiny spend, or right after a
suspicious jump, numbers are noisy and decisions made on them tend to
be wrong.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from adpilot.tuning import QualityConfig
from adpilot.types import CampaignMetrics


class QualityScore(BaseModel):
    confidence: float = 1.0
    reliable: bool = True
    notes: list[str] = Field(default_factory=list)


class QualitySummary(BaseModel):
    overall_confidence: float = 0.0
    reliable: int = 0
    unreliable: int = 0
    note: str = ""


def _tiered(value: float, tiers: list[tuple[float, float]]) -> float | None:
    for bound, factor in sorted(tiers):
        if value < bound:
            return factor
    return None


def assess_quality(
    spend: float,
    hour: float,
    conversions: int,
    revenue: float,
    roas: float,
    last_spend: float | None = None,
    config: QualityConfig | None = None,
) -> QualityScore:
    cfg = config or QualityConfig()
    confidence = 1.0
    notes: list[str] = []

    factor = _tiered(spend, cfg.spend_penalties)
    if factor is not None:
        confidence *= factor
        notes.append(f"low spend ${spend:.2f} (x{factor})")

    factor = _tiered(hour, cfg.hour_penalties)
    if factor is not None:
        confidence *= factor
        notes.append(f"early in day, {hour:.1f}h elapsed (x{factor})")

    if spend > cfg.zero_conversion_min_spend and conversions == 0 and revenue == 0 and roas == 0:
        confidence *= cfg.zero_conversion_factor
        notes.append(f"${spend:.2f} spent with no conversions or revenue, possible reporting lag")

    if last_spend is not None and last_spend > cfg.jump_min_last_spend:
        jump = abs(spend - last_spend) / last_spend
        if jump > cfg.jump_ratio:
            confidence *= cfg.jump_factor
            notes.append(f"spend jumped {jump:.1f}x since last sample")

    if roas > cfg.implausible_roas and spend < cfg.implausible_max_spend:
        confidence *= cfg.implausible_factor
        notes.append(f"roas {roas:.2f} implausible at ${spend:.2f} spend")

    confidence = max(cfg.floor, round(confidence, 2))
    return QualityScore(
        confidence=confidence,
        reliable=confidence > cfg.reliable_above,
        notes=notes,
    )


def assess_metrics(
    metrics: CampaignMetrics,
    last_spend: float | None = None,
    config: QualityConfig | None = None,
) -> QualityScore:
    return assess_quality(
        spend=metrics.today_spend,
        hour=metrics.hour,
        conversions=metrics.today_conversions,
        revenue=metrics.today_revenue,
        roas=metrics.today_roas,
        last_spend=last_spend,
        config=config,
    )


def summarize_quality(scores: dict[str, QualityScore]) -> QualitySummary:
    if not scores:
        return QualitySummary(note="no entities assessed")
    reliable = sum(1 for s in scores.values() if s.reliable)
    overall = round(sum(s.confidence for s in scores.values()) / len(scores), 2)
    unreliable = len(scores) - reliable
    note = (
        f"{unreliable}/{len(scores)} entities have low-confidence data"
        if unreliable else "data quality good"
    )
    return QualitySummary(
        overall_confidence=overall,
        reliable=reliable,
        unreliable=unreliable,
        note=note,
    )
