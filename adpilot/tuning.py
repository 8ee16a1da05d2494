"""Tuning configuration — every threshold the pipeline reads, in one place.

A TuningConfig lives inside a `config` skill, so it is versioned with the
rest of the skill table and can be edited by a human or by evolution.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class QualityConfig(BaseModel):
    spend_penalties: list[tuple[float, float]] = Field(
        default_factory=lambda: [(5.0, 0.2), (10.0, 0.4), (30.0, 0.7)]
    )
    hour_penalties: list[tuple[float, float]] = Field(
        default_factory=lambda: [(4.0, 0.15), (8.0, 0.4), (12.0, 0.7)]
    )
    zero_conversion_min_spend: float = 30.0
    zero_conversion_factor: float = 0.5
    jump_min_last_spend: float = 10.0
    jump_ratio: float = 3.0
    jump_factor: float = 0.6
    implausible_roas: float = 10.0
    implausible_max_spend: float = 50.0
    implausible_factor: float = 0.5
    floor: float = 0.05
    reliable_above: float = 0.5


class TrendConfig(BaseModel):
    min_points: int = 3
    crash_slope: float = -0.1
    crash_ratio: float = 0.5
    recover_ratio: float = 1.5
    recover_slope: float = 0.05
    rising_slope: float = 0.05
    declining_slope: float = -0.05
    full_confidence_points: int = 8
    volatility_bound: float = 1.0
    volatility_factor: float = 0.7


class AnomalyConfig(BaseModel):
    min_history: int = 3
    min_spend: float = 20.0
    spike_min_hour: float = 2.0
    spike_ratio: float = 2.5
    crash_min_avg_roas: float = 0.5
    crash_ratio: float = 0.3
    zero_conversion_spend: float = 50.0
    zero_conversion_min_hour: float = 4.0
    zero_conversion_spend_per_point: float = 30.0
    peer_min_count: int = 3
    peer_min_positive: int = 2
    peer_min_avg_roas: float = 0.3
    peer_ratio: float = 0.3
    peer_severity: int = 3
    account_min_spend: float = 10.0
    account_floor_roas: float = 0.3
    account_severity: int = 4


class ScreenerConfig(BaseModel):
    severity_threshold: int = 4
    crash_confidence: float = 0.5
    skip_spend_floor: float = 5.0
    low_spend_ceiling: float = 30.0


class ClassifierThresholds(BaseModel):
    observe_max_spend: float = 30.0
    loss_severe_roas: float = 0.2
    loss_severe_min_spend: float = 50.0
    loss_severe_min_days: int = 2
    loss_mild_roas: float = 0.8
    loss_mild_min_spend: float = 30.0
    loss_mild_min_days: int = 2
    low_day_min_spend: float = 5.0
    stable_good_min: float = 1.5
    stable_good_max: float = 2.5
    high_potential_roas: float = 2.5
    high_potential_trend_roas: float = 1.5
    decline_drop_pct: float = 30.0
    trend_up_pct: float = 10.0


class ThresholdOverrides(BaseModel):
    """Field-by-field classifier overrides; None falls back to the default."""

    observe_max_spend: float | None = None
    loss_severe_roas: float | None = None
    loss_severe_min_spend: float | None = None
    loss_severe_min_days: int | None = None
    loss_mild_roas: float | None = None
    loss_mild_min_spend: float | None = None
    loss_mild_min_days: int | None = None
    low_day_min_spend: float | None = None
    stable_good_min: float | None = None
    stable_good_max: float | None = None
    high_potential_roas: float | None = None
    high_potential_trend_roas: float | None = None
    decline_drop_pct: float | None = None
    trend_up_pct: float | None = None


class DecisionConfig(BaseModel):
    high_potential_max_daily_spend: float = 200.0
    max_budget_change_pct: float = 30.0
    max_daily_budget: float = 500.0


class ReflectionConfig(BaseModel):
    pause_loss_roas: float = 0.5
    pause_loss_min_spend: float = 30.0
    pause_recovery_roas: float = 1.5
    budget_keep_ratio: float = 0.8
    budget_wrong_ratio: float = 0.6
    resume_good_roas: float = 1.0
    resume_bad_roas: float = 0.5


class EvolutionConfig(BaseModel):
    min_outcomes: int = 3
    disable_below: float = 0.5
    demote_below: float = 0.7
    type_error_rate: float = 0.4
    rejection_rate: float = 0.3
    rejection_min_reviewed: int = 5
    llm_min_wrong: int = 3


class AuditConfig(BaseModel):
    snapshot_min_age_hours: float = 2.0
    snapshot_max_age_hours: float = 4.0
    miss_min_spend: float = 50.0
    miss_max_roas: float = 0.3
    miss_zero_conversion_spend: float = 100.0
    overalert_min_roas: float = 1.5
    overalert_min_spend: float = 20.0
    execution_window_hours: float = 4.0


class KnowledgePolicy(BaseModel):
    """Decay and promotion rules for knowledge entries."""

    stale_after_days: int = 30
    decay_step: float = 0.1
    archive_below: float = 0.3
    promote_validations: int = 5
    promoted_confidence: float = 0.9
    validation_boost: float = 0.05


class TuningConfig(BaseModel):
    version: int = 1
    quality: QualityConfig = Field(default_factory=QualityConfig)
    trend: TrendConfig = Field(default_factory=TrendConfig)
    anomaly: AnomalyConfig = Field(default_factory=AnomalyConfig)
    screener: ScreenerConfig = Field(default_factory=ScreenerConfig)
    classifier: ClassifierThresholds = Field(default_factory=ClassifierThresholds)
    decision: DecisionConfig = Field(default_factory=DecisionConfig)
    reflection: ReflectionConfig = Field(default_factory=ReflectionConfig)
    evolution: EvolutionConfig = Field(default_factory=EvolutionConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
