"""Anomaly detection — spikes, crashes and outliers, each scored 1-5.

History-based checks compare the current reading with the entity's own
valid samples and never fire with fewer than `min_history` of them.
Peer checks compare against other entities in the same account.
"""

from __future__ import annotations

from collections import defaultdict
from enum import Enum

from pydantic import BaseModel

from adpilot.monitor.timeseries import Sample
from adpilot.tuning import AnomalyConfig
from adpilot.types import CampaignMetrics


class AnomalyKind(str, Enum):
    SPEND_SPIKE = "spend_spike"
    ROAS_CRASH = "roas_crash"
    ZERO_CONVERSION = "zero_conversion"
    UNDERPERFORMING_PEERS = "underperforming_vs_peers"
    ACCOUNT_DECLINE = "account_wide_decline"


class Anomaly(BaseModel):
    kind: AnomalyKind
    severity: int  # 1-5
    entity_id: str = ""
    account_id: str = ""
    message: str = ""


def _clamp_severity(value: float) -> int:
    return max(1, min(5, round(value)))


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def detect_anomalies(
    metrics: CampaignMetrics,
    history: list[Sample],
    peers: list[CampaignMetrics] | None = None,
    config: AnomalyConfig | None = None,
) -> list[Anomaly]:
    """Per-entity anomalies. `history` excludes the current reading."""
    cfg = config or AnomalyConfig()
    found: list[Anomaly] = []
    valid = [s for s in history if s.spend > 0]
    spend = metrics.today_spend
    roas = metrics.today_roas

    if len(valid) >= cfg.min_history and spend > cfg.min_spend:
        avg_rate = _mean([s.spend_rate for s in valid])
        if metrics.hour > cfg.spike_min_hour and avg_rate > 0:
            ratio = metrics.spend_per_hour / avg_rate
            if ratio > cfg.spike_ratio:
                found.append(Anomaly(
                    kind=AnomalyKind.SPEND_SPIKE,
                    severity=_clamp_severity(ratio),
                    entity_id=metrics.entity_id,
                    account_id=metrics.account_id,
                    message=f"spend rate {metrics.spend_per_hour:.2f}/h is {ratio:.1f}x the usual {avg_rate:.2f}/h",
                ))

        positive = [s.roas for s in valid if s.roas > 0]
        avg_roas = _mean(positive)
        if avg_roas > cfg.crash_min_avg_roas and roas < avg_roas * cfg.crash_ratio:
            drop = 1 - roas / avg_roas
            found.append(Anomaly(
                kind=AnomalyKind.ROAS_CRASH,
                severity=_clamp_severity(drop * 5),
                entity_id=metrics.entity_id,
                account_id=metrics.account_id,
                message=f"roas {roas:.2f} vs usual {avg_roas:.2f} ({drop:.0%} drop)",
            ))

    if (
        spend > cfg.zero_conversion_spend
        and metrics.today_conversions == 0
        and roas == 0
        and metrics.hour > cfg.zero_conversion_min_hour
    ):
        found.append(Anomaly(
            kind=AnomalyKind.ZERO_CONVERSION,
            severity=_clamp_severity(spend / cfg.zero_conversion_spend_per_point),
            entity_id=metrics.entity_id,
            account_id=metrics.account_id,
            message=f"${spend:.2f} spent after {metrics.hour:.1f}h with zero conversions",
        ))

    others = [
        p for p in (peers or [])
        if p.entity_id != metrics.entity_id and p.account_id == metrics.account_id
    ]
    if len(others) >= cfg.peer_min_count and spend > cfg.min_spend:
        peer_roas = [p.today_roas for p in others if p.today_spend > cfg.min_spend and p.today_roas > 0]
        if len(peer_roas) >= cfg.peer_min_positive:
            peer_avg = _mean(peer_roas)
            if peer_avg > cfg.peer_min_avg_roas and roas < peer_avg * cfg.peer_ratio:
                found.append(Anomaly(
                    kind=AnomalyKind.UNDERPERFORMING_PEERS,
                    severity=cfg.peer_severity,
                    entity_id=metrics.entity_id,
                    account_id=metrics.account_id,
                    message=f"roas {roas:.2f} vs peer average {peer_avg:.2f}",
                ))

    return found


def detect_account_anomalies(
    metrics: list[CampaignMetrics],
    config: AnomalyConfig | None = None,
) -> list[Anomaly]:
    """Account-wide decline: every active entity in an account is under the floor."""
    cfg = config or AnomalyConfig()
    by_account: dict[str, list[CampaignMetrics]] = defaultdict(list)
    for m in metrics:
        if m.today_spend > cfg.account_min_spend:
            by_account[m.account_id].append(m)

    found = []
    for account_id, members in sorted(by_account.items()):
        if len(members) < cfg.peer_min_count:
            continue
        if all(m.today_roas < cfg.account_floor_roas for m in members):
            found.append(Anomaly(
                kind=AnomalyKind.ACCOUNT_DECLINE,
                severity=cfg.account_severity,
                account_id=account_id,
                message=(
                    f"all {len(members)} active entities in account {account_id or '-'} "
                    f"below roas {cfg.account_floor_roas}"
                ),
            ))
    return found


def max_severity(anomalies: list[Anomaly]) -> int:
    return max((a.severity for a in anomalies), default=0)
