"""Metrics analyzer — fused daily rows to one CampaignMetrics per entity."""

from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta, timezone

from adpilot.monitor.sources import RawSample
from adpilot.types import CampaignMetrics, DailyPoint

DAILY_WINDOW = 7


def reporting_clock(as_of: datetime, utc_offset_hours: int = 0) -> tuple[date, float]:
    """Reporting date and hours elapsed in it for a given instant."""
    if as_of.tzinfo is None:
        as_of = as_of.replace(tzinfo=timezone.utc)
    local = as_of.astimezone(timezone(timedelta(hours=utc_offset_hours)))
    return local.date(), local.hour + local.minute / 60


def _pct_change(new: float, old: float) -> float:
    if old <= 0:
        return 0.0
    return round((new - old) / old * 100, 2)


def build_metrics(
    samples: list[RawSample],
    as_of: datetime,
    utc_offset_hours: int = 0,
) -> list[CampaignMetrics]:
    """Aggregate fused samples into per-entity metrics.

    "Today" is the reporting day containing `as_of`; 3-day aggregates
    cover today, yesterday and the day before.
    """
    today, hour = reporting_clock(as_of, utc_offset_hours)
    by_entity: dict[str, dict[str, RawSample]] = defaultdict(dict)
    for s in samples:
        by_entity[s.entity_id][s.date] = s

    metrics = []
    for entity_id, rows in sorted(by_entity.items()):
        metrics.append(_entity_metrics(entity_id, rows, today, hour, as_of))
    return metrics


def _entity_metrics(
    entity_id: str,
    rows: dict[str, RawSample],
    today: date,
    hour: float,
    as_of: datetime,
) -> CampaignMetrics:
    days = [(today - timedelta(days=i)).isoformat() for i in range(DAILY_WINDOW - 1, -1, -1)]
    daily = []
    for d in days:
        row = rows.get(d)
        if row is None:
            continue
        daily.append(DailyPoint(
            date=d,
            spend=row.spend or 0.0,
            revenue=row.revenue or 0.0,
            conversions=row.conversions or 0,
        ))
    by_date = {p.date: p for p in daily}
    empty = DailyPoint(date="")
    d0 = by_date.get(days[-1], empty)
    d1 = by_date.get(days[-2], empty)
    d2 = by_date.get(days[-3], empty)

    # Identity comes from the most recent row that carries it
    latest = rows[max(rows)]
    identity = {
        name: next(
            (getattr(rows[k], name) for k in sorted(rows, reverse=True) if getattr(rows[k], name)),
            None,
        )
        for name in ("entity_name", "account_id", "platform", "product", "channel", "status")
    }

    total_spend = d0.spend + d1.spend + d2.spend
    total_revenue = d0.revenue + d1.revenue + d2.revenue
    elapsed = max(hour, 0.0)

    return CampaignMetrics(
        entity_id=entity_id,
        entity_name=identity["entity_name"] or "",
        account_id=identity["account_id"] or "",
        platform=identity["platform"] or "",
        product=identity["product"] or "",
        channel=identity["channel"] or "",
        status=identity["status"] or "ACTIVE",
        daily_budget=latest.daily_budget or 0.0,
        as_of=as_of,
        hour=round(elapsed, 2),
        today_spend=d0.spend,
        today_revenue=d0.revenue,
        today_conversions=d0.conversions,
        today_roas=round(d0.roas, 4),
        yesterday_spend=d1.spend,
        yesterday_roas=round(d1.roas, 4),
        day_before_spend=d2.spend,
        day_before_roas=round(d2.roas, 4),
        spend_trend_pct=_pct_change(d1.spend, d2.spend),
        roas_trend_pct=_pct_change(d1.roas, d2.roas),
        total_spend_3d=round(total_spend, 2),
        total_revenue_3d=round(total_revenue, 2),
        total_conversions_3d=d0.conversions + d1.conversions + d2.conversions,
        avg_roas_3d=round(total_revenue / total_spend, 4) if total_spend > 0 else 0.0,
        estimated_daily_spend=round(d0.spend / elapsed * 24, 2) if elapsed > 0 else d0.spend,
        spend_per_hour=round(d0.spend / elapsed, 4) if elapsed > 0 else 0.0,
        daily=daily,
    )
