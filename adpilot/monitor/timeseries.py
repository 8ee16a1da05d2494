"""Sample history — one point per entity per cycle.

Trend and anomaly detection need an entity's recent trajectory, not just
today's totals. Every monitor phase appends the current reading here.
"""

from __future__ import annotations

from datetime import datetime

import aiosqlite
from pydantic import BaseModel, Field

from adpilot.types import CampaignMetrics, utcnow


class Sample(BaseModel):
    entity_id: str
    taken_at: datetime = Field(default_factory=utcnow)
    spend: float = 0.0  # cumulative spend in the reporting day
    spend_rate: float = 0.0  # spend per elapsed hour
    roas: float = 0.0
    revenue: float = 0.0
    conversions: int = 0
    confidence: float = 1.0

    @classmethod
    def from_metrics(cls, metrics: CampaignMetrics, confidence: float = 1.0) -> Sample:
        return cls(
            entity_id=metrics.entity_id,
            taken_at=metrics.as_of,
            spend=metrics.today_spend,
            spend_rate=metrics.spend_per_hour,
            roas=metrics.today_roas,
            revenue=metrics.today_revenue,
            conversions=metrics.today_conversions,
            confidence=confidence,
        )


class SampleStore:
    """Append-only per-entity sample history backed by SQLite."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    async def append(self, sample: Sample) -> None:
        async with aiosqlite.connect(self._db_path) as db:
            await db.execute(
                "INSERT INTO samples "
                "(entity_id, taken_at, spend, spend_rate, roas, revenue, conversions, confidence) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    sample.entity_id,
                    sample.taken_at.isoformat(),
                    sample.spend,
                    sample.spend_rate,
                    sample.roas,
                    sample.revenue,
                    sample.conversions,
                    sample.confidence,
                ),
            )
            await db.commit()

    async def append_many(self, samples: list[Sample]) -> None:
        if not samples:
            return
        async with aiosqlite.connect(self._db_path) as db:
            await db.executemany(
                "INSERT INTO samples "
                "(entity_id, taken_at, spend, spend_rate, roas, revenue, conversions, confidence) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        s.entity_id, s.taken_at.isoformat(), s.spend, s.spend_rate,
                        s.roas, s.revenue, s.conversions, s.confidence,
                    )
                    for s in samples
                ],
            )
            await db.commit()

    async def history(
        self,
        entity_id: str,
        since: datetime | None = None,
        limit: int = 24,
    ) -> list[Sample]:
        """Most recent samples for an entity, returned oldest first."""
        sql = "SELECT * FROM samples WHERE entity_id = ?"
        params: list = [entity_id]
        if since is not None:
            sql += " AND taken_at >= ?"
            params.append(since.isoformat())
        sql += " ORDER BY taken_at DESC LIMIT ?"
        params.append(limit)

        async with aiosqlite.connect(self._db_path) as db:
            db.row_factory = aiosqlite.Row
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()

        samples = [
            Sample(
                entity_id=row["entity_id"],
                taken_at=datetime.fromisoformat(row["taken_at"]),
                spend=row["spend"],
                spend_rate=row["spend_rate"],
                roas=row["roas"],
                revenue=row["revenue"],
                conversions=row["conversions"],
                confidence=row["confidence"],
            )
            for row in rows
        ]
        samples.reverse()
        return samples

    async def prune(self, before: datetime) -> int:
        async with aiosqlite.connect(self._db_path) as db:
            cursor = await db.execute(
                "DELETE FROM samples WHERE taken_at < ?", (before.isoformat(),)
            )
            await db.commit()
            return cursor.rowcount
