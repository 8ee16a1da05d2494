"""Metrics collector — fetch every source, fuse, aggregate.

Sources are queried concurrently, each under its own timeout. A failing
source is logged and skipped; only when every source fails does the
collector raise, which fails the cycle's monitor phase.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from adpilot.exceptions import MetricsUnavailableError
from adpilot.monitor.analyzer import DAILY_WINDOW, build_metrics, reporting_clock
from adpilot.monitor.fusion import fuse
from adpilot.monitor.sources import DateRange, FetchScope, MetricsSource, RawSample, SourceBatch
from adpilot.types import CampaignMetrics

_logger = logging.getLogger(__name__)


@dataclass
class CollectionResult:
    metrics: list[CampaignMetrics] = field(default_factory=list)
    dropped: int = 0
    sources_ok: list[str] = field(default_factory=list)
    sources_failed: dict[str, str] = field(default_factory=dict)


class MetricsCollector:
    def __init__(
        self,
        sources: list[MetricsSource],
        scope: FetchScope | None = None,
        timeout: float = 30.0,
        utc_offset_hours: int = 0,
    ) -> None:
        self._sources = sorted(sources, key=lambda s: s.priority, reverse=True)
        self._scope = scope or FetchScope()
        self._timeout = timeout
        self._utc_offset = utc_offset_hours

    @property
    def sources(self) -> list[MetricsSource]:
        return list(self._sources)

    async def collect(self, now: datetime) -> CollectionResult:
        if not self._sources:
            raise MetricsUnavailableError("No metrics sources configured")

        today, _ = reporting_clock(now, self._utc_offset)
        date_range = DateRange.last_days(DAILY_WINDOW, today=today)

        results = await asyncio.gather(
            *(self._fetch_one(s, date_range) for s in self._sources),
            return_exceptions=True,
        )

        out = CollectionResult()
        batches: list[tuple[int, list[RawSample]]] = []
        source_dropped = 0
        for source, result in zip(self._sources, results):
            if isinstance(result, BaseException):
                _logger.warning("Metrics source %s failed: %s", source.name, result)
                out.sources_failed[source.name] = str(result) or type(result).__name__
                continue
            out.sources_ok.append(source.name)
            batches.append((source.priority, result.samples))
            source_dropped += result.dropped

        if not batches:
            raise MetricsUnavailableError(
                "All metrics sources failed: "
                + ", ".join(f"{k} ({v})" for k, v in out.sources_failed.items())
            )

        fused = fuse(batches)
        out.dropped = fused.dropped + source_dropped
        out.metrics = build_metrics(fused.samples, as_of=now, utc_offset_hours=self._utc_offset)
        _logger.info(
            "Collected %d entities from %d sources (%d rows dropped)",
            len(out.metrics), len(out.sources_ok), out.dropped,
        )
        return out

    async def _fetch_one(self, source: MetricsSource, date_range: DateRange) -> SourceBatch:
        return await asyncio.wait_for(source.fetch_batch(self._scope, date_range), timeout=self._timeout)
