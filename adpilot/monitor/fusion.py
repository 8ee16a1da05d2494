"""Data fusion — merge samples from several sources into one row per entity-day.

Sources are ranked by priority. For every (entity_id, date) the highest
priority source that reports a field wins; lower sources only fill the
fields it left empty. Rows without an id, with an unparseable date, or
with negative volumes are dropped and counted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from adpilot.monitor.sources import RawSample

_logger = logging.getLogger(__name__)

_MERGE_FIELDS = (
    "entity_name", "account_id", "platform", "product", "channel", "status",
    "daily_budget", "spend", "impressions", "clicks", "revenue", "conversions",
)
_NON_NEGATIVE = ("spend", "revenue", "conversions", "impressions", "clicks", "daily_budget")


@dataclass
class FusionResult:
    samples: list[RawSample] = field(default_factory=list)
    dropped: int = 0
    sources: list[str] = field(default_factory=list)


def is_valid(sample: RawSample) -> bool:
    """Integrity check applied at ingestion."""
    if not sample.entity_id:
        return False
    try:
        date.fromisoformat(sample.date)
    except (TypeError, ValueError):
        return False
    for name in _NON_NEGATIVE:
        value = getattr(sample, name)
        if value is not None and value < 0:
            return False
    return True


def fuse(batches: list[tuple[int, list[RawSample]]]) -> FusionResult:
    """Merge (priority, samples) batches. Higher priority wins per field."""
    result = FusionResult()
    merged: dict[tuple[str, str], RawSample] = {}

    ordered = sorted(batches, key=lambda b: b[0], reverse=True)
    for _, samples in ordered:
        for sample in samples:
            if not is_valid(sample):
                result.dropped += 1
                continue
            if sample.source and sample.source not in result.sources:
                result.sources.append(sample.source)

            key = (sample.entity_id, sample.date)
            current = merged.get(key)
            if current is None:
                merged[key] = sample.model_copy()
                continue
            gaps = {
                name: getattr(sample, name)
                for name in _MERGE_FIELDS
                if getattr(current, name) is None and getattr(sample, name) is not None
            }
            if gaps:
                merged[key] = current.model_copy(update=gaps)

    if result.dropped:
        _logger.warning("Fusion dropped %d malformed samples", result.dropped)

    result.samples = sorted(merged.values(), key=lambda s: (s.entity_id, s.date))
    return result
