"""Metrics sources — where raw per-day samples come from.

A source returns one RawSample per entity per day. Fields a source does
not know about stay None so fusion can fill them from another source.

Usage:
    source = HttpMetricsSource("https://bi.example.com/api", priority=10)
    samples = await source.fetch(FetchScope(account_ids=["act_1"]), DateRange.last_days(3))

fetch_batch() also reports how many rows were malformed and dropped; the
collector adds those to its own dropped count.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import date, timedelta

import httpx
from pydantic import BaseModel, Field, ValidationError

from adpilot.exceptions import MetricsUnavailableError

_logger = logging.getLogger(__name__)


class RawSample(BaseModel):
    """One entity, one day, as reported by one source."""

    entity_id: str = ""
    date: str = ""  # YYYY-MM-DD
    entity_name: str | None = None
    account_id: str | None = None
    platform: str | None = None
    product: str | None = None
    channel: str | None = None
    status: str | None = None
    daily_budget: float | None = None
    spend: float | None = None
    impressions: int | None = None
    clicks: int | None = None
    revenue: float | None = None
    conversions: int | None = None
    source: str = ""


class FetchScope(BaseModel):
    account_ids: list[str] = Field(default_factory=list)
    platforms: list[str] = Field(default_factory=list)


class DateRange(BaseModel):
    start: date
    end: date

    @classmethod
    def last_days(cls, days: int, today: date | None = None) -> DateRange:
        end = today or date.today()
        return cls(start=end - timedelta(days=days - 1), end=end)


class SourceBatch(BaseModel):
    """What one fetch returned, plus the rows it had to throw away."""

    samples: list[RawSample] = Field(default_factory=list)
    dropped: int = 0


class MetricsSource(ABC):
    """A provider of raw samples. Higher priority wins field conflicts."""

    name: str = "source"
    priority: int = 0

    @abstractmethod
    async def fetch(self, scope: FetchScope, date_range: DateRange) -> list[RawSample]: ...

    async def fetch_batch(self, scope: FetchScope, date_range: DateRange) -> SourceBatch:
        return SourceBatch(samples=await self.fetch(scope, date_range))


class StaticMetricsSource(MetricsSource):
    """In-memory source. Used for replays, demos and tests."""

    def __init__(self, samples: list[RawSample], name: str = "static", priority: int = 0):
        self._samples = samples
        self.name = name
        self.priority = priority

    def replace(self, samples: list[RawSample]) -> None:
        self._samples = samples

    async def fetch(self, scope: FetchScope, date_range: DateRange) -> list[RawSample]:
        start, end = date_range.start.isoformat(), date_range.end.isoformat()
        out = []
        for s in self._samples:
            if s.date and not (start <= s.date <= end):
                continue
            if scope.account_ids and s.account_id and s.account_id not in scope.account_ids:
                continue
            if scope.platforms and s.platform and s.platform not in scope.platforms:
                continue
            out.append(s.model_copy(update={"source": s.source or self.name}))
        return out


class HttpMetricsSource(MetricsSource):
    """Fetches samples from a JSON endpoint.

    GET {base_url}/samples?start=...&end=...&account_id=...
    The body is either a list of sample objects or {"samples": [...]}.
    """

    def __init__(
        self,
        base_url: str,
        name: str = "",
        priority: int = 0,
        timeout: float = 30.0,
        token: str = "",
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._token = token
        self.name = name or self._base_url
        self.priority = priority

    async def fetch(self, scope: FetchScope, date_range: DateRange) -> list[RawSample]:
        return (await self.fetch_batch(scope, date_range)).samples

    async def fetch_batch(self, scope: FetchScope, date_range: DateRange) -> SourceBatch:
        params: list[tuple[str, str]] = [
            ("start", date_range.start.isoformat()),
            ("end", date_range.end.isoformat()),
        ]
        params += [("account_id", a) for a in scope.account_ids]
        params += [("platform", p) for p in scope.platforms]
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(f"{self._base_url}/samples", params=params, headers=headers)
                resp.raise_for_status()
                data = resp.json()
        except httpx.HTTPError as e:
            raise MetricsUnavailableError(f"{self.name}: {e}") from e

        if isinstance(data, dict):
            data = data.get("samples", [])
        if not isinstance(data, list):
            raise MetricsUnavailableError(f"{self.name}: unexpected payload shape")

        samples = []
        dropped = 0
        for item in data:
            if not isinstance(item, dict):
                dropped += 1
                continue
            try:
                samples.append(RawSample.model_validate({**item, "source": self.name}))
            except ValidationError:
                dropped += 1
        if dropped:
            _logger.warning("%s: dropped %d malformed rows", self.name, dropped)
        return SourceBatch(samples=samples, dropped=dropped)
