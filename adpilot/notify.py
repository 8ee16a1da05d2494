"""Cycle notifications.

A notifier fans a CycleSummary out to every configured sink. Delivery
is best effort: a sink that fails is logged and the cycle carries on.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

import httpx
from pydantic import BaseModel, Field

from adpilot.types import utcnow

_logger = logging.getLogger(__name__)


class CycleSummary(BaseModel):
    cycle_id: str
    started_at: datetime = Field(default_factory=utcnow)
    status: str = "completed"
    entities: int = 0
    verdicts: dict[str, int] = Field(default_factory=dict)
    labels: dict[str, int] = Field(default_factory=dict)
    decision_strategy: str = ""
    rationale: str = ""
    executed: list[dict[str, Any]] = Field(default_factory=list)
    pending_approval: list[dict[str, Any]] = Field(default_factory=list)
    failed: list[dict[str, Any]] = Field(default_factory=list)
    alerts: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)

    @property
    def is_quiet(self) -> bool:
        return not (self.executed or self.pending_approval or self.failed or self.alerts or self.errors)

    def render(self) -> str:
        lines = [
            f"Cycle {self.cycle_id} {self.status}: {self.entities} entities, "
            f"verdicts {self.verdicts}, decision via {self.decision_strategy or 'n/a'}",
        ]
        if self.rationale:
            lines.append(f"Rationale: {self.rationale}")
        for a in self.executed:
            lines.append(f"  executed {a.get('action_type')} on {a.get('entity_id')}: {a.get('reason', '')}")
        for a in self.pending_approval:
            lines.append(f"  awaiting approval [{a.get('id')}] {a.get('action_type')} on {a.get('entity_id')}")
        for a in self.failed:
            lines.append(f"  FAILED {a.get('action_type')} on {a.get('entity_id')}: {a.get('last_error', '')}")
        for alert in self.alerts:
            lines.append(f"  alert: {alert}")
        for err in self.errors:
            lines.append(f"  error: {err}")
        return "\n".join(lines)


class NotificationSink(ABC):
    name: str = "sink"

    @abstractmethod
    async def send(self, summary: CycleSummary) -> None:
        """Deliver a summary. Raise on failure."""


class LogNotificationSink(NotificationSink):
    name = "log"

    async def send(self, summary: CycleSummary) -> None:
        _logger.info("%s", summary.render())


class WebhookNotificationSink(NotificationSink):
    """POST the summary as JSON to a webhook."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 10.0) -> None:
        self._url = url
        self._timeout = timeout

    async def send(self, summary: CycleSummary) -> None:
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            resp = await client.post(
                self._url,
                json={"text": summary.render(), "summary": summary.model_dump(mode="json")},
            )
            resp.raise_for_status()


class Notifier:
    def __init__(self, sinks: list[NotificationSink] | None = None, timeout: float = 15.0) -> None:
        self._sinks = sinks if sinks is not None else [LogNotificationSink()]
        self._timeout = timeout

    @property
    def sinks(self) -> list[NotificationSink]:
        return list(self._sinks)

    async def notify(self, summary: CycleSummary) -> int:
        """Send to every sink. Returns how many deliveries succeeded."""
        delivered = 0
        for sink in self._sinks:
            try:
                await asyncio.wait_for(sink.send(summary), timeout=self._timeout)
                delivered += 1
            except Exception as e:
                _logger.warning("Notification via %s failed: %s", sink.name, e)
        return delivered
