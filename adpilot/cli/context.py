"""CLI runtime context — bridges the sync CLI to the async pipeline."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Coroutine

from adpilot.actions.approval import ApprovalDesk
from adpilot.actions.executor import ActionExecutor
from adpilot.actions.platform import DryRunPlatformExecutor, HttpPlatformExecutor, PlatformExecutor
from adpilot.audit.auditor import Auditor
from adpilot.audit.model import AuditReport
from adpilot.config import PilotSettings, settings as default_settings
from adpilot.exceptions import MetricsUnavailableError
from adpilot.knowledge.librarian import DecayReport
from adpilot.learning.evolution import EvolutionEngine, EvolutionReport
from adpilot.llm.anthropic import AnthropicProvider
from adpilot.llm.base import BaseLLMProvider
from adpilot.monitor.collector import MetricsCollector
from adpilot.monitor.sources import FetchScope, HttpMetricsSource, MetricsSource
from adpilot.notify import LogNotificationSink, NotificationSink, Notifier, WebhookNotificationSink
from adpilot.orchestrator import CycleResult, Orchestrator
from adpilot.scheduler import Scheduler
from adpilot.types import CampaignMetrics, utcnow
from adpilot.workspace import Workspace

_logger = logging.getLogger(__name__)

SAMPLE_RETENTION_DAYS = 14


class PilotContext:
    """Singleton runtime context that holds all subsystem instances."""

    _instance: PilotContext | None = None

    def __init__(
        self,
        config: PilotSettings | None = None,
        sources: list[MetricsSource] | None = None,
        platform: PlatformExecutor | None = None,
        llm: BaseLLMProvider | None = None,
        sinks: list[NotificationSink] | None = None,
    ) -> None:
        cfg = config or default_settings
        self.config = cfg

        # Reasoning service is optional; every phase has a rule fallback
        if llm is None and cfg.anthropic_api_key:
            llm = AnthropicProvider(api_key=cfg.anthropic_api_key, model=cfg.default_model)
        self.llm = llm

        self.workspace = Workspace(str(cfg.db_path))

        if sources is None:
            urls = cfg.source_urls()
            sources = [
                HttpMetricsSource(url, name=f"source{i}", priority=len(urls) - i,
                                  timeout=cfg.metrics_timeout_seconds)
                for i, url in enumerate(urls)
            ]
        self.collector = MetricsCollector(
            sources,
            scope=FetchScope(account_ids=cfg.accounts()),
            timeout=cfg.metrics_timeout_seconds,
            utc_offset_hours=cfg.reporting_utc_offset_hours,
        )

        if platform is None:
            if cfg.dry_run:
                platform = DryRunPlatformExecutor()
            elif cfg.platform_base_url:
                platform = HttpPlatformExecutor(
                    cfg.platform_base_url, token=cfg.platform_token, timeout=cfg.platform_timeout_seconds,
                )
        self.executor = ActionExecutor(
            self.workspace.actions,
            platform,
            max_attempts=cfg.execute_max_attempts,
            backoff_seconds=cfg.execute_backoff_seconds,
            call_timeout=cfg.platform_timeout_seconds,
        )
        self.desk = ApprovalDesk(self.workspace.actions, self.executor, ttl_hours=cfg.approval_ttl_hours)

        if sinks is None:
            sinks = [LogNotificationSink()]
            if cfg.notify_webhook_url:
                sinks.append(WebhookNotificationSink(cfg.notify_webhook_url, timeout=cfg.notify_timeout_seconds))
        self.notifier = Notifier(sinks)

        self.orchestrator = Orchestrator(
            self.workspace,
            self.collector,
            executor=self.executor,
            notifier=self.notifier,
            llm=self.llm,
            config=cfg,
        )

    async def ensure_workspace(self) -> Workspace:
        """Create the schema and seed skills on first use."""
        self.config.workspace_dir.mkdir(parents=True, exist_ok=True)
        await self.workspace.initialize()
        return self.workspace

    async def run_cycle(self, now: datetime | None = None) -> CycleResult:
        await self.ensure_workspace()
        return await self.orchestrator.run_cycle(now)

    async def current_metrics(self, now: datetime | None = None) -> dict[str, CampaignMetrics]:
        """Fresh metrics when a source answers, otherwise what the last cycle saw."""
        try:
            collection = await self.collector.collect(now or utcnow())
            return {m.entity_id: m for m in collection.metrics}
        except MetricsUnavailableError as e:
            _logger.warning("Audit falling back to cached metrics: %s", e)
            return dict(self.orchestrator.cache.metrics)

    async def run_audit(self, now: datetime | None = None) -> AuditReport:
        ws = await self.ensure_workspace()
        when = now or utcnow()
        tuning = await ws.skills.tuning()
        auditor = Auditor(
            ws.snapshots,
            ws.actions,
            ws.audits,
            ws.librarian,
            self.orchestrator.reflection_engine(tuning),
            config=tuning.audit,
            event_bus=ws.event_bus,
        )
        return await auditor.run(await self.current_metrics(when), when)

    async def run_evolution(self, days: int | None = None, now: datetime | None = None) -> EvolutionReport:
        ws = await self.ensure_workspace()
        tuning = await ws.skills.tuning()
        engine = EvolutionEngine(
            ws.skills,
            ws.actions,
            ws.reflections,
            ws.librarian,
            llm=self.llm,
            config=tuning.evolution,
            timeout=self.config.llm_timeout_seconds,
        )
        return await engine.run(days=days or self.config.evolution_days_lookback, now=now)

    async def run_decay(self, now: datetime | None = None) -> DecayReport:
        ws = await self.ensure_workspace()
        when = now or utcnow()
        report = await ws.librarian.decay(when)
        await ws.samples.prune(when - timedelta(days=SAMPLE_RETENTION_DAYS))
        return report

    def scheduler(self) -> Scheduler:
        cfg = self.config
        scheduler = Scheduler(self.workspace.event_bus)
        scheduler.add("cycle", self.run_cycle, cfg.cycle_interval_minutes * 60)
        scheduler.add("audit", self.run_audit, cfg.audit_interval_hours * 3600, run_immediately=False)
        scheduler.add("evolution", self.run_evolution, cfg.evolution_interval_hours * 3600, run_immediately=False)
        scheduler.add("decay", self.run_decay, cfg.decay_interval_hours * 3600)
        return scheduler

    @classmethod
    def get(cls) -> PilotContext:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None


def run_async(coro: Coroutine) -> Any:
    """Run an async coroutine from sync CLI code."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = None

    if loop and loop.is_running():
        import concurrent.futures
        with concurrent.futures.ThreadPoolExecutor() as pool:
            return pool.submit(asyncio.run, coro).result()
    return asyncio.run(coro)
