"""Orchestrator — one pipeline cycle, phase by phase.

    MONITOR -> SCREEN -> CLASSIFY -> DECIDE -> EXECUTE -> NOTIFY -> REFLECT

Phases run strictly in sequence. Inside MONITOR the per-entity work
(history lookup, quality, trend, anomalies) fans out under a semaphore.
A snapshot records the outcome of every phase as it completes.

Only MONITOR can fail a cycle, and only when no metrics source answers.
Every later phase degrades instead: a missing reasoning service means
rule-based decisions, a missing platform means actions wait in the
queue, a failing notification sink is logged. A cycle that is cancelled
mid-way, or that crashes on an unexpected error, leaves a failed snapshot
naming the last phase that completed before the exception propagates.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from adpilot.actions.approval import ApprovalDesk
from adpilot.actions.executor import ActionExecutor
from adpilot.actions.model import Action, ActionProposal
from adpilot.audit.model import CorrectiveItem, CorrectiveKind
from adpilot.config import PilotSettings, settings as default_settings
from adpilot.exceptions import (
    ActionNotFoundError,
    ActionStateError,
    AdpilotError,
    DuplicateActionError,
    StrategyUnavailable,
)
from adpilot.learning.reflection import ReflectionEngine
from adpilot.llm.base import BaseLLMProvider
from adpilot.monitor.anomaly import detect_account_anomalies
from adpilot.monitor.benchmarks import Benchmarks, compute_benchmarks
from adpilot.monitor.collector import MetricsCollector
from adpilot.monitor.signal import EntitySignal, build_signal
from adpilot.monitor.timeseries import Sample
from adpilot.notify import CycleSummary, Notifier
from adpilot.pipeline.classifier import Classification, Classifier
from adpilot.pipeline.decision import DecisionCandidate, DecisionEngine
from adpilot.pipeline.screener import Screener, ScreeningResult
from adpilot.skills.schema import GoalSkill
from adpilot.snapshots import CyclePhase, ScreeningRecord, Snapshot, SnapshotStatus
from adpilot.tuning import TuningConfig
from adpilot.types import ActionStatus, CampaignMetrics, utcnow
from adpilot.workspace import Workspace

_logger = logging.getLogger(__name__)


@dataclass
class CycleCache:
    """What the last completed cycle saw. Replaced as a whole, never patched."""

    started_at: datetime | None = None
    metrics: dict[str, CampaignMetrics] = field(default_factory=dict)
    signals: dict[str, EntitySignal] = field(default_factory=dict)
    benchmarks: Benchmarks | None = None


@dataclass
class CycleResult:
    snapshot: Snapshot
    summary: CycleSummary | None = None
    actions: list[Action] = field(default_factory=list)
    reflections: int = 0

    @property
    def ok(self) -> bool:
        return self.snapshot.status == SnapshotStatus.COMPLETED


@dataclass
class _Corrections:
    items: list[CorrectiveItem] = field(default_factory=list)
    rescreen: dict[str, str] = field(default_factory=dict)
    manual_only: set[str] = field(default_factory=set)
    retry: list[CorrectiveItem] = field(default_factory=list)


class Orchestrator:
    def __init__(
        self,
        workspace: Workspace,
        collector: MetricsCollector,
        executor: ActionExecutor | None = None,
        notifier: Notifier | None = None,
        llm: BaseLLMProvider | None = None,
        config: PilotSettings | None = None,
    ) -> None:
        self._ws = workspace
        self._collector = collector
        self._executor = executor
        self._notifier = notifier or Notifier()
        self._llm = llm
        self._config = config or default_settings
        self._cache = CycleCache()
        self._bus = workspace.event_bus

    @property
    def cache(self) -> CycleCache:
        return self._cache

    def reflection_engine(self, tuning: TuningConfig) -> ReflectionEngine:
        return ReflectionEngine(
            self._ws.actions,
            self._ws.reflections,
            self._ws.librarian,
            llm=self._llm,
            config=tuning.reflection,
            min_hours=self._config.reflection_min_hours,
            max_hours=self._config.reflection_max_hours,
            timeout=self._config.llm_timeout_seconds,
        )

    async def run_cycle(self, now: datetime | None = None) -> CycleResult:
        when = now or utcnow()
        tuning = await self._ws.skills.tuning()
        snapshot = await self._ws.snapshots.create(Snapshot(started_at=when))
        await self._emit("cycle.started", {"cycle_id": snapshot.id})

        try:
            result = await self._run(snapshot, tuning, when)
        except asyncio.CancelledError:
            await self._abandon(snapshot.id, "cycle cancelled")
            raise
        except AdpilotError as e:
            _logger.error("Cycle %s failed: %s", snapshot.id, e)
            failed = await self._abandon(snapshot.id, str(e))
            return CycleResult(snapshot=failed)
        except Exception as e:
            # Storage and programming errors still close the snapshot, then propagate
            _logger.exception("Cycle %s crashed", snapshot.id)
            await self._abandon(snapshot.id, f"{type(e).__name__}: {e}")
            raise

        await self._emit("cycle.completed", {
            "cycle_id": snapshot.id,
            "actions": len(result.actions),
            "counts": result.snapshot.counts,
        })
        return result

    async def _abandon(self, snapshot_id: str, error: str) -> Snapshot:
        latest = await self._ws.snapshots.get(snapshot_id)
        assert latest is not None
        phase = latest.last_phase.value if latest.last_phase else "none"
        failed = await self._ws.snapshots.fail(latest, f"{error} (last completed phase: {phase})")
        await self._emit("cycle.failed", {"cycle_id": snapshot_id, "error": error, "last_phase": phase})
        return failed

    async def _advance(self, snapshot: Snapshot, phase: CyclePhase, **updates: Any) -> Snapshot:
        snapshot = snapshot.model_copy(update={**updates, "last_phase": phase})
        snapshot = await self._ws.snapshots.save(snapshot)
        await self._emit("cycle.phase", {"cycle_id": snapshot.id, "phase": phase.value})
        return snapshot

    async def _run(self, snapshot: Snapshot, tuning: TuningConfig, when: datetime) -> CycleResult:
        cfg = self._config
        errors: list[str] = []
        alerts: list[str] = []
        corrections = await self._load_corrections()

        # ── MONITOR ──────────────────────────────────────────────
        collection = await self._collector.collect(when)
        metrics = {m.entity_id: m for m in collection.metrics}
        signals = await self._build_signals(collection.metrics, tuning)
        await self._ws.samples.append_many([
            Sample.from_metrics(s.metrics, confidence=s.quality.confidence)
            for s in signals.values()
        ])
        benchmarks = compute_benchmarks(collection.metrics)
        alerts.extend(a.message for a in detect_account_anomalies(collection.metrics, tuning.anomaly))
        errors.extend(f"source {k}: {v}" for k, v in collection.sources_failed.items())
        snapshot = await self._advance(
            snapshot, CyclePhase.MONITOR,
            counts={"entities": len(metrics), "dropped_rows": collection.dropped},
            alerts=list(alerts), errors=list(errors),
        )

        # ── SCREEN ───────────────────────────────────────────────
        open_ids = await self._ws.actions.open_entity_ids()
        verdict_rules = await self._ws.skills.rules("verdict")
        screening = Screener(tuning.screener).screen(
            list(signals.values()), verdict_rules, benchmarks,
            excluded_ids=open_ids, forced=corrections.rescreen,
        )
        records = {r.entity_id: self._record(r.entity_id, r, signals[r.entity_id]) for r in screening.results}
        snapshot = await self._advance(
            snapshot, CyclePhase.SCREEN,
            counts={**snapshot.counts, **screening.counts(), "excluded": len(screening.excluded)},
            screening=list(records.values()),
        )

        # ── CLASSIFY ─────────────────────────────────────────────
        threshold_rules = await self._ws.skills.rules("thresholds")
        classifications = Classifier(tuning.classifier).classify_all(
            [metrics[r.entity_id] for r in screening.needs_decision], threshold_rules,
        )
        for c in classifications:
            records[c.entity_id] = records[c.entity_id].model_copy(update={"label": c.label})
        label_counts = Counter(c.label.value for c in classifications)
        snapshot = await self._advance(
            snapshot, CyclePhase.CLASSIFY,
            counts={**snapshot.counts, **{f"label:{k}": v for k, v in label_counts.items()}},
            screening=list(records.values()),
        )

        # ── DECIDE ───────────────────────────────────────────────
        created, strategy, rationale, decision_hits = await self._decide(
            classifications, metrics, tuning, corrections, when, alerts, errors, snapshot.id,
        )
        created.extend(await self._retry_failed(corrections.retry, snapshot.id))
        if corrections.items:
            await self._ws.audits.mark_processed([c.id for c in corrections.items])
        snapshot = await self._advance(
            snapshot, CyclePhase.DECIDE,
            decision_strategy=strategy,
            actions=[self._action_row(a) for a in created],
            alerts=list(alerts), errors=list(errors),
        )

        # ── EXECUTE ──────────────────────────────────────────────
        desk = ApprovalDesk(self._ws.actions, self._executor, ttl_hours=cfg.approval_ttl_hours)
        await desk.expire_stale(when)
        await desk.fail_interrupted(when)
        finished = await self._execute(created, errors)
        by_id = {a.id: a for a in created}
        by_id.update({a.id: a for a in finished})
        actions = list(by_id.values())
        snapshot = await self._advance(
            snapshot, CyclePhase.EXECUTE,
            actions=[self._action_row(a) for a in actions],
            errors=list(errors),
        )

        # ── NOTIFY ───────────────────────────────────────────────
        summary = CycleSummary(
            cycle_id=snapshot.id,
            started_at=when,
            entities=len(metrics),
            verdicts=screening.counts(),
            labels=dict(label_counts),
            decision_strategy=strategy,
            rationale=rationale,
            executed=[self._action_row(a) for a in actions if a.status == ActionStatus.EXECUTED],
            pending_approval=[
                self._action_row(a) for a in actions if a.status == ActionStatus.PENDING and not a.auto
            ],
            failed=[self._action_row(a) for a in actions if a.status == ActionStatus.FAILED],
            alerts=list(alerts),
            errors=list(errors),
        )
        await self._notifier.notify(summary)
        snapshot = await self._advance(snapshot, CyclePhase.NOTIFY)

        # ── REFLECT ──────────────────────────────────────────────
        reflected = 0
        try:
            reflected = len(await self.reflection_engine(tuning).reflect_due(metrics, when))
        except AdpilotError as e:
            _logger.warning("Reflection phase failed: %s", e)
            errors.append(f"reflect: {e}")

        hits = Counter(screening.skill_hits())
        hits.update(decision_hits)
        await self._ws.librarian.record_triggers(dict(hits), now=when)
        await self._learn_preferences(when)

        snapshot = await self._advance(
            snapshot, CyclePhase.REFLECT,
            counts={**snapshot.counts, "actions": len(actions), "reflections": reflected},
            errors=list(errors),
        )
        snapshot = await self._ws.snapshots.complete(snapshot, summary.render())

        self._cache = CycleCache(
            started_at=when,
            metrics=metrics,
            signals=signals,
            benchmarks=benchmarks,
        )
        return CycleResult(snapshot=snapshot, summary=summary, actions=actions, reflections=reflected)

    # ── Phase helpers ────────────────────────────────────────────

    async def _build_signals(
        self,
        metrics: list[CampaignMetrics],
        tuning: TuningConfig,
    ) -> dict[str, EntitySignal]:
        by_account: dict[str, list[CampaignMetrics]] = defaultdict(list)
        for m in metrics:
            by_account[m.account_id].append(m)
        sem = asyncio.Semaphore(self._config.max_concurrent_entities)

        async def _one(m: CampaignMetrics) -> EntitySignal:
            async with sem:
                history = await self._ws.samples.history(m.entity_id)
                return build_signal(m, history, by_account[m.account_id], tuning)

        signals = await asyncio.gather(*(_one(m) for m in metrics))
        return {s.entity_id: s for s in signals}

    def _record(self, entity_id: str, result: ScreeningResult, signal: EntitySignal) -> ScreeningRecord:
        m = signal.metrics
        return ScreeningRecord(
            entity_id=entity_id,
            verdict=result.verdict,
            skill_id=result.skill_id,
            reason=result.reason,
            confidence=signal.quality.confidence,
            trend=signal.trend.direction,
            max_severity=signal.max_severity,
            spend_3d=m.total_spend_3d,
            roas_3d=m.avg_roas_3d,
        )

    async def _decide(
        self,
        classifications: list[Classification],
        metrics: dict[str, CampaignMetrics],
        tuning: TuningConfig,
        corrections: _Corrections,
        when: datetime,
        alerts: list[str],
        errors: list[str],
        cycle_id: str = "",
    ) -> tuple[list[Action], str, str, Counter]:
        cfg = self._config
        hits: Counter = Counter()
        if not classifications:
            return [], "none", "", hits

        cooling = await self._ws.actions.recently_executed_entities(when - timedelta(hours=cfg.cooldown_hours))
        recent = await self._ws.actions.recently_executed_entities(
            when - timedelta(hours=cfg.recent_operation_hours)
        )
        candidates = [
            DecisionCandidate(
                metrics=metrics[c.entity_id],
                label=c.label,
                label_reason=c.reason,
                recently_operated=c.entity_id in recent,
            )
            for c in classifications
        ]
        goals = [g for g in await self._ws.skills.list_skills(kind="goal") if isinstance(g, GoalSkill)]
        engine = DecisionEngine(self._llm, tuning.decision, timeout=cfg.llm_timeout_seconds)

        try:
            outcome = await engine.decide(
                candidates,
                await self._ws.skills.rules("action"),
                goals=goals,
                context=await self._ws.librarian.decision_context(),
                cooling_down=cooling,
                manual_only=corrections.manual_only,
            )
        except StrategyUnavailable as e:
            _logger.warning("No decision strategy produced a result: %s", e)
            errors.append(f"decide: {e}")
            return [], "none", "", hits

        alerts.extend(outcome.result.alerts)
        created = []
        for proposal in outcome.result.proposals:
            action = await self._create(proposal, cycle_id=cycle_id)
            if action is not None:
                created.append(action)
                if action.skill_id:
                    hits[action.skill_id] += 1
        return created, outcome.strategy, outcome.result.summary, hits

    async def _create(self, proposal: ActionProposal, cycle_id: str = "") -> Action | None:
        try:
            return await self._ws.actions.create(proposal, cycle_id=cycle_id)
        except DuplicateActionError as e:
            _logger.info("Skipping duplicate proposal: %s", e)
            return None

    async def _retry_failed(self, items: list[CorrectiveItem], cycle_id: str) -> list[Action]:
        """Re-queue failed executions flagged by the auditor, always for human approval."""
        created = []
        for item in items:
            if not item.action_id:
                continue
            try:
                failed = await self._ws.actions.get(item.action_id)
            except ActionNotFoundError as e:
                _logger.warning("Retry correction %s: %s", item.id, e)
                continue
            proposal = ActionProposal(
                entity_id=failed.entity_id,
                entity_name=failed.entity_name,
                account_id=failed.account_id,
                platform=failed.platform,
                action_type=failed.action_type,
                params=failed.params,
                reason=f"retry of {failed.id} after failure: {failed.last_error}",
                skill_id=failed.skill_id,
                auto=False,
                label=failed.label,
                metrics_before=failed.metrics_before,
            )
            action = await self._create(proposal, cycle_id=cycle_id)
            if action is not None:
                created.append(action)
        return created

    async def _execute(self, created: list[Action], errors: list[str]) -> list[Action]:
        # Auto actions left pending by an earlier cycle run alongside this cycle's
        backlog = await self._ws.actions.list_actions(status=ActionStatus.PENDING, limit=500)
        by_id = {a.id: a for a in backlog if a.auto}
        by_id.update({a.id: a for a in created if a.auto and a.status == ActionStatus.PENDING})
        auto = sorted(by_id.values(), key=lambda a: a.created_at)
        if self._executor is None or not self._executor.configured:
            if auto:
                errors.append(f"execute: no platform executor configured; {len(auto)} auto actions left pending")
            return []

        finished = []
        for action in auto:
            try:
                finished.append(await self._executor.execute(action.id))
            except ActionStateError as e:
                _logger.info("Not executing %s: %s", action.id, e)
        finished.extend(await self._executor.execute_approved())
        return finished

    async def _load_corrections(self) -> _Corrections:
        out = _Corrections(items=await self._ws.audits.pending_corrections())
        for item in out.items:
            if item.kind == CorrectiveKind.RESCREEN:
                out.rescreen[item.entity_id] = item.reason or "audit rescreen"
            elif item.kind == CorrectiveKind.OVERRIDE_DECISION:
                out.manual_only.add(item.entity_id)
            elif item.kind == CorrectiveKind.RETRY_EXECUTE:
                out.retry.append(item)
        return out

    async def _learn_preferences(self, when: datetime) -> None:
        since = self._cache.started_at or when - timedelta(days=1)
        rejected = await self._ws.actions.list_actions(status=ActionStatus.REJECTED, since=since)
        if rejected:
            await self._ws.librarian.learn_preferences(rejected)

    @staticmethod
    def _action_row(action: Action) -> dict[str, Any]:
        return {
            "id": action.id,
            "entity_id": action.entity_id,
            "action_type": action.action_type.value,
            "status": action.status.value,
            "auto": action.auto,
            "reason": action.reason,
            "change": action.describe(),
            "last_error": action.last_error,
        }

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        await self._bus.emit(topic, data, source="orchestrator")
