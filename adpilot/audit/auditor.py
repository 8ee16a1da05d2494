"""Auditor — second opinion on earlier cycles, using newer numbers.

Runs on its own schedule. Three checks:
  - screener: what a completed cycle 2-4h ago let through (skip/watch)
    that is now losing money, and what it escalated that turned out fine
  - decision: recently executed actions, judged the same way reflection
    would judge them (without touching skill stats)
  - execution: recent executions that failed

Findings are handed to the librarian and turned into corrective items
for the next cycle. The auditor never changes an action or a skill.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from adpilot.actions.store import ActionStore
from adpilot.audit.model import (
    AuditReport,
    CorrectiveItem,
    CorrectiveKind,
    Finding,
    FindingType,
)
from adpilot.audit.store import AuditStore
from adpilot.events.bus import EventBus
from adpilot.knowledge.librarian import Librarian
from adpilot.learning.reflection import ReflectionEngine
from adpilot.snapshots import Snapshot, SnapshotStore
from adpilot.tuning import AuditConfig
from adpilot.types import ActionStatus, Assessment, CampaignMetrics, Verdict, utcnow

_logger = logging.getLogger(__name__)


class Auditor:
    def __init__(
        self,
        snapshots: SnapshotStore,
        actions: ActionStore,
        store: AuditStore,
        librarian: Librarian,
        reflection: ReflectionEngine,
        config: AuditConfig | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._snapshots = snapshots
        self._actions = actions
        self._store = store
        self._librarian = librarian
        self._reflection = reflection
        self._config = config or AuditConfig()
        self._bus = event_bus

    async def run(
        self,
        current: dict[str, CampaignMetrics],
        now: datetime | None = None,
    ) -> AuditReport:
        when = now or utcnow()
        report = AuditReport(created_at=when)

        snapshot = await self._snapshots.latest_completed_between(
            when - timedelta(hours=self._config.snapshot_max_age_hours),
            when - timedelta(hours=self._config.snapshot_min_age_hours),
        )
        if snapshot is not None:
            report.snapshot_id = snapshot.id
            self._audit_screening(snapshot, current, report)
        else:
            _logger.info("No completed snapshot 2-4h old; skipping screener audit")

        await self._audit_actions(current, when, report)

        for finding in report.findings:
            if finding.suggested is not None:
                report.corrections.append(CorrectiveItem(
                    report_id=report.id,
                    kind=finding.suggested,
                    entity_id=finding.entity_id,
                    action_id=finding.action_id,
                    reason=finding.message,
                    created_at=when,
                ))

        await self._store.save(report)
        await self._librarian.ingest_audit(report)

        _logger.info(
            "Audit %s: screener %s/%s, decision %s/%s, execution %s/%s issues, %d corrections",
            report.id,
            report.screener.issues, report.screener.checked,
            report.decision.issues, report.decision.checked,
            report.execution.issues, report.execution.checked,
            len(report.corrections),
        )
        if self._bus:
            await self._bus.emit("audit.completed", {
                "report_id": report.id,
                "findings": len(report.findings),
                "accuracy": report.overall_accuracy,
            }, source="auditor")
        return report

    def _audit_screening(
        self,
        snapshot: Snapshot,
        current: dict[str, CampaignMetrics],
        report: AuditReport,
    ) -> None:
        cfg = self._config
        acted_on = {a.get("entity_id") for a in snapshot.actions}

        for record in snapshot.screening:
            m = current.get(record.entity_id)
            if m is None:
                continue
            report.screener.checked += 1
            spend, roas = m.today_spend, m.today_roas

            if record.verdict in (Verdict.SKIP, Verdict.WATCH):
                message = None
                if spend > cfg.miss_min_spend and roas < cfg.miss_max_roas:
                    message = (
                        f"screened {record.verdict.value} earlier; now ${spend:.0f} spent at roas {roas:.2f}"
                    )
                elif spend > cfg.miss_zero_conversion_spend and m.today_conversions == 0:
                    message = f"screened {record.verdict.value} earlier; now ${spend:.0f} spent with no conversions"
                if message:
                    report.screener.issues += 1
                    report.findings.append(Finding(
                        type=FindingType.SCREENER_MISS,
                        severity=4,
                        entity_id=record.entity_id,
                        skill_id=record.skill_id,
                        message=message,
                        suggested=CorrectiveKind.RESCREEN,
                    ))

            elif record.verdict == Verdict.NEEDS_DECISION and record.entity_id not in acted_on:
                if roas > cfg.overalert_min_roas and spend > cfg.overalert_min_spend:
                    report.screener.issues += 1
                    report.findings.append(Finding(
                        type=FindingType.SCREENER_OVERALERT,
                        severity=2,
                        entity_id=record.entity_id,
                        skill_id=record.skill_id,
                        message=f"escalated earlier without action; now healthy at roas {roas:.2f} on ${spend:.0f}",
                    ))

    async def _audit_actions(
        self,
        current: dict[str, CampaignMetrics],
        now: datetime,
        report: AuditReport,
    ) -> None:
        recent = await self._actions.executed_between(
            now - timedelta(hours=self._config.execution_window_hours),
            now,
            statuses=(ActionStatus.EXECUTED, ActionStatus.FAILED),
        )
        for action in recent:
            if action.audited or not await self._actions.claim_audit(action.id):
                continue
            report.execution.checked += 1

            if action.status == ActionStatus.FAILED:
                report.execution.issues += 1
                report.findings.append(Finding(
                    type=FindingType.EXECUTION_FAILED,
                    severity=3,
                    entity_id=action.entity_id,
                    action_id=action.id,
                    skill_id=action.skill_id,
                    message=f"{action.action_type.value} failed after {action.attempts} attempts: {action.last_error}",
                    suggested=CorrectiveKind.RETRY_EXECUTE,
                ))
                continue

            report.decision.checked += 1
            judged = await self._reflection.assess(action, current.get(action.entity_id))
            if judged.assessment == Assessment.WRONG:
                report.decision.issues += 1
                report.findings.append(Finding(
                    type=FindingType.DECISION_WRONG,
                    severity=3,
                    entity_id=action.entity_id,
                    action_id=action.id,
                    skill_id=action.skill_id,
                    message=f"{action.action_type.value} looks wrong: {judged.reason}",
                    suggested=CorrectiveKind.OVERRIDE_DECISION,
                ))
