"""Librarian — the only writer of skill state and knowledge entries.

Reflection, evolution and the auditor all report what they learned
here instead of touching skills directly. That keeps one place that
decides how outcomes turn into stats, how findings become knowledge,
when knowledge decays, and when a lesson is trusted enough to become an
experience skill the decision engine reads.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from adpilot.actions.model import Action
from adpilot.audit.model import AuditReport
from adpilot.events.bus import EventBus
from adpilot.exceptions import SkillNotFoundError
from adpilot.knowledge.model import KnowledgeCategory, KnowledgeEntry
from adpilot.knowledge.store import KnowledgeStore
from adpilot.skills.schema import ActionEffect, ExperienceSkill, RuleSkill, SkillBase
from adpilot.skills.store import SkillStore
from adpilot.tuning import KnowledgePolicy
from adpilot.types import Assessment, utcnow

_logger = logging.getLogger(__name__)

MAX_LEARNED_NOTES = 10


@dataclass
class DecayReport:
    examined: int = 0
    decayed: int = 0
    archived: int = 0


def _append_note(skill: SkillBase, note: str) -> None:
    skill.learned_notes = [*skill.learned_notes, note][-MAX_LEARNED_NOTES:]


class Librarian:
    def __init__(
        self,
        skills: SkillStore,
        knowledge: KnowledgeStore,
        event_bus: EventBus | None = None,
    ) -> None:
        self._skills = skills
        self._knowledge = knowledge
        self._bus = event_bus

    # ── Skill stats ──────────────────────────────────────────────

    async def record_triggers(self, counts: dict[str, int], now: datetime | None = None) -> None:
        """Credit skills with the verdicts or proposals they produced this cycle."""
        when = now or utcnow()
        for skill_id, n in counts.items():
            if n <= 0:
                continue

            def _bump(skill: SkillBase, n=n) -> None:
                skill.stats.triggered += n
                skill.stats.last_triggered_at = when

            await self._skills.update(skill_id, _bump, reason=f"triggered x{n}")

    async def record_outcome(
        self,
        action: Action,
        assessment: Assessment,
        lesson: str = "",
    ) -> KnowledgeEntry | None:
        """Apply one reflection outcome to the originating skill and to knowledge."""
        if action.skill_id:
            def _count(skill: SkillBase) -> None:
                if assessment == Assessment.CORRECT:
                    skill.stats.correct += 1
                elif assessment == Assessment.WRONG:
                    skill.stats.wrong += 1
                    if lesson:
                        _append_note(skill, lesson)
                else:
                    skill.stats.unclear += 1

            try:
                await self._skills.update(
                    action.skill_id, _count,
                    reason=f"reflection {assessment.value} on action {action.id}",
                )
            except SkillNotFoundError as e:
                _logger.warning("Could not record outcome on skill %s: %s", action.skill_id, e)

        if assessment == Assessment.UNCLEAR or not lesson:
            return None
        label = action.label.value if action.label else "any"
        return await self.learn(
            key=f"lesson:{action.action_type.value}:{label}:{assessment.value}",
            category=KnowledgeCategory.LESSON,
            content=lesson,
            source=f"reflection:{action.id}",
            metadata={"action_type": action.action_type.value, "label": label,
                      "assessment": assessment.value, "skill_id": action.skill_id},
        )

    async def disable_skill(self, skill_id: str, reason: str, stats: dict[str, Any]) -> SkillBase:
        def _off(skill: SkillBase) -> None:
            skill.enabled = False
            _append_note(skill, f"disabled: {reason}")

        skill = await self._skills.update(skill_id, _off, reason=f"disabled: {reason}")
        await self.learn(
            key=f"evolution:{skill_id}:disabled",
            category=KnowledgeCategory.EVOLUTION,
            content=f"Disabled skill '{skill.name}': {reason}",
            confidence=0.8,
            source="evolution",
            metadata=stats,
        )
        await self._emit("skill.disabled", {"skill_id": skill_id, "name": skill.name, "reason": reason})
        return skill

    async def demote_skill(self, skill_id: str, reason: str, stats: dict[str, Any]) -> SkillBase:
        """Stop a decision skill from auto-executing; its proposals now need approval."""
        def _demote(skill: SkillBase) -> None:
            if isinstance(skill, RuleSkill) and isinstance(skill.effect, ActionEffect):
                skill.effect.auto = False
            _append_note(skill, f"demoted to approval-required: {reason}")

        skill = await self._skills.update(skill_id, _demote, reason=f"demoted: {reason}")
        await self.learn(
            key=f"evolution:{skill_id}:demoted",
            category=KnowledgeCategory.EVOLUTION,
            content=f"Skill '{skill.name}' now requires approval: {reason}",
            confidence=0.7,
            source="evolution",
            metadata=stats,
        )
        await self._emit("skill.demoted", {"skill_id": skill_id, "name": skill.name, "reason": reason})
        return skill

    async def log_proposal(self, key: str, content: str, stats: dict[str, Any]) -> KnowledgeEntry:
        """Record a proposal that is not applied automatically."""
        return await self.learn(
            key=f"proposal:{key}",
            category=KnowledgeCategory.PROPOSAL,
            content=content,
            source="evolution",
            metadata=stats,
        )

    # ── Knowledge ────────────────────────────────────────────────

    async def learn(
        self,
        key: str,
        category: KnowledgeCategory,
        content: str,
        confidence: float = 0.5,
        source: str = "",
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> KnowledgeEntry:
        """Create an entry, or validate the existing entry with the same key."""
        when = now or utcnow()
        policy = await self._skills.knowledge_policy()
        existing = await self._knowledge.get(key)

        if existing is None:
            entry = KnowledgeEntry(
                key=key,
                category=category,
                content=content,
                confidence=confidence,
                validations=1,
                source=source,
                metadata=metadata or {},
                created_at=when,
                updated_at=when,
                last_validated_at=when,
            )
        else:
            entry = existing.model_copy(update={
                "content": content or existing.content,
                "confidence": min(1.0, round(existing.confidence + policy.validation_boost, 4)),
                "validations": existing.validations + 1,
                "archived": False,
                "source": source or existing.source,
                "metadata": {**existing.metadata, **(metadata or {})},
                "updated_at": when,
                "last_validated_at": when,
            })

        entry = await self._maybe_promote(entry, policy)
        return await self._knowledge.save(entry)

    async def _maybe_promote(self, entry: KnowledgeEntry, policy: KnowledgePolicy) -> KnowledgeEntry:
        if entry.high_priority or entry.validations < policy.promote_validations:
            return entry

        entry = entry.model_copy(update={
            "confidence": max(entry.confidence, policy.promoted_confidence),
            "high_priority": True,
        })
        _logger.info("Promoted knowledge %s after %d validations", entry.key, entry.validations)

        if entry.category == KnowledgeCategory.LESSON:
            await self._skills.register(ExperienceSkill(
                name=f"experience:{entry.key}",
                description=f"Promoted from {entry.validations} consistent outcomes",
                scenario=entry.key,
                outcome=str(entry.metadata.get("assessment", "")),
                lesson=entry.content,
                confidence=entry.confidence,
                validations=entry.validations,
                source_key=entry.key,
            ), reason=f"promoted from knowledge {entry.key}")

        await self._emit("knowledge.promoted", {"key": entry.key, "validations": entry.validations})
        return entry

    async def decay(self, now: datetime | None = None) -> DecayReport:
        """Lower confidence of stale entries; archive the ones already under the floor."""
        when = now or utcnow()
        policy = await self._skills.knowledge_policy()
        cutoff = when - timedelta(days=policy.stale_after_days)
        report = DecayReport()

        for entry in await self._knowledge.stale(cutoff):
            report.examined += 1
            if entry.confidence < policy.archive_below:
                await self._knowledge.save(entry.model_copy(update={"archived": True, "updated_at": when}))
                await self._archive_experience(entry.key)
                report.archived += 1
            else:
                lowered = round(max(0.0, entry.confidence - policy.decay_step), 4)
                await self._knowledge.save(entry.model_copy(update={"confidence": lowered, "updated_at": when}))
                report.decayed += 1

        if report.examined:
            _logger.info(
                "Knowledge decay: %d stale, %d decayed, %d archived",
                report.examined, report.decayed, report.archived,
            )
        return report

    async def _archive_experience(self, key: str) -> None:
        for skill in await self._skills.list_skills(kind="experience"):
            if isinstance(skill, ExperienceSkill) and skill.source_key == key:
                def _archive(s: SkillBase) -> None:
                    s.archived = True

                await self._skills.update(skill.id, _archive, reason=f"knowledge {key} archived")

    async def ingest_audit(self, report: AuditReport) -> int:
        """Turn audit findings into knowledge and notes on the skills involved."""
        learned = 0
        for finding in report.findings:
            await self.learn(
                key=f"audit:{finding.type.value}:{finding.entity_id}",
                category=KnowledgeCategory.AUDIT,
                content=finding.message,
                confidence=min(1.0, 0.3 + finding.severity * 0.1),
                source=f"audit:{report.id}",
                metadata={"severity": finding.severity, "skill_id": finding.skill_id},
            )
            learned += 1
            if finding.skill_id:
                def _note(skill: SkillBase, msg=finding.message) -> None:
                    _append_note(skill, f"audit: {msg}")

                try:
                    await self._skills.update(finding.skill_id, _note, reason=f"audit finding {finding.type.value}")
                except SkillNotFoundError as e:
                    _logger.warning("Could not annotate skill %s: %s", finding.skill_id, e)
        return learned

    async def learn_preferences(self, rejected: list[Action], min_count: int = 2) -> list[KnowledgeEntry]:
        """Spot what reviewers keep rejecting."""
        counts = Counter(
            (a.action_type.value, a.label.value if a.label else "any") for a in rejected
        )
        entries = []
        for (action_type, label), n in counts.items():
            if n < min_count:
                continue
            notes = [a.review_note for a in rejected
                     if a.action_type.value == action_type and a.review_note][:3]
            content = f"Reviewers rejected {action_type} on {label} entities {n} times"
            if notes:
                content += f" ({'; '.join(notes)})"
            entries.append(await self.learn(
                key=f"preference:reject:{action_type}:{label}",
                category=KnowledgeCategory.PREFERENCE,
                content=content,
                source="approval_desk",
                metadata={"count": n},
            ))
        return entries

    # ── Reads for other phases ───────────────────────────────────

    async def decision_context(self, limit: int = 10) -> str:
        """Trusted lessons and preferences, rendered for the decision preamble."""
        lines = []
        for skill in (await self._skills.list_skills(kind="experience"))[:limit]:
            if isinstance(skill, ExperienceSkill):
                lines.append(f"- [experience, {skill.confidence:.2f}] {skill.lesson}")
        for entry in await self._knowledge.list_entries(min_confidence=0.6, limit=limit):
            if entry.category in (KnowledgeCategory.LESSON, KnowledgeCategory.PREFERENCE) or entry.high_priority:
                tag = "priority" if entry.high_priority else entry.category.value
                lines.append(f"- [{tag}, {entry.confidence:.2f}] {entry.content}")
        return "\n".join(dict.fromkeys(lines))

    async def skill_report(self) -> list[dict[str, Any]]:
        report = []
        for skill in await self._skills.list_skills(active_only=False):
            accuracy = skill.stats.accuracy
            report.append({
                "id": skill.id,
                "name": skill.name,
                "kind": skill.kind,
                "version": skill.version,
                "enabled": skill.enabled,
                "archived": skill.archived,
                "triggered": skill.stats.triggered,
                "correct": skill.stats.correct,
                "wrong": skill.stats.wrong,
                "accuracy": round(accuracy, 3) if accuracy is not None else None,
            })
        return report

    async def _emit(self, topic: str, data: dict[str, Any]) -> None:
        if self._bus:
            await self._bus.emit(topic, data, source="librarian")
