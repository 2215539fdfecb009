"""
Expand Phase - Suspects, Evidence, Timeline and Relationship Synthesis

Per-suspect and per-evidence expansions fan out under the generation
concurrency cap; each task writes its own path, so no coordination is needed.
The timeline expansion keeps the planned event ids, and the relationship
synthesis runs last over everything the plan and expansion produced.

Every output is checked for referential closure: a suspect, evidence, event or
fact id is only accepted when the plan defines it.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List

from .base import PhaseService, to_prompt_json
from .plan import PLAN_CORE_PATH, PLAN_EVIDENCE_PATH, PLAN_SUSPECTS_PATH, PLAN_TIMELINE_PATH
from ..core.difficulty import get_profile
from ..core.errors import CaseGenError
from ..core.json_repair import safe_join
from ..core.timestamps import has_offset
from ..models.schemas import (
    EvidencePlan,
    ExpandedEvidence,
    ExpandedSuspect,
    ExpandedTimeline,
    PlanCore,
    PlannedSuspect,
    RelationshipSynthesis,
    SuspectsPlan,
    TimelinePlan,
)
from ..prompts.expand import (
    EXPAND_EVIDENCE_SYSTEM_PROMPT,
    EXPAND_EVIDENCE_USER_PROMPT_TEMPLATE,
    EXPAND_SUSPECT_SYSTEM_PROMPT,
    EXPAND_SUSPECT_USER_PROMPT_TEMPLATE,
    EXPAND_TIMELINE_SYSTEM_PROMPT,
    EXPAND_TIMELINE_USER_PROMPT_TEMPLATE,
    SYNTHESIZE_RELATIONS_SYSTEM_PROMPT,
    SYNTHESIZE_RELATIONS_USER_PROMPT_TEMPLATE,
)

logger = logging.getLogger("casegen")

EXPAND_TIMELINE_PATH = "expand/timeline"
EXPAND_RELATIONS_PATH = "expand/relations"


def suspect_path(suspect_id: str) -> str:
    return f"expand/suspects/{suspect_id}"


def evidence_path(evidence_id: str) -> str:
    return f"expand/evidence/{evidence_id}"


@dataclass
class PlanIndex:
    """The id universe a case plan defines."""
    suspect_ids: List[str] = field(default_factory=list)
    event_ids: List[str] = field(default_factory=list)
    evidence_ids: List[str] = field(default_factory=list)
    fact_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_plan(cls, suspects: SuspectsPlan, timeline: TimelinePlan, evidence: EvidencePlan) -> "PlanIndex":
        return cls(
            suspect_ids=suspects.ids(),
            event_ids=timeline.ids(),
            evidence_ids=evidence.evidence_ids(),
            fact_ids=[f.fact_id for f in evidence.golden_truth],
        )

    @property
    def all_ids(self) -> set:
        return set(self.suspect_ids) | set(self.event_ids) | set(self.evidence_ids) | set(self.fact_ids)


def _unknown(label: str, ids: List[str], known: List[str]) -> List[str]:
    known_set = set(known)
    return [f"{label}: unknown id '{i}'" for i in ids if i not in known_set]


# ============================================================================
# Validation
# ============================================================================

def validate_expanded_suspect(expanded: ExpandedSuspect, planned: PlannedSuspect, index: PlanIndex) -> List[str]:
    errors = []
    if expanded.suspect_id != planned.suspect_id:
        errors.append(f"suspectId '{expanded.suspect_id}' does not match planned '{planned.suspect_id}'")
    errors.extend(
        _unknown(f"{planned.suspect_id}.relationships", [r.target_id for r in expanded.relationships], index.suspect_ids)
    )
    return errors


def validate_expanded_evidence(expanded: ExpandedEvidence, evidence_id: str, index: PlanIndex) -> List[str]:
    errors = []
    if expanded.evidence_id != evidence_id:
        errors.append(f"evidenceId '{expanded.evidence_id}' does not match planned '{evidence_id}'")
    errors.extend(_unknown(f"{evidence_id}.linkedSuspectIds", expanded.linked_suspect_ids, index.suspect_ids))
    errors.extend(_unknown(f"{evidence_id}.linkedEventIds", expanded.linked_event_ids, index.event_ids))
    errors.extend(_unknown(f"{evidence_id}.linkedFactIds", expanded.linked_fact_ids, index.fact_ids))
    for entry in expanded.chain_of_custody:
        if not has_offset(entry.timestamp):
            errors.append(f"{evidence_id}.chainOfCustody: timestamp '{entry.timestamp}' lacks an ISO-8601 offset")
    return errors


def validate_expanded_timeline(expanded: ExpandedTimeline, planned: TimelinePlan) -> List[str]:
    planned_ids = planned.ids()
    expanded_ids = expanded.ids()
    errors = []
    missing = [i for i in planned_ids if i not in expanded_ids]
    extra = [i for i in expanded_ids if i not in planned_ids]
    if missing:
        errors.append(f"expand/timeline: missing planned events {', '.join(missing)}")
    if extra:
        errors.append(f"expand/timeline: events not in the plan {', '.join(extra)}")
    if len(expanded_ids) != len(set(expanded_ids)):
        errors.append("expand/timeline: duplicate event ids")
    return errors


def validate_relations(relations: RelationshipSynthesis, index: PlanIndex) -> List[str]:
    errors = []
    for relation in relations.suspect_relations:
        errors.extend(_unknown("suspectRelations", [relation.from_id, relation.to_id], index.suspect_ids))
    for link in relations.evidence_links:
        errors.extend(_unknown("evidenceLinks", [link.evidence_id], index.evidence_ids))
        errors.extend(_unknown(f"evidenceLinks[{link.evidence_id}]", link.suspect_ids, index.suspect_ids))
        errors.extend(_unknown(f"evidenceLinks[{link.evidence_id}]", link.event_ids, index.event_ids))
        errors.extend(_unknown(f"evidenceLinks[{link.evidence_id}]", link.fact_ids, index.fact_ids))
    for link in relations.event_links:
        errors.extend(_unknown("eventLinks", [link.from_id, link.to_id], index.event_ids))
    for alibi in relations.alibi_network:
        errors.extend(_unknown("alibiNetwork", [alibi.suspect_id], index.suspect_ids))
    known = index.all_ids
    for contradiction in relations.contradiction_matrix:
        errors.extend(f"contradictionMatrix: unknown id '{i}'" for i in contradiction.subject_ids if i not in known)
    return errors


def referential_closure_errors(
    index: PlanIndex,
    suspects: List[ExpandedSuspect],
    evidence: List[ExpandedEvidence],
    timeline: ExpandedTimeline,
) -> List[str]:
    """Every suspect/evidence/event id in the expansion must exist in the plan."""
    errors = []
    errors.extend(_unknown("expand/suspects", [s.suspect_id for s in suspects], index.suspect_ids))
    errors.extend(_unknown("expand/evidence", [e.evidence_id for e in evidence], index.evidence_ids))
    errors.extend(_unknown("expand/timeline", timeline.ids(), index.event_ids))
    for item in evidence:
        errors.extend(_unknown(item.evidence_id, item.linked_suspect_ids, index.suspect_ids))
        errors.extend(_unknown(item.evidence_id, item.linked_event_ids, index.event_ids))
        errors.extend(_unknown(item.evidence_id, item.linked_fact_ids, index.fact_ids))
    return errors


# ============================================================================
# Service
# ============================================================================

class ExpandService(PhaseService):
    """Expands every planned suspect, evidence item and event."""

    phase = "expand"

    async def _load_plan(self, case_id: str):
        core = await self.context.require(case_id, PLAN_CORE_PATH, PlanCore, phase=self.phase)
        suspects = await self.context.require(case_id, PLAN_SUSPECTS_PATH, SuspectsPlan, phase=self.phase)
        timeline = await self.context.require(case_id, PLAN_TIMELINE_PATH, TimelinePlan, phase=self.phase)
        evidence = await self.context.require(case_id, PLAN_EVIDENCE_PATH, EvidencePlan, phase=self.phase)
        return core, suspects, timeline, evidence

    def _complexity_factors(self, core: PlanCore) -> str:
        return safe_join(list(get_profile(core.difficulty).complexity_factors)) or "none"

    async def expand_suspect(
        self, case_id: str, core: PlanCore, suspect: PlannedSuspect, index: PlanIndex
    ) -> ExpandedSuspect:
        others = [i for i in index.suspect_ids if i != suspect.suspect_id]
        expanded = await self.generate_model(
            case_id,
            f"expand_suspect_{suspect.suspect_id}",
            EXPAND_SUSPECT_SYSTEM_PROMPT.format(
                difficulty=core.difficulty, complexity_factors=self._complexity_factors(core)
            ),
            EXPAND_SUSPECT_USER_PROMPT_TEMPLATE.format(
                core_json=to_prompt_json(core),
                suspect_id=suspect.suspect_id,
                name=suspect.name,
                role=suspect.role,
                initial_motive=suspect.initial_motive or "(none stated)",
                other_suspect_ids=safe_join(others) or "none",
            ),
            "ExpandSuspect",
            ExpandedSuspect,
            validate=lambda e: validate_expanded_suspect(e, suspect, index),
            item_id=suspect.suspect_id,
        )
        await self.context.save(case_id, suspect_path(suspect.suspect_id), expanded)
        logger.info(f"[expand_suspect] Expanded {suspect.suspect_id} for case {case_id}")
        return expanded

    async def expand_evidence(
        self,
        case_id: str,
        core: PlanCore,
        evidence_id: str,
        element_type: str,
        evidence_plan: EvidencePlan,
        index: PlanIndex,
    ) -> ExpandedEvidence:
        factors = self._complexity_factors(core)
        expanded = await self.generate_model(
            case_id,
            f"expand_evidence_{evidence_id}",
            EXPAND_EVIDENCE_SYSTEM_PROMPT.format(
                difficulty=core.difficulty,
                complexity_factors=factors,
                evidence_id=evidence_id,
                element_type=element_type,
            ),
            EXPAND_EVIDENCE_USER_PROMPT_TEMPLATE.format(
                core_json=to_prompt_json(core),
                evidence_id=evidence_id,
                element_type=element_type,
                suspect_ids=safe_join(index.suspect_ids),
                event_ids=safe_join(index.event_ids),
                facts_json=to_prompt_json(evidence_plan.golden_truth),
            ),
            "ExpandEvidence",
            ExpandedEvidence,
            validate=lambda e: validate_expanded_evidence(e, evidence_id, index),
            item_id=evidence_id,
        )
        if not expanded.element_type:
            expanded.element_type = element_type
        await self.context.save(case_id, evidence_path(evidence_id), expanded)
        logger.info(f"[expand_evidence] Expanded {evidence_id} ({element_type}) for case {case_id}")
        return expanded

    async def expand_timeline(
        self, case_id: str, core: PlanCore, timeline: TimelinePlan, suspects: SuspectsPlan
    ) -> ExpandedTimeline:
        expanded = await self.generate_model(
            case_id,
            "expand_timeline",
            EXPAND_TIMELINE_SYSTEM_PROMPT.format(
                difficulty=core.difficulty, complexity_factors=self._complexity_factors(core)
            ),
            EXPAND_TIMELINE_USER_PROMPT_TEMPLATE.format(
                core_json=to_prompt_json(core),
                timeline_json=to_prompt_json(timeline),
                suspects_json=to_prompt_json(suspects),
            ),
            "ExpandTimeline",
            ExpandedTimeline,
            validate=lambda e: validate_expanded_timeline(e, timeline),
        )

        # Planned order and timestamps are authoritative
        by_id = {e.event_id: e for e in expanded.events}
        ordered = []
        for planned in timeline.events:
            event = by_id[planned.event_id]
            if event.timestamp != planned.timestamp:
                logger.warning(
                    f"[expand_timeline] {planned.event_id} timestamp changed from {planned.timestamp} "
                    f"to {event.timestamp} for case {case_id}; keeping the planned value"
                )
                event.timestamp = planned.timestamp
            if not event.title:
                event.title = planned.title
            ordered.append(event)
        expanded.events = ordered

        await self.context.save(case_id, EXPAND_TIMELINE_PATH, expanded)
        logger.info(f"[expand_timeline] Expanded {len(ordered)} events for case {case_id}")
        return expanded

    async def synthesize_relations(
        self,
        case_id: str,
        core: PlanCore,
        suspects: List[ExpandedSuspect],
        evidence_plan: EvidencePlan,
        timeline: ExpandedTimeline,
        index: PlanIndex,
    ) -> RelationshipSynthesis:
        relations = await self.generate_model(
            case_id,
            "synthesize_relations",
            SYNTHESIZE_RELATIONS_SYSTEM_PROMPT.format(difficulty=core.difficulty),
            SYNTHESIZE_RELATIONS_USER_PROMPT_TEMPLATE.format(
                core_json=to_prompt_json(core),
                suspects_json=to_prompt_json(suspects),
                evidence_ids=safe_join(index.evidence_ids),
                timeline_json=to_prompt_json(timeline),
                facts_json=to_prompt_json(evidence_plan.golden_truth),
            ),
            "RelationshipSynthesis",
            RelationshipSynthesis,
            validate=lambda r: validate_relations(r, index),
        )
        await self.context.save(case_id, EXPAND_RELATIONS_PATH, relations)
        logger.info(
            f"[synthesize_relations] Case {case_id}: {len(relations.suspect_relations)} suspect relations, "
            f"{len(relations.evidence_links)} evidence links, {len(relations.contradiction_matrix)} contradictions"
        )
        return relations

    async def run(self, case_id: str) -> Dict[str, int]:
        """
        Expand the whole plan.

        Returns:
            Counts of expanded suspects, evidence items and events

        Raises:
            CaseGenError: an expansion failed after its retries (siblings still
                finish first), or the result is not referentially closed
        """
        core, suspects_plan, timeline_plan, evidence_plan = await self._load_plan(case_id)
        index = PlanIndex.from_plan(suspects_plan, timeline_plan, evidence_plan)

        suspect_tasks = [("suspect", s) for s in suspects_plan.suspects]
        evidence_tasks = [("evidence", (evidence_id, element)) for evidence_id, element in zip(
            index.evidence_ids, evidence_plan.main_elements
        )]

        async def worker(task):
            kind, payload = task
            if kind == "suspect":
                return await self.expand_suspect(case_id, core, payload, index)
            evidence_id, element_type = payload
            return await self.expand_evidence(case_id, core, evidence_id, element_type, evidence_plan, index)

        results = await self.fan_out(suspect_tasks + evidence_tasks, worker)
        failures = [r for r in results if isinstance(r, BaseException)]
        if failures:
            for failure in failures:
                logger.error(f"[expand.run] Expansion failed for case {case_id}: {failure}")
            first = failures[0]
            if isinstance(first, CaseGenError):
                raise first
            raise CaseGenError(f"{len(failures)} expansions failed: {first}", case_id=case_id, phase=self.phase) from first

        expanded_suspects = [r for r in results if isinstance(r, ExpandedSuspect)]
        expanded_evidence = [r for r in results if isinstance(r, ExpandedEvidence)]

        timeline = await self.expand_timeline(case_id, core, timeline_plan, suspects_plan)

        errors = referential_closure_errors(index, expanded_suspects, expanded_evidence, timeline)
        if errors:
            raise CaseGenError(
                f"Expansion is not referentially closed: {'; '.join(errors[:5])}", case_id=case_id, phase=self.phase
            )

        await self.synthesize_relations(case_id, core, expanded_suspects, evidence_plan, timeline, index)

        counts = {
            "suspects": len(expanded_suspects),
            "evidence": len(expanded_evidence),
            "events": len(timeline.events),
        }
        self.log_step(case_id, "expand", f"{counts}")
        return counts
