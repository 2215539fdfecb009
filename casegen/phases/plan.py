"""
Plan Phase - Case Architecture

Four sequential sub-steps, each reading its inputs from context and writing
one artifact:
- plan_core:     seed -> plan/core (premise + applied difficulty profile)
- plan_suspects: plan/core -> plan/suspects (S001...)
- plan_timeline: plan/core + plan/suspects -> plan/timeline (E001...)
- plan_evidence: core + suspects + timeline -> plan/evidence (EV001... + golden truth)
"""

import logging
import re
from typing import List, Optional

from .base import PhaseService, to_prompt_json
from ..core.difficulty import get_profile, in_range, resolve_difficulty
from ..core.timestamps import has_offset, parse_iso
from ..models.schemas import (
    CaseSeed,
    EvidencePlan,
    PlanCore,
    SuspectsPlan,
    TimelinePlan,
)
from ..prompts.plan import (
    PLAN_CORE_SYSTEM_PROMPT,
    PLAN_CORE_USER_PROMPT_TEMPLATE,
    PLAN_EVIDENCE_SYSTEM_PROMPT,
    PLAN_EVIDENCE_USER_PROMPT_TEMPLATE,
    PLAN_SUSPECTS_SYSTEM_PROMPT,
    PLAN_SUSPECTS_USER_PROMPT_TEMPLATE,
    PLAN_TIMELINE_SYSTEM_PROMPT,
    PLAN_TIMELINE_USER_PROMPT_TEMPLATE,
)

logger = logging.getLogger("casegen")

SEED_PATH = "seed"
PLAN_CORE_PATH = "plan/core"
PLAN_SUSPECTS_PATH = "plan/suspects"
PLAN_TIMELINE_PATH = "plan/timeline"
PLAN_EVIDENCE_PATH = "plan/evidence"

SUSPECT_ID_RE = re.compile(r"^S\d{3}$")
EVENT_ID_RE = re.compile(r"^E\d{3}$")
FACT_ID_RE = re.compile(r"^F\d{3}$")


def _duplicates(ids: List[str]) -> List[str]:
    seen, dupes = set(), []
    for item in ids:
        if item in seen and item not in dupes:
            dupes.append(item)
        seen.add(item)
    return dupes


# ============================================================================
# Validation
# ============================================================================

def validate_core(core: PlanCore) -> List[str]:
    errors = []
    if not core.title.strip():
        errors.append("plan/core: title is empty")
    if not core.overview.strip():
        errors.append("plan/core: overview is empty")
    return errors


def validate_suspects(plan: SuspectsPlan) -> List[str]:
    errors = []
    ids = plan.ids()
    if not ids:
        errors.append("plan/suspects: no suspects generated")
    for suspect_id in ids:
        if not SUSPECT_ID_RE.match(suspect_id):
            errors.append(f"plan/suspects: invalid suspect id '{suspect_id}' (expected S001 format)")
    for dupe in _duplicates(ids):
        errors.append(f"plan/suspects: duplicate suspect id '{dupe}'")
    return errors


def validate_timeline(plan: TimelinePlan, suspect_ids: List[str]) -> List[str]:
    errors = []
    ids = plan.ids()
    if not ids:
        errors.append("plan/timeline: no events generated")
    known = set(suspect_ids)
    for event in plan.events:
        if not EVENT_ID_RE.match(event.event_id):
            errors.append(f"plan/timeline: invalid event id '{event.event_id}' (expected E001 format)")
        if not has_offset(event.timestamp):
            errors.append(f"plan/timeline: {event.event_id} timestamp '{event.timestamp}' lacks an ISO-8601 offset")
        for suspect_id in event.suspect_ids:
            if suspect_id not in known:
                errors.append(f"plan/timeline: {event.event_id} references unknown suspect '{suspect_id}'")
    for dupe in _duplicates(ids):
        errors.append(f"plan/timeline: duplicate event id '{dupe}'")
    return errors


def validate_evidence(plan: EvidencePlan) -> List[str]:
    errors = []
    if not plan.main_elements:
        errors.append("plan/evidence: mainElements is empty")
    evidence_ids = set(plan.evidence_ids())
    fact_ids = [f.fact_id for f in plan.golden_truth]
    for fact in plan.golden_truth:
        if not FACT_ID_RE.match(fact.fact_id):
            errors.append(f"plan/evidence: invalid fact id '{fact.fact_id}' (expected F001 format)")
        unknown = [e for e in fact.supported_by if e not in evidence_ids]
        if unknown:
            errors.append(f"plan/evidence: {fact.fact_id} cites unknown evidence {', '.join(unknown)}")
        if len(set(fact.supported_by)) < fact.min_supports:
            errors.append(
                f"plan/evidence: {fact.fact_id} has {len(set(fact.supported_by))} supports, needs {fact.min_supports}"
            )
    for dupe in _duplicates(fact_ids):
        errors.append(f"plan/evidence: duplicate fact id '{dupe}'")
    return errors


def timeline_order_warnings(plan: TimelinePlan) -> List[str]:
    warnings = []
    previous = None
    for event in plan.events:
        current = parse_iso(event.timestamp)
        if current is None or current.tzinfo is None:
            continue
        if previous is not None and current < previous[1]:
            warnings.append(f"{event.event_id} occurs before {previous[0]}")
        previous = (event.event_id, current)
    return warnings


# ============================================================================
# Service
# ============================================================================

class PlanService(PhaseService):
    """Builds the case plan from a seed."""

    phase = "plan"

    async def plan_core(self, case_id: str, seed: Optional[CaseSeed] = None) -> PlanCore:
        """Generate plan/core from the seed (loaded from context when omitted)."""
        if seed is None:
            seed = await self.context.require(case_id, SEED_PATH, CaseSeed, phase=self.phase)
        tier = resolve_difficulty(seed.difficulty)
        profile = get_profile(tier)
        logger.info(f"[plan_core] Planning case {case_id} at difficulty {tier}")

        system_prompt = PLAN_CORE_SYSTEM_PROMPT.format(
            difficulty=tier,
            description=profile.description,
            suspects_min=profile.suspects[0],
            suspects_max=profile.suspects[1],
            documents_min=profile.documents[0],
            documents_max=profile.documents[1],
            evidences_min=profile.evidences[0],
            evidences_max=profile.evidences[1],
            red_herrings=profile.red_herrings,
            gated_documents=profile.gated_documents,
            forensics_complexity=profile.forensics_complexity,
            duration_min=profile.estimated_duration_minutes[0],
            duration_max=profile.estimated_duration_minutes[1],
        )
        user_prompt = PLAN_CORE_USER_PROMPT_TEMPLATE.format(
            title=seed.title or "(choose one)",
            location=seed.location or "(choose one)",
            incident_type=seed.incident_type or "(choose one)",
            difficulty=tier,
            timezone=seed.timezone,
            target_duration=seed.target_duration_minutes or "(within the profile)",
            constraints=seed.constraints or "none",
        )

        core = await self.generate_model(
            case_id, "plan_core", system_prompt, user_prompt, "PlanCore", PlanCore, validate=validate_core
        )
        # The seed and the profile table are authoritative for these fields
        core.difficulty = tier
        core.timezone = seed.timezone
        core.profile = profile.to_dict()
        if seed.target_duration_minutes:
            core.target_duration_minutes = seed.target_duration_minutes
        elif not core.target_duration_minutes:
            low, high = profile.estimated_duration_minutes
            core.target_duration_minutes = (low + high) // 2

        await self.context.save(case_id, PLAN_CORE_PATH, core)
        self.log_step(case_id, "plan_core", f"'{core.title}' at {core.location}")
        return core

    async def plan_suspects(self, case_id: str) -> SuspectsPlan:
        core = await self.context.require(case_id, PLAN_CORE_PATH, PlanCore, phase=self.phase)
        profile = get_profile(core.difficulty)
        low, high = profile.suspects

        plan = await self.generate_model(
            case_id,
            "plan_suspects",
            PLAN_SUSPECTS_SYSTEM_PROMPT.format(difficulty=core.difficulty, suspects_min=low, suspects_max=high),
            PLAN_SUSPECTS_USER_PROMPT_TEMPLATE.format(
                core_json=to_prompt_json(core), suspects_min=low, suspects_max=high
            ),
            "PlanSuspects",
            SuspectsPlan,
            validate=validate_suspects,
        )
        if not in_range(len(plan.suspects), profile.suspects):
            logger.warning(
                f"[plan_suspects] {len(plan.suspects)} suspects outside {low}-{high} for case {case_id}"
            )

        await self.context.save(case_id, PLAN_SUSPECTS_PATH, plan)
        self.log_step(case_id, "plan_suspects", f"{len(plan.suspects)} suspects: {', '.join(plan.ids())}")
        return plan

    async def plan_timeline(self, case_id: str) -> TimelinePlan:
        core = await self.context.require(case_id, PLAN_CORE_PATH, PlanCore, phase=self.phase)
        suspects = await self.context.require(case_id, PLAN_SUSPECTS_PATH, SuspectsPlan, phase=self.phase)

        plan = await self.generate_model(
            case_id,
            "plan_timeline",
            PLAN_TIMELINE_SYSTEM_PROMPT.format(timezone=core.timezone),
            PLAN_TIMELINE_USER_PROMPT_TEMPLATE.format(
                core_json=to_prompt_json(core),
                suspects_json=to_prompt_json(suspects),
                timezone=core.timezone,
            ),
            "PlanTimeline",
            TimelinePlan,
            validate=lambda p: validate_timeline(p, suspects.ids()),
        )
        for warning in timeline_order_warnings(plan):
            logger.warning(f"[plan_timeline] Out-of-order event for case {case_id}: {warning}")

        await self.context.save(case_id, PLAN_TIMELINE_PATH, plan)
        self.log_step(case_id, "plan_timeline", f"{len(plan.events)} events")
        return plan

    async def plan_evidence(self, case_id: str) -> EvidencePlan:
        core = await self.context.require(case_id, PLAN_CORE_PATH, PlanCore, phase=self.phase)
        suspects = await self.context.require(case_id, PLAN_SUSPECTS_PATH, SuspectsPlan, phase=self.phase)
        timeline = await self.context.require(case_id, PLAN_TIMELINE_PATH, TimelinePlan, phase=self.phase)
        profile = get_profile(core.difficulty)
        low, high = profile.evidences

        plan = await self.generate_model(
            case_id,
            "plan_evidence",
            PLAN_EVIDENCE_SYSTEM_PROMPT.format(
                difficulty=core.difficulty,
                evidences_min=low,
                evidences_max=high,
                red_herrings=profile.red_herrings,
            ),
            PLAN_EVIDENCE_USER_PROMPT_TEMPLATE.format(
                core_json=to_prompt_json(core),
                suspects_json=to_prompt_json(suspects),
                timeline_json=to_prompt_json(timeline),
                evidences_min=low,
                evidences_max=high,
            ),
            "PlanEvidence",
            EvidencePlan,
            validate=validate_evidence,
        )
        if not in_range(len(plan.main_elements), profile.evidences):
            logger.warning(
                f"[plan_evidence] {len(plan.main_elements)} evidence items outside {low}-{high} for case {case_id}"
            )

        await self.context.save(case_id, PLAN_EVIDENCE_PATH, plan)
        self.log_step(
            case_id,
            "plan_evidence",
            f"{len(plan.main_elements)} evidence items, {len(plan.golden_truth)} golden truth facts",
        )
        return plan

    async def run(self, case_id: str, seed: Optional[CaseSeed] = None) -> None:
        """Run the four plan sub-steps in order."""
        await self.plan_core(case_id, seed)
        await self.plan_suspects(case_id)
        await self.plan_timeline(case_id)
        await self.plan_evidence(case_id)
