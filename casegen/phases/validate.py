"""
Validate Phase - Rule Checks and Reviewer Pass

Runs over the normalized case at case/current before red-team analysis.

Key concepts:
- TIMEZONE_CONSISTENCY: createdAt/collectedAt offsets must match the case
  timezone (FAIL); timestamps quoted inside section text only WARN
- REFERENCE_RESOLUTION: document evidence, timeline and media references
  resolve against the plan and the generated media
- GOLDEN_TRUTH_SUPPORT: each sealed fact is backed by at least minSupports
  distinct evidence items that actually appear in the case
- A best-effort generator review; its failure never fails the phase
"""

import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from .plan import PLAN_CORE_PATH, PLAN_EVIDENCE_PATH, PLAN_TIMELINE_PATH
from ..core.context_manager import ContextManager
from ..core.errors import CaseGenError
from ..core.json_repair import extract_json
from ..core.packaging import CASE_PATH
from ..core.timestamps import find_timestamps, matches_timezone
from ..models.schemas import (
    EvidencePlan,
    NormalizedCase,
    PlanCore,
    RuleStatus,
    TimelinePlan,
    ValidationReport,
    ValidationRuleResult,
)
from ..prompts.validate import VALIDATE_REVIEW_SYSTEM_PROMPT, VALIDATE_REVIEW_USER_PROMPT_TEMPLATE

logger = logging.getLogger("casegen")

VALIDATE_REPORT_PATH = "validate/report"


def _result(rule: str, status: RuleStatus, description: str, details: Optional[str] = None) -> ValidationRuleResult:
    return ValidationRuleResult(rule=rule, status=status, description=description, details=details)


# ============================================================================
# Rules
# ============================================================================

def check_timezone_consistency(case: NormalizedCase) -> List[ValidationRuleResult]:
    results = []
    timezone = case.timezone

    for document in case.documents:
        if document.created_at and not matches_timezone(document.created_at, timezone):
            results.append(
                _result(
                    "TIMEZONE_CONSISTENCY",
                    RuleStatus.FAIL,
                    f"Document {document.doc_id} createdAt {document.created_at} does not match {timezone}",
                )
            )
        for section in document.sections:
            for stamp in find_timestamps(section.content):
                if not matches_timezone(stamp, timezone):
                    results.append(
                        _result(
                            "TIMEZONE_CONSISTENCY",
                            RuleStatus.WARN,
                            f"Document {document.doc_id} section '{section.title}' quotes {stamp} outside {timezone}",
                        )
                    )

    for item in case.media:
        if item.collected_at and not matches_timezone(item.collected_at, timezone):
            results.append(
                _result(
                    "TIMEZONE_CONSISTENCY",
                    RuleStatus.FAIL,
                    f"Media {item.evidence_id} collectedAt {item.collected_at} does not match {timezone}",
                )
            )

    if not results:
        results.append(_result("TIMEZONE_CONSISTENCY", RuleStatus.PASS, f"All timestamps consistent with {timezone}"))
    return results


def check_references(
    case: NormalizedCase,
    planned_evidence_ids: Iterable[str],
    event_ids: Iterable[str],
) -> List[ValidationRuleResult]:
    """Every evidence, timeline and media reference in a document must resolve."""
    evidence = set(planned_evidence_ids) | {m.evidence_id for m in case.media}
    events = set(event_ids)
    media = {m.evidence_id for m in case.media}
    results = []

    for document in case.documents:
        for ref in document.evidence_references:
            if ref not in evidence:
                results.append(
                    _result("REFERENCE_RESOLUTION", RuleStatus.FAIL, f"{document.doc_id} cites unknown evidence {ref}")
                )
        for ref in document.timeline_references:
            if ref not in events:
                results.append(
                    _result("REFERENCE_RESOLUTION", RuleStatus.FAIL, f"{document.doc_id} cites unknown event {ref}")
                )
        for ref in document.media_attachments:
            if ref not in media:
                results.append(
                    _result("REFERENCE_RESOLUTION", RuleStatus.FAIL, f"{document.doc_id} attaches unknown media {ref}")
                )

    if not results:
        results.append(_result("REFERENCE_RESOLUTION", RuleStatus.PASS, "All document references resolve"))
    return results


def check_golden_truth_support(case: NormalizedCase, evidence_plan: Optional[EvidencePlan]) -> List[ValidationRuleResult]:
    """
    Count, per golden fact, the distinct supporting evidence ids the case
    actually surfaces through document references or media links.
    """
    if evidence_plan is None or not evidence_plan.golden_truth:
        return [_result("GOLDEN_TRUTH_SUPPORT", RuleStatus.WARN, "No golden truth facts to check")]

    surfaced = set()
    for document in case.documents:
        surfaced.update(document.evidence_references)
    for item in case.media:
        surfaced.update(item.related_evidence_ids)

    results = []
    for fact in evidence_plan.golden_truth:
        supporting = sorted(set(fact.supported_by) & surfaced)
        if len(supporting) >= fact.min_supports:
            results.append(
                _result(
                    "GOLDEN_TRUTH_SUPPORT",
                    RuleStatus.PASS,
                    f"Fact {fact.fact_id} supported by {len(supporting)} evidence items",
                    ", ".join(supporting),
                )
            )
        else:
            results.append(
                _result(
                    "GOLDEN_TRUTH_SUPPORT",
                    RuleStatus.FAIL,
                    f"Fact {fact.fact_id} supported by {len(supporting)} of {fact.min_supports} required evidence items",
                    ", ".join(supporting) or None,
                )
            )
    return results


def run_rules(
    case: NormalizedCase,
    evidence_plan: Optional[EvidencePlan],
    timeline: Optional[TimelinePlan],
) -> List[ValidationRuleResult]:
    planned = evidence_plan.evidence_ids() if evidence_plan is not None else []
    events = timeline.ids() if timeline is not None else []
    results = []
    results.extend(check_timezone_consistency(case))
    results.extend(check_references(case, planned, events))
    results.extend(check_golden_truth_support(case, evidence_plan))
    return results


# ============================================================================
# Service
# ============================================================================

class ValidateService:
    """Deterministic rules plus an optional generator review."""

    phase = "validate"

    def __init__(self, context: ContextManager, generator=None, case_logging=None):
        self.context = context
        self.generator = generator
        self.case_logging = case_logging

    async def review(
        self,
        case_id: str,
        case: NormalizedCase,
        evidence_plan: Optional[EvidencePlan],
        core: Optional[PlanCore],
        results: List[ValidationRuleResult],
    ) -> Optional[Dict[str, Any]]:
        """Reviewer pass; None when no generator is configured or the call fails."""
        if self.generator is None:
            return None

        golden = {
            "culpritSummary": core.culprit_summary if core is not None else "",
            "facts": [f.to_json_dict() for f in evidence_plan.golden_truth] if evidence_plan is not None else [],
        }
        rule_lines = "\n".join(f"- [{r.status.value}] {r.rule}: {r.description}" for r in results)
        user_prompt = VALIDATE_REVIEW_USER_PROMPT_TEMPLATE.format(
            golden_truth_json=json.dumps(golden, ensure_ascii=False, indent=2),
            rule_results=rule_lines or "- none",
            case_json=json.dumps(case.to_json_dict(), ensure_ascii=False),
        )
        try:
            response = await self.generator.generate_text(
                case_id, VALIDATE_REVIEW_SYSTEM_PROMPT, user_prompt, temperature=0.2
            )
        except CaseGenError as e:
            logger.warning(f"[validate_review] Reviewer call failed for case {case_id}: {e}")
            return None

        if self.case_logging is not None:
            await self.case_logging.log_step_response(case_id, "validate_review", response)
        parsed = extract_json(response)
        if not isinstance(parsed, dict):
            logger.warning(f"[validate_review] Unparseable reviewer output for case {case_id}")
            return {"verdict": "UNPARSEABLE", "raw": (response or "")[:2000]}
        return parsed

    async def run(self, case_id: str) -> ValidationReport:
        case = await self.context.require(case_id, CASE_PATH, NormalizedCase, phase=self.phase)
        evidence_plan = await self.context.load(case_id, PLAN_EVIDENCE_PATH, EvidencePlan)
        timeline = await self.context.load(case_id, PLAN_TIMELINE_PATH, TimelinePlan)
        core = await self.context.load(case_id, PLAN_CORE_PATH, PlanCore)

        results = run_rules(case, evidence_plan, timeline)
        report = ValidationReport(
            case_id=case_id,
            results=results,
            llm_review=await self.review(case_id, case, evidence_plan, core, results),
        )
        await self.context.save(case_id, VALIDATE_REPORT_PATH, report)

        failed = [r for r in results if r.status == RuleStatus.FAIL]
        if self.case_logging is not None:
            await self.case_logging.log_step_metadata(case_id, "validate", [r.to_json_dict() for r in results])
        logger.info(f"[validate] Case {case_id}: {len(results)} rule results, {len(failed)} failed")
        return report
