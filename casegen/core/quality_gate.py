"""
Quality Gate for CaseGen

Decides whether a red-team report is clean enough to package.

Key concepts:
- Policy thresholds on priority counts (max_high, max_medium, max_total)
- A fallback report is never clean
- Optional generator verdict ("CLEAN" / "NEEDS_FIX") as an extra signal,
  only consulted when require_llm_verdict is set
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .errors import CaseGenError
from ..config.settings import DEFAULT_QUALITY_THRESHOLDS
from ..models.schemas import RedTeamReport
from ..prompts.red_team import QUALITY_CLASSIFIER_SYSTEM_PROMPT, QUALITY_CLASSIFIER_USER_PROMPT_TEMPLATE

logger = logging.getLogger("casegen")


@dataclass
class QualityVerdict:
    clean: bool
    reasons: List[str] = field(default_factory=list)
    llm_verdict: Optional[bool] = None
    counts: Dict[str, int] = field(default_factory=dict)


def parse_llm_verdict(response: Optional[str]) -> bool:
    """CLEAN only when the answer says CLEAN, does not say NEEDS_FIX and is not truncated."""
    if not response or len(response.strip()) < 4:
        return False
    text = response.upper()
    return "CLEAN" in text and "NEEDS_FIX" not in text


class QualityGate:
    """Threshold policy over red-team issue counts."""

    def __init__(self, thresholds: Optional[Dict[str, Any]] = None, generator=None):
        self.thresholds = {**DEFAULT_QUALITY_THRESHOLDS, **(thresholds or {})}
        self.generator = generator

    def check_thresholds(self, report: RedTeamReport) -> QualityVerdict:
        """Deterministic part of the verdict."""
        counts = {
            "high": report.high_priority_count,
            "medium": report.medium_priority_count,
            "low": report.low_priority_count,
            "total": report.total_count,
        }
        reasons = []
        if report.is_fallback:
            reasons.append("red-team analysis is a fallback")

        limits = (
            ("max_high", "high"),
            ("max_medium", "medium"),
            ("max_total", "total"),
        )
        for key, count_name in limits:
            limit = self.thresholds.get(key)
            if limit is not None and counts[count_name] > limit:
                reasons.append(f"{counts[count_name]} {count_name} issues exceed {key}={limit}")

        return QualityVerdict(clean=not reasons, reasons=reasons, counts=counts)

    async def evaluate(self, case_id: str, report: RedTeamReport) -> QualityVerdict:
        """
        Full verdict for a report.

        Args:
            case_id: Case identifier
            report: Merged red-team report

        Returns:
            QualityVerdict with the reasons it is not clean, if any
        """
        verdict = self.check_thresholds(report)

        if verdict.clean and self.thresholds.get("require_llm_verdict"):
            verdict.llm_verdict = await self._llm_verdict(case_id, report)
            if not verdict.llm_verdict:
                verdict.clean = False
                verdict.reasons.append("generator verdict is NEEDS_FIX")

        logger.info(
            f"[run_quality_gate] Case {case_id}: clean={verdict.clean} counts={verdict.counts} "
            f"reasons={verdict.reasons}"
        )
        return verdict

    async def _llm_verdict(self, case_id: str, report: RedTeamReport) -> bool:
        if self.generator is None:
            logger.warning(f"[run_quality_gate] Generator verdict required but no generator configured (case {case_id})")
            return False
        try:
            response = await self.generator.generate_text(
                case_id,
                QUALITY_CLASSIFIER_SYSTEM_PROMPT,
                QUALITY_CLASSIFIER_USER_PROMPT_TEMPLATE.format(analysis_json=report.model_dump_json(by_alias=True)),
                temperature=0.0,
                max_tokens=10,
            )
        except CaseGenError as e:
            logger.error(f"[run_quality_gate] Generator verdict failed for case {case_id}, defaulting to NEEDS_FIX: {e}")
            return False
        return parse_llm_verdict(response)
