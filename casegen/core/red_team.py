"""
Chunked Red-Team Analyzer for CaseGen

Cross-consistency analysis of a case that may not fit a single generator call.

Key concepts:
- Skeleton: timezone, difficulty, id indexes and a temporal ledger of every
  timestamp in the case, sent with every chunk so each call keeps whole-case
  temporal context
- Chunks: documents then media, greedily bin-packed under a byte budget
- Chunk calls run concurrently under a semaphore cap
- Merge: chunk reports ordered by chunk index, issues deduplicated by location,
  counts recomputed; the result does not depend on completion order
- Two-tier mode: an optional global (macro) pass feeds its focus areas into
  every chunk prompt
- Fallbacks are explicit (is_fallback) and never count as a clean verdict
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ValidationError

from .errors import CaseGenError
from .json_repair import canonical_json, coerce_str, extract_json, json_size_bytes, normalize_dict
from .timestamps import find_timestamps, parse_iso
from ..models.schemas import (
    GlobalAnalysis,
    IssueFix,
    IssueLocation,
    IssuePriority,
    RedTeamIssue,
    RedTeamReport,
)
from ..prompts.red_team import (
    RED_TEAM_CHUNK_BASE_PROMPT,
    RED_TEAM_CHUNK_FORMAT_RULES,
    RED_TEAM_CHUNK_GLOBAL_CONTEXT,
    RED_TEAM_CHUNK_USER_PROMPT_TEMPLATE,
    RED_TEAM_GLOBAL_SYSTEM_PROMPT,
    RED_TEAM_GLOBAL_USER_PROMPT_TEMPLATE,
)
from ..services.analysis_cache import AnalysisCache, compute_content_hash

logger = logging.getLogger("casegen")

DEFAULT_MAX_BYTES_PER_CALL = 60_000
DEFAULT_MAX_PARALLEL_CALLS = 3
PROMPT_OVERHEAD_BYTES = 1_000
MIN_CHUNK_BUDGET_BYTES = 5_000
TEMPORAL_LEDGER_LIMIT = 50
# Widest chunk label the prompt frame is measured with
MAX_LABELLED_CHUNKS = 9_999

FALLBACK_PREFIX = "FALLBACK ANALYSIS: "
NO_ISSUES_SUMMARY = "No issues found in any chunks"

_PRIORITY_LOOKUP = {p.value.lower(): p for p in IssuePriority}


@dataclass
class Chunk:
    """A byte-bounded slice of the case's documents and media."""
    index: int
    documents: List[Dict[str, Any]] = field(default_factory=list)
    media: List[Dict[str, Any]] = field(default_factory=list)
    size_bytes: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.documents and not self.media

    def item_ids(self) -> List[str]:
        return [_item_id(d) for d in self.documents] + [_item_id(m) for m in self.media]


def chunk_label(index: int, total: int) -> str:
    return f"chunk {index + 1} of {total}"


def chunk_scope_json(skeleton: Dict[str, Any], chunk: Chunk) -> str:
    """Compact scope sent to a chunk call; the same form the byte budget measures."""
    return canonical_json({"skeleton": skeleton, "documents": chunk.documents, "media": chunk.media})


# ============================================================================
# Case access helpers
# ============================================================================

def _item_id(item: Dict[str, Any]) -> str:
    return coerce_str(item.get("docId") or item.get("evidenceId") or item.get("id"))


def load_case(case: Any) -> Optional[Dict[str, Any]]:
    """Accept a JSON string, dict or pydantic model; None when unusable."""
    if isinstance(case, BaseModel):
        return case.model_dump(mode="json", by_alias=True)
    if isinstance(case, str):
        try:
            case = json.loads(case)
        except json.JSONDecodeError:
            return None
    return case if isinstance(case, dict) else None


def case_documents(case: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Documents as a list, whether stored as a list or under documents.items."""
    documents = case.get("documents")
    if isinstance(documents, dict):
        documents = documents.get("items")
    if not isinstance(documents, list):
        return []
    return [d for d in documents if isinstance(d, dict)]


def case_media(case: Dict[str, Any]) -> List[Dict[str, Any]]:
    media = case.get("media")
    if isinstance(media, dict):
        media = media.get("items")
    if not isinstance(media, list):
        return []
    return [m for m in media if isinstance(m, dict)]


def _camelize_keys(value: Any) -> Any:
    """Lower the first letter of every key so PascalCase output validates."""
    if isinstance(value, dict):
        return {
            (k[:1].lower() + k[1:] if isinstance(k, str) else k): _camelize_keys(v)
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [_camelize_keys(v) for v in value]
    return value


def _optional_str(value: Any) -> Optional[str]:
    text = coerce_str(value)
    return text if text else None


# ============================================================================
# Report repair
# ============================================================================

def repair_issue(raw: Any) -> Optional[RedTeamIssue]:
    """Repair one issue field by field; None when it is not an object."""
    if not isinstance(raw, dict):
        return None
    priority = _PRIORITY_LOOKUP.get(coerce_str(raw.get("priority")).strip().lower(), IssuePriority.MEDIUM)
    location = normalize_dict(raw.get("location"), fallback_key="docId")
    fix = normalize_dict(raw.get("fix"), fallback_key="reason")
    return RedTeamIssue(
        priority=priority,
        type=coerce_str(raw.get("type")),
        problem=coerce_str(raw.get("problem")),
        location=IssueLocation(
            doc_id=coerce_str(location.get("docId")),
            field=_optional_str(location.get("field")),
            section=_optional_str(location.get("section")),
            line_pattern=_optional_str(location.get("linePattern")),
            current_value=_optional_str(location.get("currentValue")),
        ),
        fix=IssueFix(
            action=coerce_str(fix.get("action")) or "ReplaceText",
            new_value=_optional_str(fix.get("newValue")),
            old_text=_optional_str(fix.get("oldText")),
            new_text=_optional_str(fix.get("newText")),
            new_section=_optional_str(fix.get("newSection")),
            reason=_optional_str(fix.get("reason")),
        ),
    )


def repair_report(raw: Any, chunk_index: Optional[int] = None) -> Optional[RedTeamReport]:
    """
    Turn generator output into a RedTeamReport.

    Args:
        raw: Response text or an already-parsed value
        chunk_index: Index of the chunk the report belongs to

    Returns:
        The repaired report, or None when nothing usable could be extracted
    """
    data = extract_json(raw) if isinstance(raw, str) else raw
    if isinstance(data, list):
        data = {"issues": data}
    if not isinstance(data, dict):
        return None
    data = _camelize_keys(data)

    raw_issues = data.get("issues")
    if not isinstance(raw_issues, list):
        if raw_issues is not None:
            logger.warning(f"[repair_report] issues is {type(raw_issues).__name__}, treating as empty")
        raw_issues = []

    issues = [issue for issue in (repair_issue(i) for i in raw_issues) if issue is not None]
    report = RedTeamReport(issues=issues, summary=coerce_str(data.get("summary")), chunk_index=chunk_index)
    return report.recount()


def fallback_report(reason: str) -> RedTeamReport:
    """Explicit stand-in report when no analysis could be produced."""
    return RedTeamReport(summary=f"{FALLBACK_PREFIX}{reason}", is_fallback=True)


def fallback_global_analysis(reason: str) -> GlobalAnalysis:
    return GlobalAnalysis(
        overall_assessment=f"{FALLBACK_PREFIX}{reason}",
        requires_detailed_analysis=True,
        is_fallback=True,
    )


def merge_reports(reports: List[RedTeamReport]) -> RedTeamReport:
    """
    Merge chunk reports deterministically.

    Reports are ordered by chunk index (ties broken by content), issues are
    concatenated and deduplicated by (docId, field, section, linePattern)
    keeping the first occurrence, and counts are recomputed.
    """
    def order_key(report: RedTeamReport) -> Tuple[int, str]:
        index = report.chunk_index if report.chunk_index is not None else 1_000_000
        return index, canonical_json(report.to_json_dict())

    ordered = sorted(reports, key=order_key)
    seen = set()
    issues: List[RedTeamIssue] = []
    for report in ordered:
        for issue in report.issues:
            key = issue.location.dedup_key()
            if key in seen:
                continue
            seen.add(key)
            issues.append(issue)

    if issues:
        summaries = [r.summary for r in ordered if r.summary][:3]
        summary = f"Merged analysis from {len(ordered)} chunks: " + "; ".join(summaries)
    else:
        summary = NO_ISSUES_SUMMARY

    return RedTeamReport(issues=issues, summary=summary).recount()


# ============================================================================
# Analyzer
# ============================================================================

class RedTeamAnalyzer:
    """Runs global and chunked red-team passes over a case."""

    def __init__(
        self,
        generator,
        cache: Optional[AnalysisCache] = None,
        max_bytes_per_call: int = DEFAULT_MAX_BYTES_PER_CALL,
        max_parallel_calls: int = DEFAULT_MAX_PARALLEL_CALLS,
        case_logging=None,
    ):
        """
        Initialize the analyzer.

        Args:
            generator: ContentGenerator used for the analysis calls
            cache: Optional analysis cache (in-memory or Redis)
            max_bytes_per_call: Byte budget for one chunk call
            max_parallel_calls: Concurrent chunk calls
            case_logging: Optional CaseLoggingService for raw responses
        """
        if max_parallel_calls < 1:
            raise ValueError("max_parallel_calls must be >= 1")
        self.generator = generator
        self.cache = cache
        self.max_bytes_per_call = max_bytes_per_call
        self.max_parallel_calls = max_parallel_calls
        self.case_logging = case_logging

    # ------------------------------------------------------------------
    # Skeleton and chunk planning
    # ------------------------------------------------------------------

    def build_skeleton(self, case: Dict[str, Any]) -> Dict[str, Any]:
        """Whole-case context shared by every chunk."""
        documents = case_documents(case)
        media = case_media(case)

        found: Dict[str, str] = {}
        sources = [(_item_id(d), d) for d in documents] + [(_item_id(m), m) for m in media]
        rest = {k: v for k, v in case.items() if k not in ("documents", "media")}
        sources.append(("case", rest))
        for ref, item in sources:
            for timestamp in find_timestamps(json.dumps(item, ensure_ascii=False)):
                found.setdefault(timestamp, ref)

        def chronological(entry: Tuple[str, str]) -> Tuple[float, str]:
            parsed = parse_iso(entry[0])
            return (parsed.timestamp() if parsed else float("inf"), entry[0])

        ledger = [
            {"timestamp": ts, "ref": ref}
            for ts, ref in sorted(found.items(), key=chronological)[:TEMPORAL_LEDGER_LIMIT]
        ]

        return {
            "timezone": case.get("timezone") or "UTC",
            "difficulty": case.get("difficulty") or "Rookie",
            "indexes": {
                "docIds": [_item_id(d) for d in documents],
                "evidenceIds": [_item_id(m) for m in media],
            },
            "temporalLedger": ledger,
        }

    def prompt_frame_bytes(self, skeleton: Dict[str, Any]) -> int:
        """Bytes of a chunk user prompt whose scope holds the skeleton and no items."""
        frame = RED_TEAM_CHUNK_USER_PROMPT_TEMPLATE.format(
            chunk_label=chunk_label(MAX_LABELLED_CHUNKS - 1, MAX_LABELLED_CHUNKS),
            scope_json=chunk_scope_json(skeleton, Chunk(index=0)),
        )
        return len(frame.encode("utf-8"))

    def chunk_budget(self, skeleton: Dict[str, Any]) -> int:
        reserved = max(json_size_bytes(skeleton) + PROMPT_OVERHEAD_BYTES, self.prompt_frame_bytes(skeleton))
        available = self.max_bytes_per_call - reserved
        if available <= 0:
            logger.warning(
                f"[chunk_budget] Skeleton leaves no room under {self.max_bytes_per_call} bytes; "
                f"using {MIN_CHUNK_BUDGET_BYTES}"
            )
            return MIN_CHUNK_BUDGET_BYTES
        return available

    def plan_chunks(self, case: Dict[str, Any], skeleton: Optional[Dict[str, Any]] = None) -> List[Chunk]:
        """Greedy bin-packing of documents then media; never returns an empty list."""
        skeleton = skeleton if skeleton is not None else self.build_skeleton(case)
        budget = self.chunk_budget(skeleton)

        chunks: List[Chunk] = []
        current = Chunk(index=0)

        def close_current() -> Chunk:
            chunks.append(current)
            return Chunk(index=len(chunks))

        items = [("documents", d) for d in case_documents(case)] + [("media", m) for m in case_media(case)]
        for kind, item in items:
            # One extra byte for the list separator in the sent scope
            size = json_size_bytes(item) + 1
            if size > budget:
                logger.warning(
                    f"[plan_chunks] Item {_item_id(item)} is {size} bytes, over the {budget} byte budget; "
                    f"analysing it alone"
                )
                if not current.is_empty:
                    current = close_current()
                getattr(current, kind).append(item)
                current.size_bytes = size
                current = close_current()
                continue
            if current.size_bytes + size > budget and not current.is_empty:
                current = close_current()
            getattr(current, kind).append(item)
            current.size_bytes += size

        if not current.is_empty or not chunks:
            chunks.append(current)

        logger.info(f"[plan_chunks] Planned {len(chunks)} chunks with budget {budget} bytes")
        return chunks

    # ------------------------------------------------------------------
    # Global pass
    # ------------------------------------------------------------------

    async def analyze_global(self, case_id: str, case: Any) -> GlobalAnalysis:
        """Macro-level pass over the whole case; falls back instead of raising."""
        data = load_case(case)
        if data is None:
            return fallback_global_analysis("case JSON is empty or invalid")

        case_json = canonical_json(data)
        content_hash = compute_content_hash(case_json)
        if self.cache is not None:
            cached = await self.cache.get(content_hash, "Global")
            if cached:
                return GlobalAnalysis.model_validate_json(cached)

        try:
            response = await self.generator.generate_text(
                case_id,
                RED_TEAM_GLOBAL_SYSTEM_PROMPT,
                RED_TEAM_GLOBAL_USER_PROMPT_TEMPLATE.format(case_json=json.dumps(data, ensure_ascii=False, indent=2)),
                temperature=0.2,
            )
        except CaseGenError as e:
            logger.error(f"[analyze_global] Global analysis failed for case {case_id}: {e}")
            return fallback_global_analysis(str(e))

        await self._log_response(case_id, "redteam_global", response)

        parsed = extract_json(response)
        if not isinstance(parsed, dict):
            logger.warning(f"[analyze_global] Unparseable global analysis for case {case_id}")
            return fallback_global_analysis("global analysis response was not valid JSON")
        try:
            analysis = GlobalAnalysis.model_validate(_camelize_keys(parsed))
        except ValidationError as e:
            logger.warning(f"[analyze_global] Invalid global analysis for case {case_id}: {e}")
            return fallback_global_analysis("global analysis did not match the expected structure")

        if self.cache is not None:
            await self.cache.set(content_hash, analysis.model_dump_json(by_alias=True), "Global")
        logger.info(
            f"[analyze_global] Case {case_id}: {len(analysis.macro_issues)} macro issues, "
            f"{len(analysis.focus_areas)} focus areas"
        )
        return analysis

    # ------------------------------------------------------------------
    # Chunk pass
    # ------------------------------------------------------------------

    def _chunk_system_prompt(self, global_analysis: Optional[GlobalAnalysis], focus_areas: List[str]) -> str:
        prompt = RED_TEAM_CHUNK_BASE_PROMPT
        if global_analysis is not None and not global_analysis.is_fallback:
            prompt += RED_TEAM_CHUNK_GLOBAL_CONTEXT.format(
                global_analysis=global_analysis.model_dump_json(by_alias=True, exclude={"is_fallback"}),
                focus_areas="\n".join(f"- {area}" for area in focus_areas) or "- (none)",
            )
        elif focus_areas:
            prompt += RED_TEAM_CHUNK_GLOBAL_CONTEXT.format(
                global_analysis="(not available)",
                focus_areas="\n".join(f"- {area}" for area in focus_areas),
            )
        return prompt + RED_TEAM_CHUNK_FORMAT_RULES

    async def analyze_chunk(
        self,
        case_id: str,
        chunk: Chunk,
        skeleton: Dict[str, Any],
        total_chunks: int = 1,
        global_analysis: Optional[GlobalAnalysis] = None,
        focus_areas: Optional[List[str]] = None,
    ) -> RedTeamReport:
        """Analyze one chunk; a failure yields an empty report marked failed."""
        focus_areas = list(focus_areas or [])
        scope_json = chunk_scope_json(skeleton, chunk)
        system_prompt = self._chunk_system_prompt(global_analysis, focus_areas)
        # Key covers the global analysis carried in the system prompt
        content_hash = compute_content_hash(system_prompt + "\n" + scope_json)

        if self.cache is not None:
            cached = await self.cache.get(content_hash, "Chunk", focus_areas)
            if cached:
                report = RedTeamReport.model_validate_json(cached)
                report.chunk_index = chunk.index
                return report

        user_prompt = RED_TEAM_CHUNK_USER_PROMPT_TEMPLATE.format(
            chunk_label=chunk_label(chunk.index, total_chunks),
            scope_json=scope_json,
        )

        try:
            response = await self.generator.generate_text(case_id, system_prompt, user_prompt, temperature=0.2)
        except CaseGenError as e:
            logger.error(f"[analyze_chunk] Chunk {chunk.index} failed for case {case_id}: {e}")
            return RedTeamReport(chunk_index=chunk.index, failed=True, summary="")

        await self._log_response(case_id, f"redteam_chunk_{chunk.index}", response)

        report = repair_report(response, chunk_index=chunk.index)
        if report is None:
            logger.warning(f"[analyze_chunk] Unrepairable output for chunk {chunk.index} (case {case_id})")
            return RedTeamReport(chunk_index=chunk.index, failed=True, summary="")

        if self.cache is not None:
            await self.cache.set(content_hash, report.model_dump_json(by_alias=True), "Chunk", focus_areas)
        logger.info(
            f"[analyze_chunk] Chunk {chunk.index} for case {case_id}: {report.total_count} issues "
            f"({report.high_priority_count} high)"
        )
        return report

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def analyze(self, case_id: str, case: Any, use_global: bool = True) -> RedTeamReport:
        """
        Full red-team analysis of a case.

        Args:
            case_id: Case identifier
            case: Normalized case (JSON string, dict or model)
            use_global: Run the macro pass first and thread it into chunk prompts

        Returns:
            Merged report, or an explicit fallback report
        """
        data = load_case(case)
        if data is None or (not case_documents(data) and not case_media(data)):
            logger.warning(f"[red_team.analyze] Empty or invalid case JSON for case {case_id}")
            return fallback_report("case JSON is empty or invalid")

        skeleton = self.build_skeleton(data)
        global_analysis = await self.analyze_global(case_id, data) if use_global else None
        focus_areas = list(global_analysis.focus_areas) if global_analysis is not None else []

        chunks = self.plan_chunks(data, skeleton)
        semaphore = asyncio.Semaphore(self.max_parallel_calls)

        async def run(chunk: Chunk) -> RedTeamReport:
            async with semaphore:
                return await self.analyze_chunk(
                    case_id, chunk, skeleton, len(chunks), global_analysis, focus_areas
                )

        reports = await asyncio.gather(*(run(chunk) for chunk in chunks))

        succeeded = [r for r in reports if not r.failed]
        if not succeeded:
            logger.error(f"[red_team.analyze] All {len(chunks)} chunks failed for case {case_id}")
            return fallback_report(f"all {len(chunks)} chunk analyses failed")
        if len(succeeded) < len(reports):
            logger.warning(
                f"[red_team.analyze] {len(reports) - len(succeeded)} of {len(reports)} chunks failed for case {case_id}"
            )

        merged = merge_reports(succeeded)
        logger.info(
            f"[red_team.analyze] Case {case_id}: {merged.total_count} issues after merge "
            f"(high={merged.high_priority_count}, medium={merged.medium_priority_count}, low={merged.low_priority_count})"
        )
        return merged

    async def _log_response(self, case_id: str, step: str, response: str) -> None:
        if self.case_logging is not None:
            await self.case_logging.log_step_response(case_id, step, response)
