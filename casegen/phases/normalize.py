"""
Normalize Phase - Deterministic Case Assembly

Joins every design spec with its generated artifact into the normalized case
at case/current. No generator calls; the same inputs always produce the same
case. Rules applied, each recorded as a rule result:
- UNIQUE_IDS, GATING_REFERENCE_INTEGRITY
- DIFFICULTY_DOCUMENT_COUNT, DIFFICULTY_EVIDENCE_COUNT, DIFFICULTY_GATED_COUNT
- FORENSICS_CUSTODY_CHAIN, GATING_GRAPH_CYCLES
- ISO8601_TIMESTAMPS, GENERATION_ERRORS
"""

import logging
from collections import Counter
from typing import Dict, Iterable, List, Optional, Tuple

from .design import CHAIN_OF_CUSTODY_SECTION, load_document_specs, load_media_specs
from .generate import generated_document_path, generated_media_path
from .plan import PLAN_CORE_PATH, PLAN_EVIDENCE_PATH
from ..core.context_manager import ContextManager
from ..core.difficulty import get_profile, in_range
from ..core.packaging import CASE_PATH
from ..core.timestamps import has_offset
from ..models.schemas import (
    DocumentSpec,
    EvidencePlan,
    GatingEdge,
    GatingGraph,
    GatingNode,
    GeneratedDocument,
    GeneratedMedia,
    GenerationMode,
    MediaSpec,
    NormalizedCase,
    NormalizedDocument,
    NormalizedMedia,
    PlanCore,
    RuleStatus,
    ValidationRuleResult,
)

logger = logging.getLogger("casegen")

APPLIED_RULES = [
    "UNIQUE_IDS",
    "GATING_REFERENCE_INTEGRITY",
    "DIFFICULTY_VALIDATION",
    "GATING_GRAPH_CYCLES",
    "FORENSICS_CUSTODY_CHAIN",
    "ISO8601_TIMESTAMPS",
    "GENERATION_ERRORS",
]


def _result(rule: str, status: RuleStatus, description: str, details: Optional[str] = None) -> ValidationRuleResult:
    return ValidationRuleResult(rule=rule, status=status, description=description, details=details)


# ============================================================================
# Assembly
# ============================================================================

def merge_document(spec: DocumentSpec, generated: GeneratedDocument) -> NormalizedDocument:
    data = generated.model_dump(by_alias=False)
    data.update(
        gated=spec.gated,
        gating_rule=spec.gating_rule,
        length_target=list(spec.length_target),
        evidence_references=list(spec.evidence_references),
        timeline_references=list(spec.timeline_references),
    )
    return NormalizedDocument.model_validate(data)


def merge_media(spec: MediaSpec, generated: GeneratedMedia) -> NormalizedMedia:
    data = generated.model_dump(by_alias=False)
    data.update(deferred=spec.deferred, related_evidence_ids=list(spec.related_evidence_ids))
    return NormalizedMedia.model_validate(data)


# ============================================================================
# Rules
# ============================================================================

def check_unique_ids(documents: List[NormalizedDocument], media: List[NormalizedMedia]) -> List[ValidationRuleResult]:
    results = []
    doc_dupes = [i for i, n in Counter(d.doc_id for d in documents).items() if n > 1]
    media_dupes = [i for i, n in Counter(m.evidence_id for m in media).items() if n > 1]
    for dupe in doc_dupes:
        results.append(_result("UNIQUE_IDS", RuleStatus.FAIL, f"Duplicate document ID: {dupe}"))
    for dupe in media_dupes:
        results.append(_result("UNIQUE_IDS", RuleStatus.FAIL, f"Duplicate evidence ID: {dupe}"))
    if not doc_dupes and not media_dupes:
        results.append(
            _result(
                "UNIQUE_IDS",
                RuleStatus.PASS,
                "All IDs are unique",
                f"Validated {len(documents)} document IDs and {len(media)} evidence IDs",
            )
        )
    return results


def check_gating_references(
    documents: List[NormalizedDocument],
    media: List[NormalizedMedia],
    planned_evidence_ids: Iterable[str],
) -> List[ValidationRuleResult]:
    results = []
    doc_ids = {d.doc_id for d in documents}
    evidence_ids = {m.evidence_id for m in media} | set(planned_evidence_ids)
    for document in documents:
        rule = document.gating_rule
        if not document.gated or rule is None:
            continue
        if rule.evidence_id and rule.evidence_id not in evidence_ids:
            results.append(
                _result(
                    "GATING_REFERENCE_INTEGRITY",
                    RuleStatus.FAIL,
                    f"Document {document.doc_id} references non-existent evidence {rule.evidence_id}",
                )
            )
        if rule.doc_id and rule.doc_id not in doc_ids:
            results.append(
                _result(
                    "GATING_REFERENCE_INTEGRITY",
                    RuleStatus.FAIL,
                    f"Document {document.doc_id} references non-existent document {rule.doc_id}",
                )
            )
    if not results:
        results.append(_result("GATING_REFERENCE_INTEGRITY", RuleStatus.PASS, "All gating references resolve"))
    return results


def check_difficulty(
    difficulty: str, documents: List[NormalizedDocument], media: List[NormalizedMedia]
) -> List[ValidationRuleResult]:
    """Counts against the difficulty profile; mismatches are warnings."""
    profile = get_profile(difficulty)
    results = []
    for rule, count, bounds, label in (
        ("DIFFICULTY_DOCUMENT_COUNT", len(documents), profile.documents, "Document"),
        ("DIFFICULTY_EVIDENCE_COUNT", len(media), profile.evidences, "Evidence"),
    ):
        if in_range(count, bounds):
            results.append(_result(rule, RuleStatus.PASS, f"{label} count ({count}) within range for {profile.name}"))
        else:
            results.append(
                _result(
                    rule,
                    RuleStatus.WARN,
                    f"{label} count ({count}) outside range {bounds[0]}-{bounds[1]} for {profile.name}",
                    profile.description,
                )
            )

    gated = sum(1 for d in documents if d.gated)
    if gated == profile.gated_documents:
        results.append(_result("DIFFICULTY_GATED_COUNT", RuleStatus.PASS, f"Gated document count ({gated}) matches"))
    else:
        results.append(
            _result(
                "DIFFICULTY_GATED_COUNT",
                RuleStatus.WARN,
                f"Gated document count ({gated}) differs from expected {profile.gated_documents} for {profile.name}",
            )
        )
    return results


def check_custody_sections(documents: List[NormalizedDocument]) -> List[ValidationRuleResult]:
    results = []
    for document in documents:
        if document.type != "forensics_report":
            continue
        if any(CHAIN_OF_CUSTODY_SECTION in s.title.lower() for s in document.sections):
            results.append(
                _result("FORENSICS_CUSTODY_CHAIN", RuleStatus.PASS, f"{document.doc_id} includes a custody section")
            )
        else:
            results.append(
                _result(
                    "FORENSICS_CUSTODY_CHAIN",
                    RuleStatus.FAIL,
                    f"Forensics report {document.doc_id} missing 'Chain of Custody' section",
                )
            )
    return results


def detect_cycles(nodes: List[GatingNode], edges: List[GatingEdge]) -> Tuple[bool, List[str]]:
    """Depth-first search for a cycle in the unlock graph."""
    adjacency: Dict[str, List[str]] = {n.id: [] for n in nodes}
    for edge in edges:
        adjacency.setdefault(edge.from_id, []).append(edge.to_id)

    visited = set()
    on_stack: List[str] = []

    def visit(node_id: str) -> Optional[List[str]]:
        visited.add(node_id)
        on_stack.append(node_id)
        for neighbor in adjacency.get(node_id, []):
            if neighbor in on_stack:
                return on_stack[on_stack.index(neighbor):] + [neighbor]
            if neighbor not in visited:
                cycle = visit(neighbor)
                if cycle:
                    return cycle
        on_stack.pop()
        return None

    for node_id in sorted(adjacency):
        if node_id not in visited:
            cycle = visit(node_id)
            if cycle:
                return True, [f"Cycle detected: {' -> '.join(cycle)}"]
    return False, []


def build_gating_graph(documents: List[NormalizedDocument], media: List[NormalizedMedia]) -> GatingGraph:
    nodes, edges = [], []
    for document in documents:
        rule = document.gating_rule
        required = [i for i in ((rule.evidence_id, rule.doc_id) if rule else ()) if i]
        nodes.append(
            GatingNode(
                id=document.doc_id,
                type="document",
                gated=document.gated,
                unlock_action=rule.action if rule else None,
                required_ids=required,
            )
        )
        if document.gated:
            edges.extend(GatingEdge(from_id=r, to_id=document.doc_id) for r in required)
    for item in media:
        nodes.append(GatingNode(id=item.evidence_id, type="evidence"))
    has_cycles, description = detect_cycles(nodes, edges)
    return GatingGraph(nodes=nodes, edges=edges, has_cycles=has_cycles, cycle_description=description)


def normalize_timestamps(
    documents: List[NormalizedDocument],
    media: List[NormalizedMedia],
    specs: Dict[str, DocumentSpec],
) -> List[ValidationRuleResult]:
    """Fill missing createdAt from the design date and flag missing offsets."""
    problems = []
    for document in documents:
        if not document.created_at:
            spec = specs.get(document.doc_id)
            if spec is not None and spec.date_created:
                document.created_at = spec.date_created
            else:
                problems.append(f"Document {document.doc_id}: missing createdAt")
                continue
        if not has_offset(document.created_at):
            problems.append(f"Document {document.doc_id}: createdAt '{document.created_at}' lacks a UTC offset")
    for item in media:
        if item.collected_at and not has_offset(item.collected_at):
            problems.append(f"Media {item.evidence_id}: collectedAt '{item.collected_at}' lacks a UTC offset")
    if problems:
        return [_result("ISO8601_TIMESTAMPS", RuleStatus.FAIL, p) for p in problems]
    return [_result("ISO8601_TIMESTAMPS", RuleStatus.PASS, "All timestamps are ISO-8601 with offset")]


def check_generation_errors(documents: List[NormalizedDocument], media: List[NormalizedMedia]) -> List[ValidationRuleResult]:
    results = []
    for document in documents:
        if document.metadata.get("error"):
            results.append(
                _result(
                    "GENERATION_ERRORS",
                    RuleStatus.FAIL,
                    f"Document {document.doc_id} failed to generate",
                    str(document.metadata["error"]),
                )
            )
    for item in media:
        if item.generation_mode == GenerationMode.FAILED:
            results.append(
                _result("GENERATION_ERRORS", RuleStatus.WARN, f"Media {item.evidence_id} has no image", item.error)
            )
    if not results:
        results.append(_result("GENERATION_ERRORS", RuleStatus.PASS, "Every item generated"))
    return results


def normalize_case(
    case_id: str,
    core: PlanCore,
    document_specs: List[DocumentSpec],
    documents: Dict[str, GeneratedDocument],
    media_specs: List[MediaSpec],
    media: Dict[str, GeneratedMedia],
    planned_evidence_ids: Iterable[str] = (),
) -> NormalizedCase:
    """
    Assemble the normalized case from specs and generated artifacts.

    Args:
        case_id: Case identifier
        core: Plan core (title, timezone, difficulty)
        document_specs: Every designed document spec
        documents: Generated documents keyed by docId
        media_specs: Every designed media spec
        media: Generated media keyed by evidenceId
        planned_evidence_ids: EV ids from the evidence plan (gating targets)

    Returns:
        NormalizedCase with rule results attached
    """
    normalized_documents = sorted(
        (merge_document(spec, documents[spec.doc_id]) for spec in document_specs),
        key=lambda d: d.doc_id,
    )
    normalized_media = sorted(
        (merge_media(spec, media[spec.evidence_id]) for spec in media_specs),
        key=lambda m: m.evidence_id,
    )
    specs_by_id = {s.doc_id: s for s in document_specs}

    results: List[ValidationRuleResult] = []
    results.extend(check_unique_ids(normalized_documents, normalized_media))
    results.extend(check_gating_references(normalized_documents, normalized_media, planned_evidence_ids))
    results.extend(check_difficulty(core.difficulty, normalized_documents, normalized_media))
    results.extend(check_custody_sections(normalized_documents))

    graph = build_gating_graph(normalized_documents, normalized_media)
    if graph.has_cycles:
        results.append(
            _result("GATING_GRAPH_CYCLES", RuleStatus.FAIL, "Gating graph contains cycles", "; ".join(graph.cycle_description))
        )
    else:
        results.append(
            _result(
                "GATING_GRAPH_CYCLES",
                RuleStatus.PASS,
                "Gating graph is acyclic",
                f"Validated {len(graph.nodes)} nodes and {len(graph.edges)} edges",
            )
        )

    results.extend(normalize_timestamps(normalized_documents, normalized_media, specs_by_id))
    results.extend(check_generation_errors(normalized_documents, normalized_media))

    return NormalizedCase(
        case_id=case_id,
        timezone=core.timezone,
        difficulty=core.difficulty,
        title=core.title,
        location=core.location,
        overview=core.overview,
        target_duration_minutes=core.target_duration_minutes,
        documents=normalized_documents,
        media=normalized_media,
        gating_graph=graph,
        applied_rules=list(APPLIED_RULES),
        validation_results=results,
    )


class NormalizeService:
    """Loads specs and generated artifacts and writes case/current."""

    phase = "normalize"

    def __init__(self, context: ContextManager, case_logging=None):
        self.context = context
        self.case_logging = case_logging

    async def run(self, case_id: str) -> NormalizedCase:
        core = await self.context.require(case_id, PLAN_CORE_PATH, PlanCore, phase=self.phase)
        evidence_plan = await self.context.load(case_id, PLAN_EVIDENCE_PATH, EvidencePlan)

        document_specs = await load_document_specs(self.context, case_id)
        media_specs = await load_media_specs(self.context, case_id)

        documents = {}
        for spec in document_specs:
            documents[spec.doc_id] = await self.context.require(
                case_id, generated_document_path(spec.doc_id), GeneratedDocument, phase=self.phase
            )
        media = {}
        for spec in media_specs:
            media[spec.evidence_id] = await self.context.require(
                case_id, generated_media_path(spec.evidence_id), GeneratedMedia, phase=self.phase
            )

        case = normalize_case(
            case_id,
            core,
            document_specs,
            documents,
            media_specs,
            media,
            evidence_plan.evidence_ids() if evidence_plan is not None else [],
        )
        await self.context.save(case_id, CASE_PATH, case)

        failed = [r for r in case.validation_results if r.status == RuleStatus.FAIL]
        for result in failed:
            logger.warning(f"[normalize] Rule {result.rule} failed for case {case_id}: {result.description}")
        if self.case_logging is not None:
            await self.case_logging.log_step_metadata(
                case_id, "normalize", [r.to_json_dict() for r in case.validation_results]
            )
        logger.info(
            f"[normalize] Normalized case {case_id}: {len(case.documents)} documents, {len(case.media)} media, "
            f"{len(failed)} failed rules"
        )
        return case
