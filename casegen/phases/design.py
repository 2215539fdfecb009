"""
Design Phase - Document and Media Specifications

One generator call per document type and per media kind, each loading only the
context paths that type needs. Specs are validated before they are saved:
- spec type matches the requested type, ids are unique and follow the
  doc_<type>_<nnn> / ev_<kind>_<nnn> convention
- lengthTarget is [min >= 10, max >= min]
- gated specs carry a gating rule with an action
- forensics reports include a "Chain of Custody" section
- evidence, subject, timeline and visual references resolve
"""

import logging
from typing import Dict, List, Optional, Tuple

from .base import PhaseService
from .expand import EXPAND_TIMELINE_PATH
from .plan import PLAN_CORE_PATH, PLAN_EVIDENCE_PATH, PLAN_SUSPECTS_PATH, PLAN_TIMELINE_PATH
from .visual_registry import VISUAL_REGISTRY_PATH, find_unknown_references
from ..core.difficulty import get_profile
from ..core.errors import CaseGenError
from ..core.json_repair import safe_join
from ..core.timestamps import has_offset
from ..models.schemas import (
    DOCUMENT_TYPES,
    MEDIA_KINDS,
    DocumentSpec,
    DocumentSpecList,
    EvidencePlan,
    MediaSpec,
    MediaSpecList,
    PlanCore,
    SuspectsPlan,
    TimelinePlan,
    VisualRegistry,
)
from ..prompts.design import (
    DESIGN_DOCUMENTS_SYSTEM_PROMPT,
    DESIGN_DOCUMENTS_USER_PROMPT_TEMPLATE,
    DESIGN_MEDIA_NO_REFERENCES,
    DESIGN_MEDIA_REFERENCES_TEMPLATE,
    DESIGN_MEDIA_SYSTEM_PROMPT,
    DESIGN_MEDIA_USER_PROMPT_TEMPLATE,
    DOCUMENT_TYPE_RULES,
    MEDIA_KIND_RULES,
)

logger = logging.getLogger("casegen")

MIN_LENGTH_TARGET = 10
CHAIN_OF_CUSTODY_SECTION = "chain of custody"

# Context each document type is designed from (plan/core is always loaded)
DOCUMENT_CONTEXT_PATHS: Dict[str, List[str]] = {
    "police_report": [EXPAND_TIMELINE_PATH],
    "evidence_log": [EXPAND_TIMELINE_PATH],
    "interview": [PLAN_SUSPECTS_PATH, EXPAND_TIMELINE_PATH],
    "witness_statement": [PLAN_SUSPECTS_PATH, EXPAND_TIMELINE_PATH],
    "forensics_report": [PLAN_EVIDENCE_PATH, EXPAND_TIMELINE_PATH],
    "memo_admin": [PLAN_SUSPECTS_PATH, PLAN_EVIDENCE_PATH, EXPAND_TIMELINE_PATH],
}

# Context each media kind is designed from (plan/core always, visual-registry when present)
MEDIA_CONTEXT_PATHS: Dict[str, List[str]] = {
    "crime_scene_photo": [EXPAND_TIMELINE_PATH, PLAN_EVIDENCE_PATH],
    "surveillance_photo": [EXPAND_TIMELINE_PATH, PLAN_EVIDENCE_PATH],
    "mugshot": [PLAN_SUSPECTS_PATH],
    "evidence_photo": [PLAN_EVIDENCE_PATH, EXPAND_TIMELINE_PATH],
    "forensic_photo": [PLAN_EVIDENCE_PATH, EXPAND_TIMELINE_PATH],
    "document_scan": [PLAN_EVIDENCE_PATH, EXPAND_TIMELINE_PATH],
    "diagram": [EXPAND_TIMELINE_PATH, PLAN_SUSPECTS_PATH, PLAN_EVIDENCE_PATH],
}


def document_specs_path(doc_type: str) -> str:
    return f"design/documents/{doc_type}"


def media_specs_path(kind: str) -> str:
    return f"design/media/{kind}"


class DesignIndex:
    """Ids design specs may reference."""

    def __init__(self, suspect_ids: List[str], evidence_ids: List[str], event_ids: List[str]):
        self.suspect_ids = list(suspect_ids)
        self.evidence_ids = list(evidence_ids)
        self.event_ids = list(event_ids)


# ============================================================================
# Validation
# ============================================================================

def validate_document_specs(specs: DocumentSpecList, doc_type: str, index: DesignIndex) -> List[str]:
    errors = []
    seen = set()
    evidence_ids = set(index.evidence_ids)
    event_ids = set(index.event_ids)
    suspect_ids = set(index.suspect_ids)
    for spec in specs.document_specs:
        label = spec.doc_id or "(no docId)"
        if spec.type != doc_type:
            errors.append(f"{label}: type '{spec.type}' does not match '{doc_type}'")
        if not spec.doc_id.startswith(f"doc_{doc_type}_"):
            errors.append(f"{label}: docId must follow doc_{doc_type}_<nnn>")
        if spec.doc_id in seen:
            errors.append(f"{label}: duplicate docId")
        seen.add(spec.doc_id)
        if len(spec.length_target) != 2:
            errors.append(f"{label}: lengthTarget must be [min, max]")
        else:
            low, high = spec.length_target
            if low < MIN_LENGTH_TARGET or high < low:
                errors.append(f"{label}: invalid lengthTarget [{low}, {high}]")
        if spec.gated and (spec.gating_rule is None or not spec.gating_rule.action):
            errors.append(f"{label}: gated document needs a gatingRule with an action")
        if spec.gating_rule is not None and spec.gating_rule.evidence_id and spec.gating_rule.evidence_id not in evidence_ids:
            errors.append(f"{label}: gatingRule cites unknown evidence '{spec.gating_rule.evidence_id}'")
        if doc_type == "forensics_report" and not any(
            CHAIN_OF_CUSTODY_SECTION in s.lower() for s in spec.sections
        ):
            errors.append(f"{label}: forensics report needs a 'Chain of Custody' section")
        if not spec.sections:
            errors.append(f"{label}: no sections")
        if spec.date_created and not has_offset(spec.date_created):
            errors.append(f"{label}: dateCreated '{spec.date_created}' lacks an ISO-8601 offset")
        errors.extend(f"{label}: unknown evidence '{e}'" for e in spec.evidence_references if e not in evidence_ids)
        errors.extend(f"{label}: unknown event '{e}'" for e in spec.timeline_references if e not in event_ids)
        if doc_type == "interview" and spec.subject_id not in suspect_ids:
            errors.append(f"{label}: interview subjectId '{spec.subject_id}' is not a planned suspect")
    return errors


def validate_media_specs(
    specs: MediaSpecList,
    kind: str,
    index: DesignIndex,
    registry: Optional[VisualRegistry],
) -> List[str]:
    errors = []
    seen = set()
    evidence_ids = set(index.evidence_ids)
    for spec in specs.media_specs:
        label = spec.evidence_id or "(no evidenceId)"
        if spec.kind != kind:
            errors.append(f"{label}: kind '{spec.kind}' does not match '{kind}'")
        if not spec.evidence_id.startswith(f"ev_{kind}_"):
            errors.append(f"{label}: evidenceId must follow ev_{kind}_<nnn>")
        if spec.evidence_id in seen:
            errors.append(f"{label}: duplicate evidenceId")
        seen.add(spec.evidence_id)
        if not spec.deferred and not spec.prompt.strip():
            errors.append(f"{label}: prompt is empty")
        if spec.collected_at and not has_offset(spec.collected_at):
            errors.append(f"{label}: collectedAt '{spec.collected_at}' lacks an ISO-8601 offset")
        errors.extend(f"{label}: unknown evidence '{e}'" for e in spec.related_evidence_ids if e not in evidence_ids)
    for evidence_id, unknown in find_unknown_references(specs.media_specs, registry).items():
        errors.append(f"{evidence_id}: unknown visual references {', '.join(unknown)}")
    return errors


def _reference_lines(registry: Optional[VisualRegistry]) -> str:
    if registry is None or not registry.references:
        return DESIGN_MEDIA_NO_REFERENCES
    lines = [
        f"- {r.reference_id} ({r.category.value}): {r.name}" + ("" if r.image_url else " [no master image]")
        for r in registry.references
    ]
    return DESIGN_MEDIA_REFERENCES_TEMPLATE.format(reference_lines="\n".join(lines))


# ============================================================================
# Service
# ============================================================================

class DesignService(PhaseService):
    """Designs document and media specs per type."""

    phase = "design"

    async def _load_index(self, case_id: str) -> Tuple[PlanCore, DesignIndex]:
        core = await self.context.require(case_id, PLAN_CORE_PATH, PlanCore, phase=self.phase)
        suspects = await self.context.require(case_id, PLAN_SUSPECTS_PATH, SuspectsPlan, phase=self.phase)
        timeline = await self.context.require(case_id, PLAN_TIMELINE_PATH, TimelinePlan, phase=self.phase)
        evidence = await self.context.require(case_id, PLAN_EVIDENCE_PATH, EvidencePlan, phase=self.phase)
        return core, DesignIndex(suspects.ids(), evidence.evidence_ids(), timeline.ids())

    async def design_documents(
        self, case_id: str, doc_type: str, core: PlanCore, index: DesignIndex
    ) -> DocumentSpecList:
        """Design every document of one type and save design/documents/<type>."""
        if doc_type not in DOCUMENT_CONTEXT_PATHS:
            raise ValueError(f"Unknown document type '{doc_type}'")
        snapshot = await self.context.build_snapshot(
            case_id, [PLAN_CORE_PATH] + DOCUMENT_CONTEXT_PATHS[doc_type], phase=self.phase
        )
        profile = get_profile(core.difficulty)

        specs = await self.generate_model(
            case_id,
            f"design_documents_{doc_type}",
            DESIGN_DOCUMENTS_SYSTEM_PROMPT.format(
                doc_type=doc_type,
                gated_documents=profile.gated_documents,
                type_rules=DOCUMENT_TYPE_RULES[doc_type],
            ),
            DESIGN_DOCUMENTS_USER_PROMPT_TEMPLATE.format(
                doc_type=doc_type,
                difficulty=core.difficulty,
                timezone=core.timezone,
                suspect_ids=safe_join(index.suspect_ids),
                evidence_ids=safe_join(index.evidence_ids),
                event_ids=safe_join(index.event_ids),
                context_json=snapshot.to_prompt_json(),
            ),
            "DesignDocuments",
            DocumentSpecList,
            validate=lambda s: validate_document_specs(s, doc_type, index),
            item_id=doc_type,
        )
        await self.context.save(case_id, document_specs_path(doc_type), specs)
        logger.info(f"[design_documents] {len(specs.document_specs)} {doc_type} specs for case {case_id}")
        return specs

    async def design_media(
        self,
        case_id: str,
        kind: str,
        core: PlanCore,
        index: DesignIndex,
        registry: Optional[VisualRegistry],
    ) -> MediaSpecList:
        """Design every media item of one kind and save design/media/<kind>."""
        if kind not in MEDIA_CONTEXT_PATHS:
            raise ValueError(f"Unknown media kind '{kind}'")
        paths = [PLAN_CORE_PATH] + MEDIA_CONTEXT_PATHS[kind]
        snapshot = await self.context.build_snapshot(case_id, paths, phase=self.phase)
        if registry is not None:
            snapshot.items[VISUAL_REGISTRY_PATH] = registry.to_json_dict()

        specs = await self.generate_model(
            case_id,
            f"design_media_{kind}",
            DESIGN_MEDIA_SYSTEM_PROMPT.format(
                media_kind=kind,
                visual_references=_reference_lines(registry),
                kind_rules=MEDIA_KIND_RULES[kind],
            ),
            DESIGN_MEDIA_USER_PROMPT_TEMPLATE.format(
                media_kind=kind,
                difficulty=core.difficulty,
                timezone=core.timezone,
                evidence_ids=safe_join(index.evidence_ids),
                suspect_ids=safe_join(index.suspect_ids),
                context_json=snapshot.to_prompt_json(),
            ),
            "DesignMedia",
            MediaSpecList,
            validate=lambda s: validate_media_specs(s, kind, index, registry),
            item_id=kind,
        )
        await self.context.save(case_id, media_specs_path(kind), specs)
        logger.info(f"[design_media] {len(specs.media_specs)} {kind} specs for case {case_id}")
        return specs

    async def run(
        self,
        case_id: str,
        document_types: Optional[List[str]] = None,
        media_kinds: Optional[List[str]] = None,
    ) -> Dict[str, int]:
        """
        Design every requested document type and media kind.

        A type whose design fails after retries is logged and skipped; the
        phase fails only when no document type could be designed.

        Returns:
            Counts of document and media specs saved
        """
        core, index = await self._load_index(case_id)
        registry = await self.context.load(case_id, VISUAL_REGISTRY_PATH, VisualRegistry)
        document_types = list(document_types or DOCUMENT_TYPES)
        media_kinds = list(media_kinds or MEDIA_KINDS)

        tasks = [("document", t) for t in document_types] + [("media", k) for k in media_kinds]

        async def worker(task):
            kind, name = task
            if kind == "document":
                return await self.design_documents(case_id, name, core, index)
            return await self.design_media(case_id, name, core, index, registry)

        results = await self.fan_out(tasks, worker)

        document_count = media_count = designed_types = 0
        for (kind, name), result in zip(tasks, results):
            if isinstance(result, BaseException):
                logger.error(f"[design.run] Design of {kind} '{name}' failed for case {case_id}: {result}")
                continue
            if kind == "document":
                designed_types += 1
                document_count += len(result.document_specs)
            else:
                media_count += len(result.media_specs)

        if document_types and designed_types == 0:
            raise CaseGenError("No document type could be designed", case_id=case_id, phase=self.phase)

        profile = get_profile(core.difficulty)
        if not profile.documents[0] <= document_count <= profile.documents[1]:
            logger.warning(
                f"[design.run] {document_count} documents outside {profile.documents} for case {case_id}"
            )
        self.log_step(case_id, "design", f"{document_count} document specs, {media_count} media specs")
        return {"documents": document_count, "media": media_count}


async def load_document_specs(context, case_id: str) -> List[DocumentSpec]:
    """Every designed document spec, ordered by type path."""
    specs: List[DocumentSpec] = []
    for _, value in sorted((await context.query(case_id, document_specs_path("*"))).items()):
        specs.extend(DocumentSpecList.model_validate(value).document_specs)
    return specs


async def load_media_specs(context, case_id: str) -> List[MediaSpec]:
    """Every designed media spec, ordered by kind path."""
    specs: List[MediaSpec] = []
    for _, value in sorted((await context.query(case_id, media_specs_path("*"))).items()):
        specs.extend(MediaSpecList.model_validate(value).media_specs)
    return specs
