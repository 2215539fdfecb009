"""
Pydantic data models for CaseGen.

Every artifact a phase writes through the Context Manager is one of these
models. JSON uses camelCase keys (docId, evidenceId, collectedAt); input
accepts either the camelCase alias or the snake_case field name.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CaseModel(BaseModel):
    """Base model: camelCase aliases, unknown keys preserved."""
    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        extra="allow",
    )

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ============================================================================
# Enums
# ============================================================================

class IssuePriority(str, Enum):
    """Red-team issue priority."""
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


PRIORITY_ORDER = {IssuePriority.HIGH: 0, IssuePriority.MEDIUM: 1, IssuePriority.LOW: 2}


class FixAction(str, Enum):
    """Surgical edit applied by the precision editor."""
    UPDATE_TIMESTAMP = "UpdateTimestamp"
    REPLACE_TEXT = "ReplaceText"
    MOVE_TO_ADDENDUM = "MoveToAddendum"
    REMOVE_REFERENCE = "RemoveReference"
    ADD_MEDIA_ATTACHMENT = "AddMediaAttachment"
    GENERATE_MISSING_DOCUMENT = "GenerateMissingDocument"


class VisualCategory(str, Enum):
    """What a visual reference anchors."""
    PHYSICAL_EVIDENCE = "physical_evidence"
    SUSPECT = "suspect"
    LOCATION = "location"


class GenerationMode(str, Enum):
    """How a media item's image was (or was not) produced."""
    REFERENCE = "reference"
    TEXT_ONLY = "text_only"
    DEFERRED = "deferred"
    FAILED = "failed"


class RuleStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"


class PipelineState(str, Enum):
    """Orchestration states, in pipeline order."""
    PLANNING = "Planning"
    EXPANDING = "Expanding"
    DESIGNING = "Designing"
    GENERATING = "Generating"
    NORMALIZING = "Normalizing"
    VALIDATING = "Validating"
    RED_TEAMING = "RedTeaming"
    FIXING = "Fixing"
    PACKAGING = "Packaging"
    DONE = "Done"
    FAILED = "Failed"


DOCUMENT_TYPES = [
    "police_report",
    "interview",
    "witness_statement",
    "forensics_report",
    "evidence_log",
    "memo_admin",
]

MEDIA_KINDS = [
    "crime_scene_photo",
    "surveillance_photo",
    "mugshot",
    "evidence_photo",
    "forensic_photo",
    "document_scan",
    "diagram",
]


# ============================================================================
# Seed
# ============================================================================

class CaseSeed(CaseModel):
    """Short user input the whole case grows from."""
    title: Optional[str] = None
    location: Optional[str] = None
    incident_type: Optional[str] = None
    difficulty: Optional[str] = None
    timezone: str = "UTC"
    target_duration_minutes: Optional[int] = Field(default=None, ge=10)
    constraints: Optional[str] = None
    generate_images: bool = True


# ============================================================================
# Plan Models
# ============================================================================

class PlanCore(CaseModel):
    """Case premise plus the applied difficulty profile."""
    title: str
    location: str
    incident_type: str = ""
    overview: str = Field(..., description="Premise of the case as briefed to the investigator")
    victim: Optional[str] = None
    culprit_summary: str = Field(default="", description="Sealed: who did it and how. Never shown to the player.")
    timezone: str = "UTC"
    difficulty: str = "Rookie"
    target_duration_minutes: Optional[int] = None
    profile: Dict[str, Any] = Field(default_factory=dict)


class PlannedSuspect(CaseModel):
    suspect_id: str = Field(..., description="S001, S002, ...")
    name: str
    role: str
    initial_motive: str = Field(default="", description="Undisclosed initial motivation")


class SuspectsPlan(CaseModel):
    suspects: List[PlannedSuspect] = Field(default_factory=list)

    def ids(self) -> List[str]:
        return [s.suspect_id for s in self.suspects]


class TimelineEvent(CaseModel):
    event_id: str = Field(..., description="E001, E002, ...")
    timestamp: str = Field(..., description="ISO-8601 with UTC offset")
    title: str
    description: str = ""
    location: Optional[str] = None
    suspect_ids: List[str] = Field(default_factory=list)


class TimelinePlan(CaseModel):
    events: List[TimelineEvent] = Field(default_factory=list)

    def ids(self) -> List[str]:
        return [e.event_id for e in self.events]


class GoldenFact(CaseModel):
    """Sealed ground-truth statement the evidence must support."""
    fact_id: str = Field(..., description="F001, F002, ...")
    statement: str
    min_supports: int = Field(default=2, ge=2)
    supported_by: List[str] = Field(default_factory=list, description="Evidence ids (EV001...)")


class EvidencePlan(CaseModel):
    main_elements: List[str] = Field(default_factory=list, description="Element type per evidence item; EV001 is index 0")
    golden_truth: List[GoldenFact] = Field(default_factory=list)

    def evidence_ids(self) -> List[str]:
        return [evidence_id_for_index(i) for i in range(len(self.main_elements))]


def evidence_id_for_index(index: int) -> str:
    return f"EV{index + 1:03d}"


# ============================================================================
# Expansion Models
# ============================================================================

class RelationshipNote(CaseModel):
    target_id: str = Field(..., description="Suspect id of the other person")
    nature: str


class ExpandedSuspect(CaseModel):
    suspect_id: str
    name: str
    background: str = ""
    motive: str = ""
    alibi: str = ""
    behavior: str = ""
    relationships: List[RelationshipNote] = Field(default_factory=list)


class CustodyEntry(CaseModel):
    timestamp: str
    handler: str
    action: str


class ExpandedEvidence(CaseModel):
    evidence_id: str
    element_type: str = ""
    discovery_context: str = ""
    chain_of_custody: List[CustodyEntry] = Field(default_factory=list)
    forensic_notes: str = ""
    linked_fact_ids: List[str] = Field(default_factory=list)
    linked_suspect_ids: List[str] = Field(default_factory=list)
    linked_event_ids: List[str] = Field(default_factory=list)


class ExpandedEvent(CaseModel):
    event_id: str
    timestamp: str
    title: str = ""
    description: str = ""
    witness_accounts: List[str] = Field(default_factory=list)
    contradictions: List[str] = Field(default_factory=list)
    significance: str = ""


class ExpandedTimeline(CaseModel):
    events: List[ExpandedEvent] = Field(default_factory=list)

    def ids(self) -> List[str]:
        return [e.event_id for e in self.events]


class SuspectRelation(CaseModel):
    from_id: str
    to_id: str
    relation: str


class EvidenceLink(CaseModel):
    evidence_id: str
    suspect_ids: List[str] = Field(default_factory=list)
    event_ids: List[str] = Field(default_factory=list)
    fact_ids: List[str] = Field(default_factory=list)


class EventLink(CaseModel):
    from_id: str
    to_id: str
    link_type: str = Field(..., description="causal | temporal | logical")


class Contradiction(CaseModel):
    subject_ids: List[str] = Field(default_factory=list)
    description: str


class AlibiLink(CaseModel):
    suspect_id: str
    corroborated_by: List[str] = Field(default_factory=list)
    status: str = Field(default="unverified", description="corroborated | contradicted | unverified")


class RelationshipSynthesis(CaseModel):
    """Derived graph over plan and expansion ids. Read-only once computed."""
    suspect_relations: List[SuspectRelation] = Field(default_factory=list)
    evidence_links: List[EvidenceLink] = Field(default_factory=list)
    event_links: List[EventLink] = Field(default_factory=list)
    contradiction_matrix: List[Contradiction] = Field(default_factory=list)
    alibi_network: List[AlibiLink] = Field(default_factory=list)


# ============================================================================
# Design Models
# ============================================================================

class GatingRule(CaseModel):
    action: str = Field(..., description="submit_evidence | role_required | manual_unlock")
    evidence_id: Optional[str] = None
    doc_id: Optional[str] = None
    notes: Optional[str] = None


class DocumentSpec(CaseModel):
    doc_id: str
    type: str
    title: str
    date_created: Optional[str] = None
    sections: List[str] = Field(default_factory=list)
    length_target: List[int] = Field(default_factory=lambda: [150, 400])
    gated: bool = False
    gating_rule: Optional[GatingRule] = None
    subject_id: Optional[str] = None
    evidence_references: List[str] = Field(default_factory=list)
    timeline_references: List[str] = Field(default_factory=list)


class DocumentSpecList(CaseModel):
    document_specs: List[DocumentSpec] = Field(default_factory=list)


class MediaSpec(CaseModel):
    evidence_id: str
    kind: str
    title: str
    collected_at: Optional[str] = None
    prompt: str = ""
    constraints: Dict[str, Any] = Field(default_factory=dict)
    deferred: bool = False
    related_evidence_ids: List[str] = Field(default_factory=list)
    visual_reference_ids: List[str] = Field(default_factory=list)


class MediaSpecList(CaseModel):
    media_specs: List[MediaSpec] = Field(default_factory=list)


class VisualReference(CaseModel):
    reference_id: str
    category: VisualCategory
    name: str
    detailed_description: str
    color_palette: List[str] = Field(default_factory=list, description="Hex colours, e.g. #1A2B3C")
    distinctive_features: List[str] = Field(default_factory=list)
    appears_in: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None


class VisualReferenceDrafts(CaseModel):
    references: List[VisualReference] = Field(default_factory=list)


class VisualRegistry(CaseModel):
    case_id: str
    references: List[VisualReference] = Field(default_factory=list)
    generated_at: str = Field(default_factory=_utc_now_iso)

    def by_id(self) -> Dict[str, VisualReference]:
        return {r.reference_id: r for r in self.references}


# ============================================================================
# Generated Artifacts
# ============================================================================

class GeneratedSection(CaseModel):
    title: str
    content: str = ""


class GeneratedDocument(CaseModel):
    doc_id: str
    type: str
    title: str
    sections: List[GeneratedSection] = Field(default_factory=list)
    created_at: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    media_attachments: List[str] = Field(default_factory=list)


class ImagePrompt(CaseModel):
    image_prompt: str
    negative_prompt: str = ""
    camera: str = ""


class GeneratedMedia(CaseModel):
    evidence_id: str
    kind: str
    title: str
    image_prompt: str = ""
    collected_at: Optional[str] = None
    generation_mode: GenerationMode = GenerationMode.DEFERRED
    image_path: Optional[str] = None
    visual_reference_ids: List[str] = Field(default_factory=list)
    unknown_reference_ids: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Red-Team Models
# ============================================================================

class IssueLocation(CaseModel):
    doc_id: str = ""
    field: Optional[str] = None
    section: Optional[str] = None
    line_pattern: Optional[str] = None
    current_value: Optional[str] = None

    def dedup_key(self) -> tuple:
        return (self.doc_id or "", self.field or "", self.section or "", self.line_pattern or "")


class IssueFix(CaseModel):
    action: str = FixAction.REPLACE_TEXT.value
    new_value: Optional[str] = None
    old_text: Optional[str] = None
    new_text: Optional[str] = None
    new_section: Optional[str] = None
    reason: Optional[str] = None


class RedTeamIssue(CaseModel):
    priority: IssuePriority = IssuePriority.MEDIUM
    type: str = ""
    location: IssueLocation = Field(default_factory=IssueLocation)
    problem: str = ""
    fix: IssueFix = Field(default_factory=IssueFix)


class RedTeamReport(CaseModel):
    issues: List[RedTeamIssue] = Field(default_factory=list)
    summary: str = ""
    high_priority_count: int = 0
    medium_priority_count: int = 0
    low_priority_count: int = 0
    is_fallback: bool = False
    chunk_index: Optional[int] = None
    failed: bool = False

    def recount(self) -> "RedTeamReport":
        """Recompute priority counts from the issue list."""
        self.high_priority_count = sum(1 for i in self.issues if i.priority == IssuePriority.HIGH)
        self.medium_priority_count = sum(1 for i in self.issues if i.priority == IssuePriority.MEDIUM)
        self.low_priority_count = sum(1 for i in self.issues if i.priority == IssuePriority.LOW)
        return self

    @property
    def total_count(self) -> int:
        return len(self.issues)


class MacroIssue(CaseModel):
    type: str = ""
    severity: str = "Major"
    affected_documents: List[str] = Field(default_factory=list)
    description: str = ""
    required_focus_areas: List[str] = Field(default_factory=list)


class GlobalAnalysis(CaseModel):
    macro_issues: List[MacroIssue] = Field(default_factory=list)
    critical_documents: List[str] = Field(default_factory=list)
    focus_areas: List[str] = Field(default_factory=list)
    overall_assessment: str = ""
    requires_detailed_analysis: bool = True
    is_fallback: bool = False


# ============================================================================
# Normalization / Validation Models
# ============================================================================

class ValidationRuleResult(CaseModel):
    rule: str
    status: RuleStatus
    description: str
    details: Optional[str] = None


class GatingNode(CaseModel):
    id: str
    type: str = Field(..., description="document | evidence")
    gated: bool = False
    unlock_action: Optional[str] = None
    required_ids: List[str] = Field(default_factory=list)


class GatingEdge(CaseModel):
    from_id: str
    to_id: str
    relationship: str = "unlocks"


class GatingGraph(CaseModel):
    nodes: List[GatingNode] = Field(default_factory=list)
    edges: List[GatingEdge] = Field(default_factory=list)
    has_cycles: bool = False
    cycle_description: List[str] = Field(default_factory=list)


class NormalizedDocument(GeneratedDocument):
    gated: bool = False
    gating_rule: Optional[GatingRule] = None
    length_target: List[int] = Field(default_factory=list)
    evidence_references: List[str] = Field(default_factory=list)
    timeline_references: List[str] = Field(default_factory=list)


class NormalizedMedia(GeneratedMedia):
    deferred: bool = False
    related_evidence_ids: List[str] = Field(default_factory=list)


class NormalizedCase(CaseModel):
    """The canonical case the red-team/fix loop works on."""
    case_id: str
    version: str = "1.0"
    created_at: str = Field(default_factory=_utc_now_iso)
    timezone: str = "UTC"
    difficulty: str = "Rookie"
    title: str = ""
    location: str = ""
    overview: str = ""
    target_duration_minutes: Optional[int] = None
    documents: List[NormalizedDocument] = Field(default_factory=list)
    media: List[NormalizedMedia] = Field(default_factory=list)
    gating_graph: GatingGraph = Field(default_factory=GatingGraph)
    applied_rules: List[str] = Field(default_factory=list)
    validation_results: List[ValidationRuleResult] = Field(default_factory=list)


class ValidationReport(CaseModel):
    case_id: str
    results: List[ValidationRuleResult] = Field(default_factory=list)
    llm_review: Optional[Dict[str, Any]] = None
    generated_at: str = Field(default_factory=_utc_now_iso)

    @property
    def passed(self) -> bool:
        return all(r.status != RuleStatus.FAIL for r in self.results)


# ============================================================================
# Packaging Models
# ============================================================================

class ManifestEntry(CaseModel):
    path: str
    sha256: str
    size_bytes: int
    mime_type: str


class BundleVisibility(CaseModel):
    always_visible: List[str] = Field(default_factory=list)
    gated: List[str] = Field(default_factory=list)


class BundleManifest(CaseModel):
    case_id: str
    version: str = "1.0"
    generated_at: str = Field(default_factory=_utc_now_iso)
    files: List[ManifestEntry] = Field(default_factory=list)
    visibility: BundleVisibility = Field(default_factory=BundleVisibility)


class BundleMetadata(CaseModel):
    case_id: str
    title: str = ""
    difficulty: str = "Rookie"
    estimated_duration_minutes: Optional[int] = None
    timezone: str = "UTC"
    document_count: int = 0
    media_count: int = 0
    generated_at: str = Field(default_factory=_utc_now_iso)


# ============================================================================
# Pipeline Run State
# ============================================================================

class StateTransition(CaseModel):
    from_state: PipelineState
    to_state: PipelineState
    at: str = Field(default_factory=_utc_now_iso)
    note: Optional[str] = None


class PipelineRun(CaseModel):
    case_id: str
    state: PipelineState = PipelineState.PLANNING
    fix_iteration: int = 0
    max_fix_iterations: int = 3
    history: List[StateTransition] = Field(default_factory=list)
    last_error: Optional[str] = None
    clean: Optional[bool] = None
