"""
CaseGen Data Models Module
Pydantic schemas for case artifacts.
"""

from .schema_provider import SCHEMA_MODELS, SchemaProvider
from .schemas import (
    DOCUMENT_TYPES,
    MEDIA_KINDS,
    PRIORITY_ORDER,
    AlibiLink,
    BundleManifest,
    BundleMetadata,
    BundleVisibility,
    CaseModel,
    # Seed
    CaseSeed,
    Contradiction,
    CustodyEntry,
    # Design Models
    DocumentSpec,
    DocumentSpecList,
    EventLink,
    EvidenceLink,
    EvidencePlan,
    ExpandedEvent,
    ExpandedEvidence,
    # Expansion Models
    ExpandedSuspect,
    ExpandedTimeline,
    FixAction,
    GatingEdge,
    GatingGraph,
    GatingNode,
    GatingRule,
    GeneratedDocument,
    GeneratedMedia,
    GeneratedSection,
    GenerationMode,
    GlobalAnalysis,
    GoldenFact,
    ImagePrompt,
    # Enums
    IssueFix,
    IssueLocation,
    IssuePriority,
    MacroIssue,
    # Packaging Models
    ManifestEntry,
    MediaSpec,
    MediaSpecList,
    NormalizedCase,
    NormalizedDocument,
    NormalizedMedia,
    PipelineRun,
    PipelineState,
    # Plan Models
    PlanCore,
    PlannedSuspect,
    # Red-Team Models
    RedTeamIssue,
    RedTeamReport,
    RelationshipNote,
    RelationshipSynthesis,
    RuleStatus,
    StateTransition,
    SuspectRelation,
    SuspectsPlan,
    TimelineEvent,
    TimelinePlan,
    ValidationReport,
    ValidationRuleResult,
    VisualCategory,
    VisualReference,
    VisualReferenceDrafts,
    VisualRegistry,
    evidence_id_for_index,
)

__all__ = [
    "SchemaProvider",
    "SCHEMA_MODELS",
    "CaseModel",
    "DOCUMENT_TYPES",
    "MEDIA_KINDS",
    "PRIORITY_ORDER",
    "IssuePriority",
    "FixAction",
    "VisualCategory",
    "GenerationMode",
    "RuleStatus",
    "PipelineState",
    "CaseSeed",
    "PlanCore",
    "PlannedSuspect",
    "SuspectsPlan",
    "TimelineEvent",
    "TimelinePlan",
    "GoldenFact",
    "EvidencePlan",
    "evidence_id_for_index",
    "RelationshipNote",
    "ExpandedSuspect",
    "CustodyEntry",
    "ExpandedEvidence",
    "ExpandedEvent",
    "ExpandedTimeline",
    "SuspectRelation",
    "EvidenceLink",
    "EventLink",
    "Contradiction",
    "AlibiLink",
    "RelationshipSynthesis",
    "GatingRule",
    "DocumentSpec",
    "DocumentSpecList",
    "MediaSpec",
    "MediaSpecList",
    "VisualReference",
    "VisualReferenceDrafts",
    "VisualRegistry",
    "GeneratedSection",
    "GeneratedDocument",
    "ImagePrompt",
    "GeneratedMedia",
    "IssueLocation",
    "IssueFix",
    "RedTeamIssue",
    "RedTeamReport",
    "MacroIssue",
    "GlobalAnalysis",
    "ValidationRuleResult",
    "GatingNode",
    "GatingEdge",
    "GatingGraph",
    "NormalizedDocument",
    "NormalizedMedia",
    "NormalizedCase",
    "ValidationReport",
    "ManifestEntry",
    "BundleVisibility",
    "BundleManifest",
    "BundleMetadata",
    "StateTransition",
    "PipelineRun",
]
