"""
Schema Provider

Named JSON schemas for structured generation calls, derived from the pydantic
artifact models so the contract and the validator never drift apart.
"""

from typing import Any, Dict, List, Type

from pydantic import BaseModel

from .schemas import (
    DocumentSpecList,
    EvidencePlan,
    ExpandedEvidence,
    ExpandedSuspect,
    ExpandedTimeline,
    GeneratedDocument,
    GlobalAnalysis,
    ImagePrompt,
    MediaSpecList,
    PlanCore,
    RedTeamReport,
    RelationshipSynthesis,
    SuspectsPlan,
    TimelinePlan,
    VisualReferenceDrafts,
)

SCHEMA_MODELS: Dict[str, Type[BaseModel]] = {
    "PlanCore": PlanCore,
    "PlanSuspects": SuspectsPlan,
    "PlanTimeline": TimelinePlan,
    "PlanEvidence": EvidencePlan,
    "ExpandSuspect": ExpandedSuspect,
    "ExpandEvidence": ExpandedEvidence,
    "ExpandTimeline": ExpandedTimeline,
    "RelationshipSynthesis": RelationshipSynthesis,
    "DesignDocuments": DocumentSpecList,
    "DesignMedia": MediaSpecList,
    "VisualRegistry": VisualReferenceDrafts,
    "GeneratedDocument": GeneratedDocument,
    "ImagePrompt": ImagePrompt,
    "RedTeamGlobal": GlobalAnalysis,
    "RedTeamStructured": RedTeamReport,
}

# Bookkeeping fields set by the pipeline, never by the generator
_INTERNAL_FIELDS = {"profile", "isFallback", "chunkIndex", "failed"}


class SchemaProvider:
    """Static lookup of structured-output contracts by name."""

    def __init__(self, models: Dict[str, Type[BaseModel]] = None):
        self._models = dict(models or SCHEMA_MODELS)
        self._cache: Dict[str, Dict[str, Any]] = {}

    def names(self) -> List[str]:
        return sorted(self._models.keys())

    def get_model(self, name: str) -> Type[BaseModel]:
        if name not in self._models:
            raise KeyError(f"Unknown schema '{name}'. Available: {', '.join(self.names())}")
        return self._models[name]

    def get_schema(self, name: str) -> Dict[str, Any]:
        """JSON schema document for the named contract."""
        if name not in self._cache:
            schema = self.get_model(name).model_json_schema(by_alias=True)
            properties = schema.get("properties", {})
            for key in _INTERNAL_FIELDS:
                properties.pop(key, None)
            self._cache[name] = schema
        # Callers may annotate the schema; hand out a shallow copy
        return dict(self._cache[name])
