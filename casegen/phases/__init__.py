"""
CaseGen Phases Module
Plan, Expand, visual registry, Design, Generate, Normalize and Validate.
"""

from .base import PhaseService
from .design import DesignService, load_document_specs, load_media_specs
from .expand import ExpandService
from .generate import GenerateService
from .normalize import NormalizeService, normalize_case
from .plan import PlanService
from .validate import VALIDATE_REPORT_PATH, ValidateService
from .visual_registry import VisualRegistryService, find_unknown_references

__all__ = [
    "PhaseService",
    "PlanService",
    "ExpandService",
    "VisualRegistryService",
    "find_unknown_references",
    "DesignService",
    "load_document_specs",
    "load_media_specs",
    "GenerateService",
    "NormalizeService",
    "normalize_case",
    "ValidateService",
    "VALIDATE_REPORT_PATH",
]
