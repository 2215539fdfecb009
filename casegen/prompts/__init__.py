"""
CaseGen Prompts Module
System prompts and user prompt templates per pipeline phase.
"""

from .design import (
    DESIGN_DOCUMENTS_SYSTEM_PROMPT,
    DESIGN_DOCUMENTS_USER_PROMPT_TEMPLATE,
    DESIGN_MEDIA_SYSTEM_PROMPT,
    DESIGN_MEDIA_USER_PROMPT_TEMPLATE,
)
from .expand import (
    EXPAND_EVIDENCE_SYSTEM_PROMPT,
    EXPAND_SUSPECT_SYSTEM_PROMPT,
    EXPAND_TIMELINE_SYSTEM_PROMPT,
    SYNTHESIZE_RELATIONS_SYSTEM_PROMPT,
)
from .fix import FIX_FALLBACK_SYSTEM_PROMPT
from .generate import GENERATE_DOCUMENT_SYSTEM_PROMPT, GENERATE_IMAGE_PROMPT_SYSTEM_PROMPT
from .plan import (
    PLAN_CORE_SYSTEM_PROMPT,
    PLAN_EVIDENCE_SYSTEM_PROMPT,
    PLAN_SUSPECTS_SYSTEM_PROMPT,
    PLAN_TIMELINE_SYSTEM_PROMPT,
)
from .red_team import QUALITY_CLASSIFIER_SYSTEM_PROMPT, RED_TEAM_GLOBAL_SYSTEM_PROMPT
from .validate import VALIDATE_REVIEW_SYSTEM_PROMPT
from .visual import VISUAL_REGISTRY_SYSTEM_PROMPT

__all__ = [
    "PLAN_CORE_SYSTEM_PROMPT",
    "PLAN_SUSPECTS_SYSTEM_PROMPT",
    "PLAN_TIMELINE_SYSTEM_PROMPT",
    "PLAN_EVIDENCE_SYSTEM_PROMPT",
    "EXPAND_SUSPECT_SYSTEM_PROMPT",
    "EXPAND_EVIDENCE_SYSTEM_PROMPT",
    "EXPAND_TIMELINE_SYSTEM_PROMPT",
    "SYNTHESIZE_RELATIONS_SYSTEM_PROMPT",
    "VISUAL_REGISTRY_SYSTEM_PROMPT",
    "DESIGN_DOCUMENTS_SYSTEM_PROMPT",
    "DESIGN_DOCUMENTS_USER_PROMPT_TEMPLATE",
    "DESIGN_MEDIA_SYSTEM_PROMPT",
    "DESIGN_MEDIA_USER_PROMPT_TEMPLATE",
    "GENERATE_DOCUMENT_SYSTEM_PROMPT",
    "GENERATE_IMAGE_PROMPT_SYSTEM_PROMPT",
    "VALIDATE_REVIEW_SYSTEM_PROMPT",
    "RED_TEAM_GLOBAL_SYSTEM_PROMPT",
    "QUALITY_CLASSIFIER_SYSTEM_PROMPT",
    "FIX_FALLBACK_SYSTEM_PROMPT",
]
