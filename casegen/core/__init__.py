"""
CaseGen Core Module
Context management, red-team analysis, editing, gating and packaging.

Submodules are imported directly (casegen.core.red_team, ...); only the error
types are re-exported here because the services layer depends on them.
"""

from .errors import (
    ArtifactNotFoundError,
    CaseAlreadyPackagedError,
    CaseGenError,
    GeneratorError,
    InvalidTransitionError,
    MissingContextError,
    PhaseValidationError,
)

__all__ = [
    "CaseGenError",
    "MissingContextError",
    "PhaseValidationError",
    "GeneratorError",
    "InvalidTransitionError",
    "CaseAlreadyPackagedError",
    "ArtifactNotFoundError",
]
