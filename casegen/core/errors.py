"""
Error taxonomy for CaseGen.

Every error names the case, the phase and, where one is involved, the
document/evidence/chunk identifier so operators can locate the failure.
"""

from typing import List, Optional


class CaseGenError(Exception):
    """Base error for the generation pipeline."""

    def __init__(
        self,
        message: str,
        case_id: Optional[str] = None,
        phase: Optional[str] = None,
        item_id: Optional[str] = None,
    ):
        self.message = message
        self.case_id = case_id
        self.phase = phase
        self.item_id = item_id
        super().__init__(self._format())

    def _format(self) -> str:
        parts = [f"case={self.case_id or 'unknown'}", f"phase={self.phase or 'unknown'}"]
        if self.item_id:
            parts.append(f"item={self.item_id}")
        return f"[{' '.join(parts)}] {self.message}"


class MissingContextError(CaseGenError):
    """A required artifact for the next phase does not exist."""

    def __init__(self, path: str, case_id: Optional[str] = None, phase: Optional[str] = None):
        self.path = path
        super().__init__(f"Missing required context '{path}'", case_id=case_id, phase=phase)


class PhaseValidationError(CaseGenError):
    """A phase output failed structural or referential validation."""

    def __init__(
        self,
        errors: List[str],
        case_id: Optional[str] = None,
        phase: Optional[str] = None,
        item_id: Optional[str] = None,
    ):
        self.errors = list(errors)
        summary = "; ".join(self.errors[:5])
        if len(self.errors) > 5:
            summary += f" (+{len(self.errors) - 5} more)"
        super().__init__(f"Validation failed: {summary}", case_id=case_id, phase=phase, item_id=item_id)


class GeneratorError(CaseGenError):
    """The content generator failed or returned unusable output."""


class InvalidTransitionError(CaseGenError):
    """The orchestration state machine was asked for an illegal transition."""


class CaseAlreadyPackagedError(CaseGenError):
    """A packaged case is immutable."""


class ArtifactNotFoundError(KeyError):
    """An artifact store lookup found nothing at the given path."""

    def __init__(self, container: str, path: str):
        self.container = container
        self.path = path
        super().__init__(f"{container}/{path}")
