"""
Precision Editor for CaseGen

Applies located red-team issues as surgical edits to the case JSON instead of
regenerating documents.

Key concepts:
- Location: docId selects a document (or, failing that, a media item by
  evidenceId); section selects a section by title; field is a typed path such
  as sections[2].content or metadata.collectedAt
- Paths are validated against the actual target before anything is mutated
- Issues are applied in priority order on a copy; the result must still be a
  valid case or the original text is returned unchanged (fail closed)
- GenerateMissingDocument is never acted on here; it is reported as skipped
"""

import bisect
import copy
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from .errors import CaseGenError
from .json_repair import canonical_json, extract_json
from .red_team import case_documents, case_media, load_case, repair_report
from ..models.schemas import (
    PRIORITY_ORDER,
    FixAction,
    NormalizedCase,
    RedTeamIssue,
    RedTeamReport,
)
from ..prompts.fix import FIX_FALLBACK_SYSTEM_PROMPT, FIX_FALLBACK_USER_PROMPT_TEMPLATE

logger = logging.getLogger("casegen")

ADDENDUM_MARKER = "[Moved to addendum - see post-incident analysis]"
SKIPPED_DOC_IDS = {"", "skeleton", "chunk_scope"}
# Media fields that hold prose
FREE_TEXT_FIELDS = ("title", "description", "caption", "imagePrompt")

_SEGMENT = r"[A-Za-z_][A-Za-z0-9_]*(?:\[\d+\])*"
_FIELD_PATH_RE = re.compile(rf"^{_SEGMENT}(?:\.{_SEGMENT})*$")
_TOKEN_RE = re.compile(r"([A-Za-z_][A-Za-z0-9_]*)|\[(\d+)\]")
_EVIDENCE_ID_RE = re.compile(r"\bev_[A-Za-z_]+\d+\b|\bEV\d{3}\b")
_EVIDENCE_LABEL_RE = re.compile(r"evidenceId[:\s]+[\"']?([A-Za-z0-9_\-]+)")
_WHITESPACE_RUN_RE = re.compile(r"[ \t]{2,}")


class FieldPathError(ValueError):
    """A field path is malformed or does not exist on the target."""


class FieldPath:
    """
    Typed path into a JSON object: dot-separated keys with [index] suffixes.

    Example: sections[2].content -> ["sections", 2, "content"]
    """

    def __init__(self, raw: str):
        text = (raw or "").strip()
        if not _FIELD_PATH_RE.match(text):
            raise FieldPathError(f"Malformed field path: {raw!r}")
        self.raw = text
        self.parts: List[Union[str, int]] = [
            name if name else int(index) for name, index in _TOKEN_RE.findall(text)
        ]

    def __repr__(self) -> str:
        return f"FieldPath({self.raw!r})"

    def _step(self, current: Any, part: Union[str, int]) -> Any:
        if isinstance(part, int):
            if not isinstance(current, list) or part >= len(current):
                raise FieldPathError(f"{self.raw}: index [{part}] does not exist")
            return current[part]
        if not isinstance(current, dict) or part not in current:
            raise FieldPathError(f"{self.raw}: key '{part}' does not exist")
        return current[part]

    def get(self, target: Any) -> Any:
        current = target
        for part in self.parts:
            current = self._step(current, part)
        return current

    def set(self, target: Any, value: Any) -> None:
        """Replace the value at the path; the full path must already exist."""
        parent = target
        for part in self.parts[:-1]:
            parent = self._step(parent, part)
        self._step(parent, self.parts[-1])
        parent[self.parts[-1]] = value


@dataclass
class EditResult:
    """Outcome of one precision-edit pass."""
    case_json: str
    applied: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    reverted: bool = False
    used_fallback: bool = False
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return bool(self.applied) and not self.reverted


def extract_evidence_id(issue: RedTeamIssue) -> Optional[str]:
    """Evidence id named by an AddMediaAttachment issue."""
    candidates = [
        issue.fix.new_value,
        issue.fix.new_text,
        issue.location.current_value,
        issue.location.line_pattern,
        issue.problem,
    ]
    for text in candidates:
        if not text:
            continue
        match = _EVIDENCE_ID_RE.search(text)
        if match:
            return match.group(0)
        match = _EVIDENCE_LABEL_RE.search(text)
        if match:
            return match.group(1)
    return None


def _issue_label(issue: RedTeamIssue) -> str:
    return f"{issue.location.doc_id or '?'}:{issue.fix.action}"


def _ordered(issues: List[RedTeamIssue]) -> List[RedTeamIssue]:
    """Priority order, ties broken by content so input order never matters."""
    return sorted(issues, key=lambda i: (PRIORITY_ORDER[i.priority], canonical_json(i.to_json_dict())))


class PrecisionEditor:
    """Surgical, fail-closed edits driven by red-team issues."""

    def __init__(self, generator=None, case_logging=None):
        """
        Initialize the editor.

        Args:
            generator: ContentGenerator used only by the free-form fallback in fix_case
            case_logging: Optional CaseLoggingService for raw fallback responses
        """
        self.generator = generator
        self.case_logging = case_logging

    # ========================================================================
    # Target resolution
    # ========================================================================

    def _find_target(self, case: Dict[str, Any], item_id: str) -> Optional[Dict[str, Any]]:
        for document in case_documents(case):
            if document.get("docId") == item_id:
                return document
        for media in case_media(case):
            if media.get("evidenceId") == item_id:
                return media
        return None

    def _text_slots(self, target: Dict[str, Any], issue: RedTeamIssue) -> List[FieldPath]:
        """Field paths of the text the issue may touch."""
        location = issue.location
        if location.field:
            return [FieldPath(location.field)]

        sections = target.get("sections")
        if isinstance(sections, list):
            indexes = range(len(sections))
            if location.section:
                wanted = location.section.strip().lower()
                indexes = [
                    i for i in indexes
                    if isinstance(sections[i], dict) and str(sections[i].get("title", "")).strip().lower() == wanted
                ]
                if not indexes:
                    raise FieldPathError(f"Section '{location.section}' not found")
            return [FieldPath(f"sections[{i}].content") for i in indexes]

        return [FieldPath(key) for key in FREE_TEXT_FIELDS if isinstance(target.get(key), str)]

    def _replace_in_slots(self, target: Dict[str, Any], slots: List[FieldPath], old: str, new: str) -> bool:
        # Validate every slot before touching any of them
        values = [(slot, slot.get(target)) for slot in slots]
        changed = False
        for slot, value in values:
            if isinstance(value, str) and old in value:
                slot.set(target, value.replace(old, new))
                changed = True
        return changed

    # ========================================================================
    # Actions
    # ========================================================================

    def _update_timestamp(self, target: Dict[str, Any], issue: RedTeamIssue) -> bool:
        new_value = issue.fix.new_value or issue.fix.new_text
        if not new_value:
            return False
        if issue.location.field:
            path = FieldPath(issue.location.field)
            current = path.get(target)
            if current is not None and not isinstance(current, str):
                raise FieldPathError(f"{path.raw} is not a timestamp string")
            if current == new_value:
                return False
            path.set(target, new_value)
            return True
        old = issue.fix.old_text or issue.location.current_value or issue.location.line_pattern
        if not old:
            return False
        return self._replace_in_slots(target, self._text_slots(target, issue), old, new_value)

    def _replace_text(self, target: Dict[str, Any], issue: RedTeamIssue) -> bool:
        old = issue.fix.old_text or issue.location.current_value or issue.location.line_pattern
        new = issue.fix.new_text if issue.fix.new_text is not None else issue.fix.new_value
        if not old or new is None:
            return False
        return self._replace_in_slots(target, self._text_slots(target, issue), old, new)

    def _move_to_addendum(self, target: Dict[str, Any], issue: RedTeamIssue) -> bool:
        text = issue.location.line_pattern or issue.location.current_value
        if not text:
            return False
        return self._replace_in_slots(target, self._text_slots(target, issue), text, ADDENDUM_MARKER)

    def _remove_reference(self, target: Dict[str, Any], issue: RedTeamIssue) -> bool:
        reference = issue.location.line_pattern or issue.location.current_value
        if not reference:
            return False

        if issue.location.field:
            path = FieldPath(issue.location.field)
            current = path.get(target)
            if isinstance(current, list):
                kept = [item for item in current if item != reference]
                if len(kept) == len(current):
                    return False
                path.set(target, kept)
                return True

        changed = False
        for slot in self._text_slots(target, issue):
            value = slot.get(target)
            if isinstance(value, list):
                kept = [item for item in value if item != reference]
                if len(kept) != len(value):
                    slot.set(target, kept)
                    changed = True
            elif isinstance(value, str) and reference in value:
                slot.set(target, _WHITESPACE_RUN_RE.sub(" ", value.replace(reference, "")).strip())
                changed = True
        return changed

    def _add_media_attachment(self, target: Dict[str, Any], issue: RedTeamIssue) -> bool:
        evidence_id = extract_evidence_id(issue)
        if not evidence_id:
            logger.warning(f"[precision_editor] Cannot extract evidenceId for AddMediaAttachment on {issue.location.doc_id}")
            return False
        if "docId" not in target:
            raise FieldPathError(f"{issue.location.doc_id} is not a document")
        attachments = target.setdefault("mediaAttachments", [])
        if not isinstance(attachments, list):
            raise FieldPathError("mediaAttachments is not a list")
        if evidence_id in attachments:
            return False
        bisect.insort(attachments, evidence_id)
        return True

    # ========================================================================
    # Public API
    # ========================================================================

    def apply(self, issues: Union[RedTeamReport, List[RedTeamIssue]], case_json: str, case_id: str = "") -> EditResult:
        """
        Apply located issues to a case.

        Args:
            issues: A report or a list of issues
            case_json: Current case JSON text
            case_id: Case identifier for logging

        Returns:
            EditResult; its case_json is the original text when nothing
            changed or when the edited case is invalid
        """
        issue_list = issues.issues if isinstance(issues, RedTeamReport) else list(issues or [])
        result = EditResult(case_json=case_json)

        case = load_case(case_json)
        if case is None:
            logger.error(f"[precision_editor.apply] Invalid case JSON for case {case_id}; nothing applied")
            result.error = "invalid case JSON"
            result.reverted = True
            return result

        try:
            NormalizedCase.model_validate(case)
            input_is_normalized = True
        except ValidationError:
            input_is_normalized = False

        working = copy.deepcopy(case)
        handlers = {
            FixAction.UPDATE_TIMESTAMP.value: self._update_timestamp,
            FixAction.REPLACE_TEXT.value: self._replace_text,
            FixAction.MOVE_TO_ADDENDUM.value: self._move_to_addendum,
            FixAction.REMOVE_REFERENCE.value: self._remove_reference,
            FixAction.ADD_MEDIA_ATTACHMENT.value: self._add_media_attachment,
        }

        for issue in _ordered(issue_list):
            label = _issue_label(issue)
            doc_id = (issue.location.doc_id or "").strip()
            if doc_id.lower() in SKIPPED_DOC_IDS:
                result.skipped.append(label)
                continue
            if issue.fix.action == FixAction.GENERATE_MISSING_DOCUMENT.value:
                logger.info(f"[precision_editor.apply] Skipping GenerateMissingDocument for {doc_id} (case {case_id})")
                result.skipped.append(label)
                continue
            handler = handlers.get(issue.fix.action)
            if handler is None:
                logger.warning(f"[precision_editor.apply] Unknown fix action '{issue.fix.action}' for {doc_id}")
                result.failed.append(label)
                continue
            target = self._find_target(working, doc_id)
            if target is None:
                logger.warning(f"[precision_editor.apply] {doc_id} not found in case {case_id}")
                result.failed.append(label)
                continue
            try:
                applied = handler(target, issue)
            except FieldPathError as e:
                logger.warning(f"[precision_editor.apply] {label} rejected: {e}")
                result.failed.append(label)
                continue
            (result.applied if applied else result.failed).append(label)

        if not result.applied:
            logger.info(f"[precision_editor.apply] No fixes applied for case {case_id} ({len(result.failed)} failed)")
            return result

        if input_is_normalized:
            try:
                NormalizedCase.model_validate(working)
            except ValidationError as e:
                logger.error(f"[precision_editor.apply] Edited case {case_id} is invalid, keeping original: {e}")
                result.reverted = True
                result.error = "edited case failed validation"
                return result

        result.case_json = json.dumps(working, ensure_ascii=False)
        logger.info(
            f"[precision_editor.apply] Case {case_id}: {len(result.applied)}/{len(issue_list)} fixes applied, "
            f"{len(result.failed)} failed, {len(result.skipped)} skipped"
        )
        return result

    async def fix_case(self, case_id: str, report: Any, case_json: str, iteration: int = 1) -> EditResult:
        """
        Fix a case from a red-team report.

        Args:
            case_id: Case identifier
            report: RedTeamReport, or the raw analysis text
            case_json: Current case JSON text
            iteration: Fix-loop iteration number

        Returns:
            EditResult from the precision pass, or from the free-form fallback
            when the analysis could not be parsed
        """
        parsed = report if isinstance(report, RedTeamReport) else repair_report(report)
        if parsed is not None:
            if not parsed.issues:
                logger.info(f"[fix_case] No issues to fix for case {case_id} (iteration {iteration})")
                return EditResult(case_json=case_json)
            return self.apply(parsed, case_json, case_id)

        logger.warning(f"[fix_case] Unparseable analysis for case {case_id}; using free-form fix")
        return await self._fallback_fix(case_id, report, case_json, iteration)

    async def _fallback_fix(self, case_id: str, analysis: Any, case_json: str, iteration: int) -> EditResult:
        result = EditResult(case_json=case_json, used_fallback=True)
        if self.generator is None:
            result.error = "no generator configured for free-form fix"
            return result
        try:
            response = await self.generator.generate_text(
                case_id,
                FIX_FALLBACK_SYSTEM_PROMPT,
                FIX_FALLBACK_USER_PROMPT_TEMPLATE.format(analysis=str(analysis), case_json=case_json, iteration=iteration),
                temperature=0.2,
            )
        except CaseGenError as e:
            logger.error(f"[fix_case] Free-form fix failed for case {case_id}: {e}")
            result.error = str(e)
            return result

        if self.case_logging is not None:
            await self.case_logging.log_step_response(case_id, f"fix_fallback_{iteration}", response)

        fixed = extract_json(response)
        if not isinstance(fixed, dict):
            logger.error(f"[fix_case] Free-form fix for case {case_id} was not valid JSON, keeping original")
            result.error = "free-form fix returned invalid JSON"
            return result

        result.case_json = json.dumps(fixed, ensure_ascii=False)
        result.applied.append("free-form")
        logger.info(f"[fix_case] Free-form fix accepted for case {case_id} ({len(result.case_json)} chars)")
        return result
