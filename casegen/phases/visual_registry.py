"""
Visual Consistency Registry

Canonical descriptions and master reference images for subjects that recur
across generated images (physical evidence, suspects, key locations).

Key concepts:
- design_registry: one measurement-specific description per element, saved at
  visual-registry; existing entries are frozen and only new ones are added
- generate_master_references: one isolated studio image per element, stored at
  <case_id>/references/<referenceId>.png in the bundles container, after which
  the entry's imageUrl is patched
- find_unknown_references: media specs citing ids the registry lacks
"""

import logging
import re
from typing import Dict, Iterable, List, Optional

from .base import PhaseService
from .expand import suspect_path, evidence_path
from .plan import PLAN_CORE_PATH, PLAN_EVIDENCE_PATH, PLAN_SUSPECTS_PATH
from ..core.errors import ArtifactNotFoundError, CaseGenError
from ..core.json_repair import safe_join
from ..models.schemas import MediaSpec, VisualReference, VisualReferenceDrafts, VisualRegistry
from ..prompts.visual import (
    MASTER_REFERENCE_PROMPT_TEMPLATE,
    MASTER_REFERENCE_SETUPS,
    VISUAL_REGISTRY_SYSTEM_PROMPT,
    VISUAL_REGISTRY_USER_PROMPT_TEMPLATE,
)
from ..services.artifact_store import ArtifactStore

logger = logging.getLogger("casegen")

VISUAL_REGISTRY_PATH = "visual-registry"
REFERENCE_IMAGE_SIZE = "1024x1024"

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")


def reference_image_path(case_id: str, reference_id: str) -> str:
    return f"{case_id}/references/{reference_id}.png"


def build_master_reference_prompt(reference: VisualReference) -> str:
    """Studio prompt for an isolated master reference image."""
    category = reference.category.value
    return MASTER_REFERENCE_PROMPT_TEMPLATE.format(
        reference_id=reference.reference_id,
        category=category,
        setup=MASTER_REFERENCE_SETUPS.get(category, MASTER_REFERENCE_SETUPS["physical_evidence"]),
        description=reference.detailed_description,
        features="\n".join(f"- {f}" for f in reference.distinctive_features) or "- none recorded",
        palette=safe_join(reference.color_palette) or "unspecified",
    )


def validate_drafts(drafts: VisualReferenceDrafts) -> List[str]:
    errors = []
    seen = set()
    for reference in drafts.references:
        if not reference.reference_id.strip():
            errors.append("visual-registry: empty referenceId")
        if reference.reference_id in seen:
            errors.append(f"visual-registry: duplicate referenceId '{reference.reference_id}'")
        seen.add(reference.reference_id)
        if not reference.detailed_description.strip():
            errors.append(f"visual-registry: {reference.reference_id} has no detailedDescription")
        bad_colors = [c for c in reference.color_palette if not HEX_COLOR_RE.match(c)]
        if bad_colors:
            errors.append(f"visual-registry: {reference.reference_id} has non-hex colours {', '.join(bad_colors)}")
    return errors


def merge_registry(
    case_id: str,
    existing: Optional[VisualRegistry],
    drafts: VisualReferenceDrafts,
) -> VisualRegistry:
    """Add new drafts to the registry; entries already present are kept as-is."""
    registry = existing.model_copy(deep=True) if existing is not None else VisualRegistry(case_id=case_id)
    known = registry.by_id()
    for draft in drafts.references:
        if draft.reference_id in known:
            logger.info(
                f"[merge_registry] Ignoring redefinition of frozen reference {draft.reference_id} for case {case_id}"
            )
            continue
        # Image URLs only ever come from master reference generation
        draft.image_url = None
        registry.references.append(draft)
        known[draft.reference_id] = draft
    return registry


def find_unknown_references(
    media_specs: Iterable[MediaSpec],
    registry: Optional[VisualRegistry],
) -> Dict[str, List[str]]:
    """
    Flag visualReferenceIds that the registry does not define.

    Returns:
        evidenceId -> unknown reference ids, only for specs with at least one
    """
    known = set(registry.by_id()) if registry is not None else set()
    unknown: Dict[str, List[str]] = {}
    for spec in media_specs:
        missing = [r for r in spec.visual_reference_ids if r not in known]
        if missing:
            unknown[spec.evidence_id] = missing
    return unknown


class VisualRegistryService(PhaseService):
    """Designs the registry and renders master reference images."""

    phase = "design"

    def __init__(
        self,
        context,
        generator,
        bundle_store: ArtifactStore,
        bundles_container: str = "bundles",
        image_generator=None,
        **kwargs,
    ):
        super().__init__(context, generator, **kwargs)
        self.bundle_store = bundle_store
        self.bundles_container = bundles_container
        self.image_generator = image_generator or generator

    async def load_registry(self, case_id: str) -> Optional[VisualRegistry]:
        return await self.context.load(case_id, VISUAL_REGISTRY_PATH, VisualRegistry)

    async def design_registry(self, case_id: str) -> VisualRegistry:
        """Design (or extend) the visual registry from plan and expansion."""
        snapshot = await self.context.build_snapshot(
            case_id,
            [PLAN_CORE_PATH, PLAN_SUSPECTS_PATH, PLAN_EVIDENCE_PATH, suspect_path("*"), evidence_path("*")],
            phase=self.phase,
            strict=False,
        )
        if PLAN_CORE_PATH not in snapshot.items:
            raise CaseGenError("Visual registry needs plan/core", case_id=case_id, phase=self.phase)

        existing = await self.load_registry(case_id)
        existing_ids = sorted(existing.by_id()) if existing is not None else []

        drafts = await self.generate_model(
            case_id,
            "design_visual_registry",
            VISUAL_REGISTRY_SYSTEM_PROMPT,
            VISUAL_REGISTRY_USER_PROMPT_TEMPLATE.format(
                context_json=snapshot.to_prompt_json(),
                existing_ids=safe_join(existing_ids) or "none",
            ),
            "VisualRegistry",
            VisualReferenceDrafts,
            validate=validate_drafts,
        )

        registry = merge_registry(case_id, existing, drafts)
        await self.context.save(case_id, VISUAL_REGISTRY_PATH, registry)
        added = len(registry.references) - len(existing_ids)
        self.log_step(case_id, "design_visual_registry", f"{added} new references, {len(registry.references)} total")
        return registry

    async def _render_reference(self, case_id: str, reference: VisualReference) -> Optional[str]:
        image = await self.image_generator.generate_image(
            case_id, build_master_reference_prompt(reference), REFERENCE_IMAGE_SIZE
        )
        if not image:
            raise CaseGenError(
                "Empty master reference image", case_id=case_id, phase="generate", item_id=reference.reference_id
            )
        locator = await self.bundle_store.save(
            self.bundles_container, reference_image_path(case_id, reference.reference_id), image, "image/png"
        )
        logger.info(
            f"[generate_master_references] Rendered {reference.reference_id} for case {case_id} ({len(image)} bytes)"
        )
        return locator

    async def generate_master_references(self, case_id: str) -> int:
        """
        Render a master image for every reference that has none yet.

        A failed render leaves the entry without imageUrl; media generation
        then falls back to text-only prompts for that subject.

        Returns:
            Number of references rendered in this call
        """
        registry = await self.context.require(case_id, VISUAL_REGISTRY_PATH, VisualRegistry, phase="generate")
        pending = [r for r in registry.references if not r.image_url]
        if not pending:
            logger.info(f"[generate_master_references] Nothing to render for case {case_id}")
            return 0

        results = await self.fan_out(pending, lambda ref: self._render_reference(case_id, ref))
        rendered = 0
        for reference, result in zip(pending, results):
            if isinstance(result, BaseException):
                logger.error(
                    f"[generate_master_references] Failed for {reference.reference_id} (case {case_id}): {result}"
                )
                continue
            reference.image_url = result
            rendered += 1

        await self.context.save(case_id, VISUAL_REGISTRY_PATH, registry)
        self.log_step(case_id, "generate_master_references", f"{rendered}/{len(pending)} rendered")
        return rendered

    async def load_reference_image(self, case_id: str, reference: VisualReference) -> Optional[bytes]:
        return await load_reference_image(self.bundle_store, self.bundles_container, case_id, reference)


async def load_reference_image(
    store: ArtifactStore,
    container: str,
    case_id: str,
    reference: VisualReference,
) -> Optional[bytes]:
    """Master image bytes, or None when the reference was never rendered."""
    if not reference.image_url:
        return None
    try:
        return await store.get(container, reference_image_path(case_id, reference.reference_id))
    except ArtifactNotFoundError:
        logger.warning(f"[load_reference_image] Image for {reference.reference_id} missing in store (case {case_id})")
        return None
