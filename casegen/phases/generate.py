"""
Generate Phase - Documents and Media

Turns every design spec into a generated artifact. Items fan out under the
generation concurrency cap and each writes only its own paths:
- generate/documents/<docId> (context) and <case_id>/documents/<docId>.json (bundles)
- generate/media/<evidenceId> (context), <case_id>/media/<evidenceId>.json and
  the optional .png (bundles)

A failing item is recorded with its error instead of aborting its siblings.
Media with visual references are anchored on the master reference image; when
that image is missing the prompt is rendered text-only.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from .base import PhaseService, to_prompt_json
from .design import DOCUMENT_CONTEXT_PATHS, load_document_specs, load_media_specs
from .plan import PLAN_CORE_PATH
from .visual_registry import VISUAL_REGISTRY_PATH, load_reference_image
from ..core.difficulty import difficulty_directive
from ..core.errors import CaseGenError
from ..models.schemas import (
    DocumentSpec,
    GeneratedDocument,
    GeneratedMedia,
    GeneratedSection,
    GenerationMode,
    ImagePrompt,
    MediaSpec,
    PlanCore,
    VisualRegistry,
)
from ..prompts.generate import (
    DOCUMENT_TYPE_DIRECTIVES,
    GENERATE_DOCUMENT_SYSTEM_PROMPT,
    GENERATE_DOCUMENT_USER_PROMPT_TEMPLATE,
    GENERATE_IMAGE_PROMPT_SYSTEM_PROMPT,
    GENERATE_IMAGE_PROMPT_USER_PROMPT_TEMPLATE,
    REFERENCE_ANCHOR_INSTRUCTION,
)
from ..services.artifact_store import ArtifactStore

logger = logging.getLogger("casegen")

IMAGE_SIZE = "1024x1024"


def generated_document_path(doc_id: str) -> str:
    return f"generate/documents/{doc_id}"


def generated_media_path(evidence_id: str) -> str:
    return f"generate/media/{evidence_id}"


def validate_generated_document(document: GeneratedDocument, spec: DocumentSpec) -> List[str]:
    errors = []
    if document.doc_id != spec.doc_id:
        errors.append(f"docId '{document.doc_id}' does not match spec '{spec.doc_id}'")
    titles = [s.title for s in document.sections]
    if titles != list(spec.sections):
        errors.append(f"{spec.doc_id}: sections {titles} do not match the design {list(spec.sections)}")
    empty = [s.title for s in document.sections if not s.content.strip()]
    if empty:
        errors.append(f"{spec.doc_id}: empty sections {', '.join(empty)}")
    return errors


def _reference_descriptions(spec: MediaSpec, registry: Optional[VisualRegistry]) -> str:
    if registry is None or not spec.visual_reference_ids:
        return "None"
    by_id = registry.by_id()
    lines = []
    for reference_id in spec.visual_reference_ids:
        reference = by_id.get(reference_id)
        if reference is None:
            continue
        palette = ", ".join(reference.color_palette)
        lines.append(f"- {reference_id} ({reference.name}): {reference.detailed_description} Palette: {palette}")
    return "\n".join(lines) or "None"


class GenerateService(PhaseService):
    """Generates documents and media from their design specs."""

    phase = "generate"

    def __init__(
        self,
        context,
        generator,
        bundle_store: ArtifactStore,
        bundles_container: str = "bundles",
        image_generator=None,
        generate_images: bool = True,
        **kwargs,
    ):
        super().__init__(context, generator, **kwargs)
        self.bundle_store = bundle_store
        self.bundles_container = bundles_container
        self.image_generator = image_generator or generator
        self.generate_images = generate_images

    async def _save_bundle_json(self, path: str, value: Any) -> None:
        await self.bundle_store.save(
            self.bundles_container, path, json.dumps(value, ensure_ascii=False, indent=2), "application/json"
        )

    # ========================================================================
    # Documents
    # ========================================================================

    async def generate_document(self, case_id: str, spec: DocumentSpec, core: PlanCore) -> GeneratedDocument:
        """Generate one document body and persist it."""
        paths = [PLAN_CORE_PATH] + DOCUMENT_CONTEXT_PATHS.get(spec.type, [])
        snapshot = await self.context.build_snapshot(case_id, paths, phase=self.phase)
        snapshot.items["design/spec"] = spec.to_json_dict()
        low, high = spec.length_target if len(spec.length_target) == 2 else (150, 400)

        user_prompt = GENERATE_DOCUMENT_USER_PROMPT_TEMPLATE.format(
            doc_id=spec.doc_id,
            doc_type=spec.type,
            title=spec.title,
            date_created=spec.date_created or "(use the case timeline)",
            sections=json.dumps(spec.sections, ensure_ascii=False),
            length_min=low,
            length_max=high,
            type_directives=DOCUMENT_TYPE_DIRECTIVES.get(spec.type, ""),
            difficulty_directive=difficulty_directive(core.difficulty),
            context_json=snapshot.to_prompt_json(),
        )

        document = await self.generate_model(
            case_id,
            f"generate_document_{spec.doc_id}",
            GENERATE_DOCUMENT_SYSTEM_PROMPT,
            user_prompt,
            "GeneratedDocument",
            GeneratedDocument,
            validate=lambda d: validate_generated_document(d, spec),
            item_id=spec.doc_id,
            temperature=0.7,
        )
        document.type = spec.type
        if spec.date_created:
            document.created_at = spec.date_created
        document.metadata.update({"difficulty": core.difficulty, "lengthTarget": [low, high]})

        await self._persist_document(case_id, document)
        logger.info(f"[generate_document] Generated {spec.doc_id} for case {case_id}")
        return document

    async def _persist_document(self, case_id: str, document: GeneratedDocument) -> None:
        await self.context.save(case_id, generated_document_path(document.doc_id), document)
        await self._save_bundle_json(f"{case_id}/documents/{document.doc_id}.json", document.to_json_dict())

    def _failed_document(self, spec: DocumentSpec, error: BaseException) -> GeneratedDocument:
        return GeneratedDocument(
            doc_id=spec.doc_id,
            type=spec.type,
            title=spec.title,
            created_at=spec.date_created,
            sections=[GeneratedSection(title=title) for title in spec.sections],
            metadata={"error": str(error)},
        )

    async def generate_documents(self, case_id: str) -> Dict[str, int]:
        core = await self.context.require(case_id, PLAN_CORE_PATH, PlanCore, phase=self.phase)
        specs = await load_document_specs(self.context, case_id)
        if not specs:
            raise CaseGenError("No document specs to generate", case_id=case_id, phase=self.phase)

        results = await self.fan_out(specs, lambda spec: self.generate_document(case_id, spec, core))
        failed = 0
        for spec, result in zip(specs, results):
            if isinstance(result, BaseException):
                failed += 1
                logger.error(f"[generate_documents] {spec.doc_id} failed for case {case_id}: {result}")
                await self._persist_document(case_id, self._failed_document(spec, result))
        self.log_step(case_id, "generate_documents", f"{len(specs) - failed}/{len(specs)} documents generated")
        return {"generated": len(specs) - failed, "failed": failed}

    # ========================================================================
    # Media
    # ========================================================================

    async def _image_prompt(self, case_id: str, spec: MediaSpec, registry: Optional[VisualRegistry]) -> ImagePrompt:
        return await self.generate_model(
            case_id,
            f"generate_image_prompt_{spec.evidence_id}",
            GENERATE_IMAGE_PROMPT_SYSTEM_PROMPT,
            GENERATE_IMAGE_PROMPT_USER_PROMPT_TEMPLATE.format(
                spec_json=to_prompt_json(spec),
                reference_descriptions=_reference_descriptions(spec, registry),
            ),
            "ImagePrompt",
            ImagePrompt,
            item_id=spec.evidence_id,
        )

    async def _reference_image(
        self, case_id: str, spec: MediaSpec, registry: Optional[VisualRegistry]
    ) -> Optional[bytes]:
        """Bytes of the first cited reference that has a master image."""
        if registry is None:
            return None
        by_id = registry.by_id()
        for reference_id in spec.visual_reference_ids:
            reference = by_id.get(reference_id)
            if reference is None:
                continue
            image = await load_reference_image(self.bundle_store, self.bundles_container, case_id, reference)
            if image:
                return image
            logger.warning(
                f"[generate_media] Reference {reference_id} has no master image; "
                f"{spec.evidence_id} falls back to text-only (case {case_id})"
            )
        return None

    async def generate_media_item(
        self, case_id: str, spec: MediaSpec, registry: Optional[VisualRegistry]
    ) -> GeneratedMedia:
        """Generate one media item (prompt, then image) and persist it."""
        known = set(registry.by_id()) if registry is not None else set()
        unknown = [r for r in spec.visual_reference_ids if r not in known]
        if unknown:
            logger.warning(
                f"[generate_media] {spec.evidence_id} cites unknown references {unknown}; dropping them (case {case_id})"
            )
        effective = spec.model_copy(update={"visual_reference_ids": [r for r in spec.visual_reference_ids if r in known]})

        media = GeneratedMedia(
            evidence_id=spec.evidence_id,
            kind=spec.kind,
            title=spec.title,
            collected_at=spec.collected_at,
            visual_reference_ids=effective.visual_reference_ids,
            unknown_reference_ids=unknown,
        )

        if spec.deferred:
            media.generation_mode = GenerationMode.DEFERRED
            media.image_prompt = spec.prompt
            media.metadata["reason"] = "deferred by design"
            await self._persist_media(case_id, media)
            return media

        try:
            prompt = await self._image_prompt(case_id, effective, registry)
            media.image_prompt = prompt.image_prompt
            media.metadata.update({"negativePrompt": prompt.negative_prompt, "camera": prompt.camera})

            if not self.generate_images:
                media.generation_mode = GenerationMode.DEFERRED
                media.metadata["reason"] = "image generation disabled"
            else:
                image, mode = await self._render(case_id, effective, prompt.image_prompt, registry)
                media.image_path = await self.bundle_store.save(
                    self.bundles_container, f"{case_id}/media/{spec.evidence_id}.png", image, "image/png"
                )
                media.generation_mode = mode
        except CaseGenError as e:
            logger.error(f"[generate_media] {spec.evidence_id} failed for case {case_id}: {e}")
            media.generation_mode = GenerationMode.FAILED
            media.error = str(e)

        await self._persist_media(case_id, media)
        logger.info(
            f"[generate_media] {spec.evidence_id} for case {case_id}: mode={media.generation_mode.value}"
        )
        return media

    async def _render(
        self, case_id: str, spec: MediaSpec, image_prompt: str, registry: Optional[VisualRegistry]
    ):
        reference = await self._reference_image(case_id, spec, registry)
        if reference is not None:
            try:
                image = await self.image_generator.generate_image_with_reference(
                    case_id, f"{image_prompt}\n\n{REFERENCE_ANCHOR_INSTRUCTION}", reference, IMAGE_SIZE
                )
                return image, GenerationMode.REFERENCE
            except CaseGenError as e:
                logger.warning(
                    f"[generate_media] Reference-anchored render failed for {spec.evidence_id} (case {case_id}): "
                    f"{e}; retrying text-only"
                )
        image = await self.image_generator.generate_image(case_id, image_prompt, IMAGE_SIZE)
        return image, GenerationMode.TEXT_ONLY

    async def _persist_media(self, case_id: str, media: GeneratedMedia) -> None:
        await self.context.save(case_id, generated_media_path(media.evidence_id), media)
        await self._save_bundle_json(f"{case_id}/media/{media.evidence_id}.json", media.to_json_dict())

    async def generate_media(self, case_id: str) -> Dict[str, int]:
        specs = await load_media_specs(self.context, case_id)
        registry = await self.context.load(case_id, VISUAL_REGISTRY_PATH, VisualRegistry)
        results = await self.fan_out(specs, lambda spec: self.generate_media_item(case_id, spec, registry))

        counts = {mode.value: 0 for mode in GenerationMode}
        for spec, result in zip(specs, results):
            if isinstance(result, BaseException):
                logger.error(f"[generate_media] {spec.evidence_id} crashed for case {case_id}: {result}")
                counts[GenerationMode.FAILED.value] += 1
                continue
            counts[result.generation_mode.value] += 1
        self.log_step(case_id, "generate_media", f"{len(specs)} media items: {counts}")
        return counts

    async def run(self, case_id: str) -> Dict[str, Any]:
        documents = await self.generate_documents(case_id)
        media = await self.generate_media(case_id)
        return {"documents": documents, "media": media}
