"""
Case Packaging for CaseGen

Writes the final bundle for a case into the bundles container:

    <case_id>/normalized_case.json
    <case_id>/documents/<docId>.json
    <case_id>/media/<evidenceId>.json   (+ <evidenceId>.png written by Generate)
    <case_id>/references/<referenceId>.png (written by the visual registry)
    <case_id>/metadata.json
    <case_id>/manifest.json              (sha256, size and MIME of every other file)

A case whose manifest exists is packaged and immutable.
"""

import hashlib
import json
import logging
import mimetypes
from typing import Any, Optional

from .context_manager import ContextManager
from .errors import CaseAlreadyPackagedError
from ..models.schemas import (
    BundleManifest,
    BundleMetadata,
    BundleVisibility,
    ManifestEntry,
    NormalizedCase,
)
from ..services.artifact_store import ArtifactStore

logger = logging.getLogger("casegen")

CASE_PATH = "case/current"
MANIFEST_FILE = "manifest.json"


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, indent=2)


def guess_mime_type(path: str) -> str:
    mime, _ = mimetypes.guess_type(path)
    return mime or "application/octet-stream"


class CasePackager:
    """Builds the immutable bundle from the normalized case."""

    def __init__(self, context: ContextManager, store: ArtifactStore, container: str = "bundles"):
        self.context = context
        self.store = store
        self.container = container

    def manifest_path(self, case_id: str) -> str:
        return f"{case_id}/{MANIFEST_FILE}"

    async def is_packaged(self, case_id: str) -> bool:
        return await self.store.exists(self.container, self.manifest_path(case_id))

    async def _write(self, path: str, value: Any) -> None:
        await self.store.save(self.container, path, _dumps(value), "application/json")

    async def package(self, case_id: str, case: Optional[NormalizedCase] = None) -> BundleManifest:
        """
        Package a case.

        Args:
            case_id: Case identifier
            case: Normalized case; loaded from case/current when omitted

        Returns:
            The written manifest

        Raises:
            CaseAlreadyPackagedError: the case already has a manifest
            MissingContextError: case/current does not exist
        """
        if await self.is_packaged(case_id):
            raise CaseAlreadyPackagedError("Case is already packaged", case_id=case_id, phase="package")

        if case is None:
            case = await self.context.require(case_id, CASE_PATH, NormalizedCase, phase="package")

        await self._write(f"{case_id}/normalized_case.json", case.to_json_dict())
        for document in case.documents:
            await self._write(f"{case_id}/documents/{document.doc_id}.json", document.to_json_dict())
        for media in case.media:
            await self._write(f"{case_id}/media/{media.evidence_id}.json", media.to_json_dict())

        metadata = BundleMetadata(
            case_id=case_id,
            title=case.title,
            difficulty=case.difficulty,
            estimated_duration_minutes=case.target_duration_minutes,
            timezone=case.timezone,
            document_count=len(case.documents),
            media_count=len(case.media),
        )
        await self._write(f"{case_id}/metadata.json", metadata.to_json_dict())

        visibility = BundleVisibility(
            always_visible=sorted(
                [d.doc_id for d in case.documents if not d.gated] + [m.evidence_id for m in case.media]
            ),
            gated=sorted(d.doc_id for d in case.documents if d.gated),
        )

        manifest = BundleManifest(case_id=case_id, visibility=visibility)
        prefix = f"{case_id}/"
        for path in await self.store.list(self.container, prefix):
            relative = path[len(prefix):]
            if relative == MANIFEST_FILE:
                continue
            data = await self.store.get(self.container, path)
            manifest.files.append(
                ManifestEntry(
                    path=relative,
                    sha256=hashlib.sha256(data).hexdigest(),
                    size_bytes=len(data),
                    mime_type=guess_mime_type(relative),
                )
            )

        await self._write(self.manifest_path(case_id), manifest.to_json_dict())
        logger.info(
            f"[package] Packaged case {case_id}: {len(manifest.files)} files, "
            f"{len(visibility.gated)} gated documents"
        )
        return manifest
