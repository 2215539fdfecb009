"""
Unit tests for case packaging.

Tests cover:
- Bundle layout and metadata
- Manifest hashes, sizes and MIME types for every file under the case prefix
- Visibility split between gated and always-visible items
- Immutability of a packaged case
"""

import hashlib
import json

import pytest

from casegen.core.errors import CaseAlreadyPackagedError, MissingContextError
from casegen.core.packaging import CASE_PATH, CasePackager, guess_mime_type
from casegen.models.schemas import NormalizedCase

from .conftest import PNG_BYTES


def make_case(case_id):
    return NormalizedCase.model_validate({
        "caseId": case_id,
        "title": "The Harbour Ledger",
        "difficulty": "Detective",
        "timezone": "America/Sao_Paulo",
        "targetDurationMinutes": 90,
        "documents": [
            {"docId": "doc_police_report_001", "type": "police_report", "title": "Report",
             "createdAt": "2024-03-14T23:40:00-03:00", "sections": [{"title": "Summary", "content": "Text."}]},
            {"docId": "doc_forensics_report_001", "type": "forensics_report", "title": "Prints",
             "gated": True, "gatingRule": {"action": "submit_evidence", "evidenceId": "ev_photo_001"}},
        ],
        "media": [{"evidenceId": "ev_photo_001", "kind": "evidence_photo", "title": "Ledger"}],
    })


class TestCasePackager:
    """Tests for CasePackager."""

    @pytest.mark.asyncio
    async def test_bundle_layout_and_metadata(self, context, store, case_id):
        packager = CasePackager(context, store)

        await packager.package(case_id, make_case(case_id))

        listed = await store.list("bundles", f"{case_id}/")
        assert listed == sorted([
            f"{case_id}/documents/doc_forensics_report_001.json",
            f"{case_id}/documents/doc_police_report_001.json",
            f"{case_id}/manifest.json",
            f"{case_id}/media/ev_photo_001.json",
            f"{case_id}/metadata.json",
            f"{case_id}/normalized_case.json",
        ])
        metadata = json.loads(await store.get_text("bundles", f"{case_id}/metadata.json"))
        assert metadata["documentCount"] == 2
        assert metadata["mediaCount"] == 1
        assert metadata["estimatedDurationMinutes"] == 90

    @pytest.mark.asyncio
    async def test_manifest_covers_every_file(self, context, store, case_id):
        await store.save("bundles", f"{case_id}/media/ev_photo_001.png", PNG_BYTES, "image/png")
        packager = CasePackager(context, store)

        manifest = await packager.package(case_id, make_case(case_id))

        by_path = {entry.path: entry for entry in manifest.files}
        assert "manifest.json" not in by_path
        image = by_path["media/ev_photo_001.png"]
        assert image.sha256 == hashlib.sha256(PNG_BYTES).hexdigest()
        assert image.size_bytes == len(PNG_BYTES)
        assert image.mime_type == "image/png"
        assert by_path["metadata.json"].mime_type == "application/json"

    @pytest.mark.asyncio
    async def test_visibility(self, context, store, case_id):
        manifest = await CasePackager(context, store).package(case_id, make_case(case_id))

        assert manifest.visibility.gated == ["doc_forensics_report_001"]
        assert manifest.visibility.always_visible == ["doc_police_report_001", "ev_photo_001"]

    @pytest.mark.asyncio
    async def test_packaged_case_is_immutable(self, context, store, case_id):
        packager = CasePackager(context, store)
        await packager.package(case_id, make_case(case_id))
        before = await store.get("bundles", f"{case_id}/manifest.json")

        with pytest.raises(CaseAlreadyPackagedError):
            await packager.package(case_id, make_case(case_id))

        assert await packager.is_packaged(case_id)
        assert await store.get("bundles", f"{case_id}/manifest.json") == before

    @pytest.mark.asyncio
    async def test_loads_case_from_context(self, context, store, case_id):
        await context.save(case_id, CASE_PATH, make_case(case_id))

        manifest = await CasePackager(context, store).package(case_id)

        assert manifest.case_id == case_id

    @pytest.mark.asyncio
    async def test_missing_case(self, context, store, case_id):
        with pytest.raises(MissingContextError):
            await CasePackager(context, store).package(case_id)

    def test_unknown_extension(self):
        assert guess_mime_type("notes.unknownext") == "application/octet-stream"
