"""
Unit tests for the artifact stores.

Tests cover:
- LocalArtifactStore save/get/list/exists/delete
- Path escape rejection
- SupabaseArtifactStore against a mocked storage client
- create_artifact_store backend selection
"""

from unittest.mock import MagicMock

import pytest

from casegen.config.settings import PipelineSettings
from casegen.core.errors import ArtifactNotFoundError
from casegen.services.artifact_store import (
    LocalArtifactStore,
    SupabaseArtifactStore,
    create_artifact_store,
)


class TestLocalArtifactStore:
    """Tests for the filesystem store."""

    @pytest.mark.asyncio
    async def test_save_returns_locator_and_round_trips(self, store):
        locator = await store.save("bundles", "/case1/documents/doc_police_report_001.json", '{"a": 1}')

        assert locator == "bundles/case1/documents/doc_police_report_001.json"
        assert await store.get_text("bundles", "case1/documents/doc_police_report_001.json") == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_binary_data(self, store):
        await store.save("bundles", "case1/media/ev_photo_001.png", b"\x89PNG", "image/png")

        assert await store.get("bundles", "case1/media/ev_photo_001.png") == b"\x89PNG"

    @pytest.mark.asyncio
    async def test_get_missing_raises(self, store):
        with pytest.raises(ArtifactNotFoundError) as exc_info:
            await store.get("bundles", "case1/missing.json")

        assert exc_info.value.container == "bundles"
        assert isinstance(exc_info.value, KeyError)

    @pytest.mark.asyncio
    async def test_list_by_prefix_is_sorted(self, store):
        for path in ("case1/b.json", "case1/a.json", "case2/a.json", "case1/sub/c.json"):
            await store.save("context", path, "{}")

        assert await store.list("context", "case1/") == ["case1/a.json", "case1/b.json", "case1/sub/c.json"]
        assert await store.list("missing-container") == []

    @pytest.mark.asyncio
    async def test_exists_and_delete(self, store):
        await store.save("logs", "case1/steps/plan_core.json", "{}")

        assert await store.exists("logs", "case1/steps/plan_core.json")
        assert await store.delete("logs", "case1/steps/plan_core.json") is True
        assert await store.delete("logs", "case1/steps/plan_core.json") is False
        assert not await store.exists("logs", "case1/steps/plan_core.json")

    @pytest.mark.asyncio
    async def test_rejects_escaping_paths(self, store):
        with pytest.raises(ValueError):
            await store.save("bundles", "../outside.json", "{}")

    @pytest.mark.asyncio
    async def test_overwrite_leaves_no_temp_files(self, store):
        await store.save("bundles", "case1/a.json", "one")
        await store.save("bundles", "case1/a.json", "two")

        assert await store.get_text("bundles", "case1/a.json") == "two"
        assert await store.list("bundles") == ["case1/a.json"]


class TestSupabaseArtifactStore:
    """Tests for the Supabase store with a mocked client."""

    def _connected_store(self):
        store = SupabaseArtifactStore("https://example.supabase.co", "service-key")
        bucket = MagicMock()
        store.client = MagicMock()
        store.client.storage.from_.return_value = bucket
        store._connected = True
        return store, bucket

    @pytest.mark.asyncio
    async def test_connect_without_credentials(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)

        assert await SupabaseArtifactStore().connect() is False

    @pytest.mark.asyncio
    async def test_save_upserts(self):
        store, bucket = self._connected_store()

        locator = await store.save("bundles", "case1/manifest.json", "{}", "application/json")

        assert locator == "bundles/case1/manifest.json"
        path, data, options = bucket.upload.call_args[0]
        assert path == "case1/manifest.json"
        assert data == b"{}"
        assert options["upsert"] == "true"
        assert options["content-type"] == "application/json"

    @pytest.mark.asyncio
    async def test_missing_object_maps_to_not_found(self):
        store, bucket = self._connected_store()
        bucket.download.side_effect = Exception("Object not found")

        with pytest.raises(ArtifactNotFoundError):
            await store.get("bundles", "case1/missing.json")
        assert await store.exists("bundles", "case1/missing.json") is False

    @pytest.mark.asyncio
    async def test_list_recurses_into_folders(self):
        store, bucket = self._connected_store()
        listing = {
            "": [{"name": "case1", "id": None}, {"name": "case2", "id": None}],
            "case2": [{"name": "manifest.json", "id": "3"}],
            "case1": [{"name": "documents", "id": None}, {"name": "manifest.json", "id": "1"}],
            "case1/documents": [{"name": "doc_interview_001.json", "id": "2"}],
        }
        bucket.list.side_effect = lambda directory, options: listing.get(directory, [])

        paths = await store.list("bundles", "case1/")

        assert paths == ["case1/documents/doc_interview_001.json", "case1/manifest.json"]

    @pytest.mark.asyncio
    async def test_requires_connection(self):
        with pytest.raises(RuntimeError):
            await SupabaseArtifactStore("https://example.supabase.co", "key").get("bundles", "x")


class TestCreateArtifactStore:
    """Tests for the backend factory."""

    @pytest.mark.asyncio
    async def test_local_backend(self, tmp_path):
        settings = PipelineSettings(storage_backend="local", storage_root=str(tmp_path / "data"))

        store = await create_artifact_store(settings)

        assert isinstance(store, LocalArtifactStore)

    @pytest.mark.asyncio
    async def test_supabase_backend_without_credentials_fails(self, monkeypatch):
        monkeypatch.delenv("SUPABASE_URL", raising=False)
        monkeypatch.delenv("SUPABASE_SERVICE_KEY", raising=False)
        settings = PipelineSettings(storage_backend="supabase")

        with pytest.raises(RuntimeError):
            await create_artifact_store(settings)
