"""
Unit tests for the hierarchical Context Manager.

Tests cover:
- Path normalization ('@' marker, slashes)
- Save/load round trips for models, dicts and JSON strings
- require() failing hard on missing paths
- Wildcard query and snapshot assembly
- Delete, metadata and the optional read cache
"""

import pytest

from casegen.core.context_manager import ContextManager, normalize_path
from casegen.core.errors import MissingContextError, PhaseValidationError
from casegen.models.schemas import PlanCore, SuspectsPlan


class TestNormalizePath:
    """Tests for normalize_path."""

    def test_strips_marker_and_slashes(self):
        assert normalize_path("@plan/core") == "plan/core"
        assert normalize_path("/plan/core/") == "plan/core"
        assert normalize_path("  visual-registry ") == "visual-registry"

    def test_rejects_empty(self):
        with pytest.raises(ValueError):
            normalize_path("@/")


class TestSaveLoad:
    """Tests for save/load/require."""

    @pytest.mark.asyncio
    async def test_model_round_trip(self, context, case_id):
        core = PlanCore(title="The Harbour Job", location="Port Vale", overview="A ledger goes missing.")
        await context.save(case_id, "plan/core", core)

        loaded = await context.load(case_id, "@plan/core", PlanCore)

        assert loaded.title == "The Harbour Job"
        assert loaded.location == "Port Vale"

    @pytest.mark.asyncio
    async def test_stored_json_uses_camel_case(self, context, store, case_id):
        await context.save(case_id, "plan/suspects", SuspectsPlan.model_validate(
            {"suspects": [{"suspectId": "S001", "name": "Ada", "role": "clerk"}]}
        ))

        raw = await store.get_text("context", f"{case_id}/context/plan/suspects.json")

        assert '"suspectId": "S001"' in raw

    @pytest.mark.asyncio
    async def test_json_string_is_parsed_before_storing(self, context, case_id):
        await context.save(case_id, "notes/raw", '{"a": 1}')

        assert await context.load(case_id, "notes/raw") == {"a": 1}

    @pytest.mark.asyncio
    async def test_missing_load_returns_none(self, context, case_id):
        assert await context.load(case_id, "plan/core") is None

    @pytest.mark.asyncio
    async def test_require_raises_missing_context(self, context, case_id):
        with pytest.raises(MissingContextError) as exc_info:
            await context.require(case_id, "plan/core", PlanCore, phase="expand")

        assert exc_info.value.path == "plan/core"
        assert "case=case0001" in str(exc_info.value)
        assert "phase=expand" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_invalid_stored_value_raises_validation_error(self, context, case_id):
        await context.save(case_id, "plan/core", {"title": "No overview"})

        with pytest.raises(PhaseValidationError):
            await context.load(case_id, "plan/core", PlanCore)

    @pytest.mark.asyncio
    async def test_refuses_none(self, context, case_id):
        with pytest.raises(ValueError):
            await context.save(case_id, "plan/core", None)


class TestQueryAndSnapshot:
    """Tests for wildcard queries and snapshots."""

    @pytest.mark.asyncio
    async def test_query_expands_wildcards(self, context, case_id):
        await context.save(case_id, "expand/suspects/S001", {"suspectId": "S001"})
        await context.save(case_id, "expand/suspects/S002", {"suspectId": "S002"})
        await context.save(case_id, "expand/evidence/EV001", {"evidenceId": "EV001"})

        results = await context.query(case_id, "expand/suspects/*")

        assert sorted(results) == ["expand/suspects/S001", "expand/suspects/S002"]

    @pytest.mark.asyncio
    async def test_query_is_case_scoped(self, context):
        await context.save("case_a", "plan/core", {"title": "A"})
        await context.save("case_b", "plan/core", {"title": "B"})

        results = await context.query("case_a", "plan/*")

        assert results == {"plan/core": {"title": "A"}}

    @pytest.mark.asyncio
    async def test_strict_snapshot_raises_on_missing_path(self, context, case_id):
        await context.save(case_id, "plan/core", {"title": "A"})

        with pytest.raises(MissingContextError):
            await context.build_snapshot(case_id, ["plan/core", "plan/suspects"], phase="expand")

    @pytest.mark.asyncio
    async def test_lenient_snapshot_records_failures(self, context, case_id):
        await context.save(case_id, "plan/core", {"title": "A"})
        await context.save(case_id, "expand/suspects/S001", {"suspectId": "S001"})

        snapshot = await context.build_snapshot(
            case_id, ["@plan/core", "plan/timeline", "expand/suspects/*", "expand/evidence/*"], strict=False
        )

        assert set(snapshot.items) == {"plan/core", "expand/suspects/S001"}
        assert snapshot.failed_paths == ["plan/timeline"]
        assert snapshot.total_size_bytes > 0
        assert '"title": "A"' in snapshot.to_prompt_json()


class TestDeleteAndMetadata:
    """Tests for delete and get_metadata."""

    @pytest.mark.asyncio
    async def test_delete_pattern(self, context, case_id):
        await context.save(case_id, "redteam/iteration-0", {"issues": []})
        await context.save(case_id, "redteam/iteration-1", {"issues": []})
        await context.save(case_id, "plan/core", {"title": "A"})

        deleted = await context.delete(case_id, "redteam/*")

        assert deleted == 2
        assert await context.list_paths(case_id) == ["plan/core"]

    @pytest.mark.asyncio
    async def test_metadata_groups_by_segment(self, context, case_id):
        await context.save(case_id, "plan/core", {"title": "A"})
        await context.save(case_id, "plan/suspects", {"suspects": []})
        await context.save(case_id, "visual-registry", {"caseId": case_id, "references": []})

        metadata = await context.get_metadata(case_id)

        assert metadata["itemCount"] == 3
        assert metadata["itemsByType"] == {"plan": 2, "visual-registry": 1}
        assert metadata["totalSizeBytes"] > 0


class TestReadCache:
    """Tests for the optional read cache."""

    @pytest.mark.asyncio
    async def test_cache_serves_reads_within_ttl(self, store, case_id):
        cached = ContextManager(store, "context", cache_ttl_seconds=60)
        await cached.save(case_id, "plan/core", {"title": "A"})
        await store.delete("context", f"{case_id}/context/plan/core.json")

        assert await cached.load(case_id, "plan/core") == {"title": "A"}

        cached.clear_cache(case_id)
        assert await cached.load(case_id, "plan/core") is None

    @pytest.mark.asyncio
    async def test_cached_values_are_copies(self, store, case_id):
        cached = ContextManager(store, "context", cache_ttl_seconds=60)
        await cached.save(case_id, "plan/core", {"title": "A"})

        first = await cached.load(case_id, "plan/core")
        first["title"] = "mutated"

        assert (await cached.load(case_id, "plan/core"))["title"] == "A"
