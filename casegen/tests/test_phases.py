"""
Unit tests for the generator-backed phases (plan, expand, design, generate).

Tests cover:
- Plan: seed-authoritative fields, id validation retried on bad output
- Expand: exactly the planned ids, referential closure, planned timestamps
- Design: per-type specs, skipped failing types, unknown visual references
- Generate: documents and media written per item, failures recorded
"""

import pytest

from casegen.core.errors import CaseGenError, GeneratorError, MissingContextError, PhaseValidationError
from casegen.models.schemas import (
    CaseSeed,
    EvidencePlan,
    ExpandedTimeline,
    GeneratedDocument,
    GeneratedMedia,
    GenerationMode,
    PlanCore,
    RelationshipSynthesis,
    TimelinePlan,
)
from casegen.phases import DesignService, ExpandService, GenerateService, PlanService, VisualRegistryService
from casegen.phases.design import document_specs_path, load_document_specs, load_media_specs
from casegen.phases.expand import EXPAND_RELATIONS_PATH, EXPAND_TIMELINE_PATH
from casegen.phases.generate import generated_document_path, generated_media_path
from casegen.phases.plan import PLAN_CORE_PATH, PLAN_EVIDENCE_PATH, validate_evidence, validate_timeline

from . import case_fixtures as fx
from .conftest import PNG_BYTES, ScriptedGenerator


async def expand_case(context, case_id, generator):
    await fx.save_plan(context, case_id)
    await ExpandService(context, generator).run(case_id)


async def design_case(context, store, case_id, generator, image_generator=None):
    await expand_case(context, case_id, generator)
    registry = VisualRegistryService(context, generator, store, image_generator=image_generator)
    await registry.design_registry(case_id)
    await registry.generate_master_references(case_id)
    await DesignService(context, generator).run(case_id)


# ============================================================================
# Plan
# ============================================================================

class TestPlanPhase:
    """Tests for PlanService."""

    @pytest.mark.asyncio
    async def test_run_writes_every_plan_artifact(self, context, case_id):
        generator = fx.pipeline_generator()
        seed = CaseSeed.model_validate(fx.SEED)

        await PlanService(context, generator).run(case_id, seed)

        core = await context.load(case_id, PLAN_CORE_PATH, PlanCore)
        assert core.difficulty == "Rookie"
        assert core.timezone == fx.TIMEZONE
        assert core.target_duration_minutes == 45
        assert core.profile["suspects"] == {"min": 2, "max": 3}
        assert sorted(await context.list_paths(case_id)) == [
            "plan/core", "plan/evidence", "plan/suspects", "plan/timeline",
        ]
        evidence = await context.load(case_id, PLAN_EVIDENCE_PATH, EvidencePlan)
        assert evidence.evidence_ids() == ["EV001", "EV002", "EV003"]

    @pytest.mark.asyncio
    async def test_seed_loaded_from_context(self, context, case_id):
        await context.save(case_id, "seed", {"difficulty": "Detective", "targetDurationMinutes": 90})

        core = await PlanService(context, fx.pipeline_generator()).plan_core(case_id)

        assert core.difficulty == "Detective"
        assert core.target_duration_minutes == 90

    @pytest.mark.asyncio
    async def test_invalid_suspect_ids_are_retried(self, context, case_id):
        bad = {"suspects": [{"suspectId": "X1", "name": "Nobody", "role": "none"}]}
        generator = fx.pipeline_generator(structured={"PlanSuspects": [bad, fx.SUSPECTS]})
        await context.save(case_id, PLAN_CORE_PATH, {**fx.CORE, "difficulty": "Rookie"})

        plan = await PlanService(context, generator).plan_suspects(case_id)

        assert plan.ids() == ["S001", "S002"]
        assert len(generator.calls_for("structured", "PlanSuspects")) == 2

    @pytest.mark.asyncio
    async def test_persistent_schema_violation_fails(self, context, case_id):
        generator = fx.pipeline_generator(structured={"PlanCore": {"title": "No overview"}})

        with pytest.raises(PhaseValidationError):
            await PlanService(context, generator).plan_core(case_id, CaseSeed())

        assert len(generator.calls_for("structured", "PlanCore")) == 3

    def test_timeline_needs_offsets_and_known_suspects(self):
        plan = TimelinePlan.model_validate({"events": [
            {"eventId": "E001", "timestamp": "2024-03-14T18:00:00", "title": "x", "suspectIds": ["S009"]},
        ]})

        errors = validate_timeline(plan, ["S001"])

        assert any("lacks an ISO-8601 offset" in e for e in errors)
        assert any("unknown suspect 'S009'" in e for e in errors)

    def test_golden_fact_needs_enough_known_supports(self):
        plan = EvidencePlan.model_validate({
            "mainElements": ["fingerprint"],
            "goldenTruth": [{"factId": "F001", "statement": "x", "supportedBy": ["EV001", "EV007"]}],
        })

        errors = validate_evidence(plan)

        assert any("unknown evidence EV007" in e for e in errors)
        assert not any("supports, needs" in e for e in errors)


# ============================================================================
# Expand
# ============================================================================

class TestExpandPhase:
    """Tests for ExpandService."""

    @pytest.mark.asyncio
    async def test_expansion_covers_exactly_the_planned_ids(self, context, case_id):
        await fx.save_plan(context, case_id)

        counts = await ExpandService(context, fx.pipeline_generator()).run(case_id)

        assert counts == {"suspects": 2, "evidence": 3, "events": 5}
        assert sorted(await context.query(case_id, "expand/suspects/*")) == [
            "expand/suspects/S001", "expand/suspects/S002",
        ]
        assert sorted(await context.query(case_id, "expand/evidence/*")) == [
            "expand/evidence/EV001", "expand/evidence/EV002", "expand/evidence/EV003",
        ]
        timeline = await context.load(case_id, EXPAND_TIMELINE_PATH, ExpandedTimeline)
        assert timeline.ids() == ["E001", "E002", "E003", "E004", "E005"]
        relations = await context.load(case_id, EXPAND_RELATIONS_PATH, RelationshipSynthesis)
        assert relations.suspect_relations[0].to_id == "S002"

    @pytest.mark.asyncio
    async def test_evidence_element_type_defaults_to_plan(self, context, case_id):
        await fx.save_plan(context, case_id)

        await ExpandService(context, fx.pipeline_generator()).run(case_id)

        ev2 = await context.load(case_id, "expand/evidence/EV002")
        assert ev2["elementType"] == "cctv_footage"

    @pytest.mark.asyncio
    async def test_unknown_link_fails_after_siblings_finish(self, context, case_id):
        def evidence(system_prompt, user_prompt):
            data = fx.expanded_evidence(system_prompt, user_prompt)
            if data["evidenceId"] == "EV002":
                data["linkedSuspectIds"] = ["S009"]
            return data

        await fx.save_plan(context, case_id)
        generator = fx.pipeline_generator(structured={"ExpandEvidence": evidence})

        with pytest.raises(PhaseValidationError) as exc_info:
            await ExpandService(context, generator).run(case_id)

        assert exc_info.value.item_id == "EV002"
        saved = await context.query(case_id, "expand/*/*")
        assert "expand/suspects/S001" in saved
        assert "expand/evidence/EV003" in saved
        assert "expand/evidence/EV002" not in saved
        assert await context.load(case_id, EXPAND_RELATIONS_PATH) is None

    @pytest.mark.asyncio
    async def test_planned_timestamps_win(self, context, case_id):
        def timeline(system_prompt, user_prompt):
            data = fx.expanded_timeline(system_prompt, user_prompt)
            data["events"].reverse()
            data["events"][0]["timestamp"] = "2024-03-15T11:00:00-03:00"
            return data

        await fx.save_plan(context, case_id)
        generator = fx.pipeline_generator(structured={"ExpandTimeline": timeline})

        await ExpandService(context, generator).run(case_id)

        expanded = await context.load(case_id, EXPAND_TIMELINE_PATH, ExpandedTimeline)
        assert [e.timestamp for e in expanded.events] == [e["timestamp"] for e in fx.TIMELINE["events"]]
        assert expanded.events[0].title == "Office closes"

    @pytest.mark.asyncio
    async def test_timeline_with_extra_event_is_rejected(self, context, case_id):
        def timeline(system_prompt, user_prompt):
            data = fx.expanded_timeline(system_prompt, user_prompt)
            data["events"].append({"eventId": "E099", "timestamp": "2024-03-15T11:00:00-03:00"})
            return data

        await fx.save_plan(context, case_id)

        with pytest.raises(PhaseValidationError):
            await ExpandService(context, fx.pipeline_generator(structured={"ExpandTimeline": timeline})).run(case_id)

    @pytest.mark.asyncio
    async def test_missing_plan(self, context, case_id):
        with pytest.raises(MissingContextError):
            await ExpandService(context, fx.pipeline_generator()).run(case_id)


# ============================================================================
# Design
# ============================================================================

class TestDesignPhase:
    """Tests for DesignService."""

    @pytest.mark.asyncio
    async def test_designs_every_type(self, context, store, case_id):
        generator = fx.pipeline_generator()
        await expand_case(context, case_id, generator)
        await VisualRegistryService(context, generator, store).design_registry(case_id)

        counts = await DesignService(context, generator).run(case_id)

        assert counts == {"documents": 6, "media": 3}
        specs = await load_document_specs(context, case_id)
        assert [s.doc_id for s in specs] == sorted(s.doc_id for s in specs)
        media = await load_media_specs(context, case_id)
        assert {m.evidence_id for m in media} == {
            "ev_crime_scene_photo_001", "ev_evidence_photo_001", "ev_mugshot_001",
        }

    @pytest.mark.asyncio
    async def test_failing_type_is_skipped(self, context, store, case_id):
        def documents(system_prompt, user_prompt):
            data = fx.design_documents(system_prompt, user_prompt)
            if data["documentSpecs"][0]["type"] == "forensics_report":
                data["documentSpecs"][0]["sections"] = ["Findings"]
            return data

        generator = fx.pipeline_generator(structured={"DesignDocuments": documents})
        await expand_case(context, case_id, generator)
        await VisualRegistryService(context, generator, store).design_registry(case_id)

        counts = await DesignService(context, generator).run(case_id)

        assert counts["documents"] == 5
        assert await context.load(case_id, document_specs_path("forensics_report")) is None

    @pytest.mark.asyncio
    async def test_all_document_types_failing_fails_the_phase(self, context, case_id):
        generator = fx.pipeline_generator(structured={"DesignDocuments": {"documentSpecs": [{
            "docId": "wrong", "type": "other", "title": "x", "sections": ["a"],
        }]}})
        await expand_case(context, case_id, generator)

        with pytest.raises(CaseGenError):
            await DesignService(context, generator).run(case_id, media_kinds=["diagram"])

    @pytest.mark.asyncio
    async def test_media_citing_unknown_reference_is_rejected(self, context, case_id):
        generator = fx.pipeline_generator()
        await expand_case(context, case_id, generator)

        counts = await DesignService(context, generator).run(
            case_id, document_types=["police_report"], media_kinds=["evidence_photo", "crime_scene_photo"]
        )

        # No registry was designed, so ref_ledger is unknown and evidence_photo is dropped
        assert counts == {"documents": 1, "media": 1}
        assert await context.load(case_id, "design/media/evidence_photo") is None

    @pytest.mark.asyncio
    async def test_interview_subject_must_be_planned(self, context, case_id):
        def documents(system_prompt, user_prompt):
            data = fx.design_documents(system_prompt, user_prompt)
            for spec in data["documentSpecs"]:
                if spec["type"] == "interview":
                    spec["subjectId"] = "S042"
            return data

        generator = fx.pipeline_generator(structured={"DesignDocuments": documents})
        await expand_case(context, case_id, generator)

        counts = await DesignService(context, generator).run(
            case_id, document_types=["interview", "memo_admin"], media_kinds=["diagram"]
        )

        assert counts["documents"] == 1


# ============================================================================
# Generate
# ============================================================================

class TestGeneratePhase:
    """Tests for GenerateService."""

    @pytest.mark.asyncio
    async def test_generates_documents_and_media(self, context, store, case_id):
        generator = fx.pipeline_generator()
        await design_case(context, store, case_id, generator)

        result = await GenerateService(context, generator, store).run(case_id)

        assert result["documents"] == {"generated": 6, "failed": 0}
        assert result["media"]["reference"] == 1
        assert result["media"]["text_only"] == 1
        assert result["media"]["deferred"] == 1

        report = await context.load(case_id, generated_document_path("doc_police_report_001"), GeneratedDocument)
        assert report.created_at == fx.CONFLICTING_CREATED_AT
        assert report.metadata["difficulty"] == "Rookie"
        assert await store.exists("bundles", f"{case_id}/documents/doc_police_report_001.json")
        assert await store.get("bundles", f"{case_id}/media/ev_evidence_photo_001.png") == PNG_BYTES

    @pytest.mark.asyncio
    async def test_failed_document_is_recorded(self, context, store, case_id):
        def document(system_prompt, user_prompt):
            data = fx.generated_document(system_prompt, user_prompt)
            if data["docId"] == "doc_memo_admin_001":
                data["sections"] = []
            return data

        generator = fx.pipeline_generator(structured={"GeneratedDocument": document})
        await design_case(context, store, case_id, generator)

        result = await GenerateService(context, generator, store).generate_documents(case_id)

        assert result == {"generated": 5, "failed": 1}
        memo = await context.load(case_id, generated_document_path("doc_memo_admin_001"), GeneratedDocument)
        assert "error" in memo.metadata
        assert [s.title for s in memo.sections] == ["Memo"]

    @pytest.mark.asyncio
    async def test_images_disabled_defers_media(self, context, store, case_id):
        generator = fx.pipeline_generator()
        await design_case(context, store, case_id, generator)

        counts = await GenerateService(context, generator, store, generate_images=False).generate_media(case_id)

        assert counts["deferred"] == 3
        media = await context.load(case_id, generated_media_path("ev_crime_scene_photo_001"), GeneratedMedia)
        assert media.image_prompt == fx.IMAGE_PROMPT["imagePrompt"]
        assert media.image_path is None

    @pytest.mark.asyncio
    async def test_failed_image_marks_item_failed(self, context, store, case_id):
        generator = fx.pipeline_generator()
        await design_case(context, store, case_id, generator)
        broken = ScriptedGenerator(image=GeneratorError("quota"), reference_image=GeneratorError("quota"))
        counts = await GenerateService(context, generator, store, image_generator=broken).generate_media(case_id)

        assert counts["failed"] == 2
        media = await context.load(case_id, generated_media_path("ev_crime_scene_photo_001"), GeneratedMedia)
        assert media.generation_mode == GenerationMode.FAILED
        assert "quota" in media.error
