"""
Unit tests for the deterministic normalize and validate phases.

Tests cover:
- Normalize rules: unique ids, gating references, difficulty counts,
  custody sections, gating cycles, timestamps, generation errors
- Validate rules: timezone consistency (FAIL on fields, WARN in prose),
  reference resolution, golden truth support
- Reviewer pass: never fails the phase
- Both services end to end on the scripted case
"""

import pytest

from casegen.core.errors import GeneratorError, MissingContextError
from casegen.core.packaging import CASE_PATH
from casegen.models.schemas import (
    DocumentSpec,
    EvidencePlan,
    GatingNode,
    GatingEdge,
    GenerationMode,
    NormalizedCase,
    NormalizedDocument,
    NormalizedMedia,
    RuleStatus,
    ValidationReport,
)
from casegen.phases import GenerateService, NormalizeService, ValidateService
from casegen.phases.generate import generated_document_path
from casegen.phases.normalize import (
    build_gating_graph,
    check_custody_sections,
    check_difficulty,
    check_gating_references,
    check_generation_errors,
    check_unique_ids,
    detect_cycles,
    normalize_timestamps,
)
from casegen.phases.validate import (
    VALIDATE_REPORT_PATH,
    check_golden_truth_support,
    check_references,
    check_timezone_consistency,
)

from . import case_fixtures as fx
from .conftest import ScriptedGenerator
from .test_phases import design_case


def document(doc_id, doc_type="memo_admin", created_at="2024-03-14T21:00:00-03:00", **extra):
    data = {
        "docId": doc_id,
        "type": doc_type,
        "title": doc_id,
        "createdAt": created_at,
        "sections": [{"title": "Body", "content": "Text."}],
    }
    data.update(extra)
    return NormalizedDocument.model_validate(data)


def media(evidence_id, **extra):
    data = {"evidenceId": evidence_id, "kind": "evidence_photo", "title": evidence_id, "generationMode": "text_only"}
    data.update(extra)
    return NormalizedMedia.model_validate(data)


def statuses(results):
    return [r.status for r in results]


async def generated_case(context, store, case_id):
    generator = fx.pipeline_generator()
    await design_case(context, store, case_id, generator)
    await GenerateService(context, generator, store).run(case_id)
    return generator


# ============================================================================
# Normalize
# ============================================================================

class TestNormalizeRules:
    """Tests for the normalize rule checks."""

    def test_duplicate_ids_fail(self):
        results = check_unique_ids([document("doc_a"), document("doc_a")], [media("ev_1")])

        assert statuses(results) == [RuleStatus.FAIL]
        assert results[0].description == "Duplicate document ID: doc_a"

    def test_unique_ids_pass(self):
        results = check_unique_ids([document("doc_a")], [media("ev_1")])
        assert results[0].details == "Validated 1 document IDs and 1 evidence IDs"

    def test_gating_may_cite_plan_or_media_ids(self):
        documents = [
            document("doc_a", gated=True, gatingRule={"action": "submit_evidence", "evidenceId": "EV001"}),
            document("doc_b", gated=True, gatingRule={"action": "submit_evidence", "evidenceId": "ev_1"}),
        ]

        results = check_gating_references(documents, [media("ev_1")], ["EV001"])

        assert statuses(results) == [RuleStatus.PASS]

    def test_gating_to_missing_targets_fails(self):
        documents = [
            document("doc_a", gated=True, gatingRule={"action": "submit_evidence", "evidenceId": "EV009"}),
            document("doc_b", gated=True, gatingRule={"action": "manual_unlock", "docId": "doc_zz"}),
            document("doc_c", gatingRule={"action": "manual_unlock", "docId": "doc_zz"}),
        ]

        results = check_gating_references(documents, [], ["EV001"])

        assert [r.description for r in results] == [
            "Document doc_a references non-existent evidence EV009",
            "Document doc_b references non-existent document doc_zz",
        ]

    def test_difficulty_mismatch_only_warns(self):
        results = check_difficulty("Detective", [document("doc_a")], [])

        by_rule = {r.rule: r.status for r in results}
        assert by_rule == {
            "DIFFICULTY_DOCUMENT_COUNT": RuleStatus.WARN,
            "DIFFICULTY_EVIDENCE_COUNT": RuleStatus.WARN,
            "DIFFICULTY_GATED_COUNT": RuleStatus.WARN,
        }

    def test_forensics_needs_custody_section(self):
        with_custody = document(
            "doc_f1", "forensics_report", sections=[{"title": "Chain of Custody", "content": "Logged."}]
        )
        without = document("doc_f2", "forensics_report")

        results = check_custody_sections([with_custody, without, document("doc_memo")])

        assert statuses(results) == [RuleStatus.PASS, RuleStatus.FAIL]

    def test_timestamps_filled_from_design(self):
        missing = document("doc_a", created_at=None)
        specs = {"doc_a": DocumentSpec(doc_id="doc_a", type="memo_admin", title="a",
                                       date_created="2024-03-15T08:00:00-03:00")}

        results = normalize_timestamps([missing], [], specs)

        assert missing.created_at == "2024-03-15T08:00:00-03:00"
        assert statuses(results) == [RuleStatus.PASS]

    def test_timestamps_without_offset_fail(self):
        results = normalize_timestamps(
            [document("doc_a", created_at="2024-03-14T21:00:00"), document("doc_b", created_at=None)],
            [media("ev_1", collectedAt="2024-03-14 21:00")],
            {},
        )

        assert statuses(results) == [RuleStatus.FAIL] * 3
        assert "doc_b: missing createdAt" in results[1].description

    def test_generation_errors(self):
        results = check_generation_errors(
            [document("doc_a", metadata={"error": "schema violation"})],
            [media("ev_1", generationMode=GenerationMode.FAILED.value, error="quota")],
        )

        assert statuses(results) == [RuleStatus.FAIL, RuleStatus.WARN]
        assert results[0].details == "schema violation"


class TestGatingGraph:
    """Tests for cycle detection on the unlock graph."""

    def test_cycle_is_described(self):
        nodes = [GatingNode(id="A", type="document"), GatingNode(id="B", type="document")]
        edges = [GatingEdge(from_id="A", to_id="B"), GatingEdge(from_id="B", to_id="A")]

        has_cycles, description = detect_cycles(nodes, edges)

        assert has_cycles
        assert description == ["Cycle detected: A -> B -> A"]

    def test_acyclic(self):
        nodes = [GatingNode(id=i, type="document") for i in "ABC"]
        edges = [GatingEdge(from_id="A", to_id="B"), GatingEdge(from_id="A", to_id="C"),
                 GatingEdge(from_id="B", to_id="C")]
        assert detect_cycles(nodes, edges) == (False, [])

    def test_graph_from_documents(self):
        documents = [
            document("doc_a", gated=True, gatingRule={"action": "manual_unlock", "docId": "doc_b"}),
            document("doc_b", gated=True, gatingRule={"action": "manual_unlock", "docId": "doc_a"}),
            document("doc_c", gated=True, gatingRule={"action": "submit_evidence", "evidenceId": "ev_1"}),
        ]

        graph = build_gating_graph(documents, [media("ev_1")])

        assert graph.has_cycles
        assert len(graph.nodes) == 4
        assert {(e.from_id, e.to_id) for e in graph.edges} == {
            ("doc_b", "doc_a"), ("doc_a", "doc_b"), ("ev_1", "doc_c"),
        }


# ============================================================================
# Validate
# ============================================================================

class TestValidateRules:
    """Tests for the validate rule checks."""

    def test_field_offsets_fail_prose_offsets_warn(self):
        case = NormalizedCase(
            case_id="case0001",
            timezone="-03:00",
            documents=[
                document("doc_a", created_at="2024-03-14T21:00:00+00:00"),
                document("doc_b", sections=[{"title": "Notes", "content": "Logged at 2024-03-14T23:00:00Z."}]),
            ],
            media=[media("ev_1", collectedAt="2024-03-14T23:50:00+01:00")],
        )

        results = check_timezone_consistency(case)

        assert statuses(results) == [RuleStatus.FAIL, RuleStatus.WARN, RuleStatus.FAIL]
        assert "section 'Notes' quotes 2024-03-14T23:00:00Z" in results[1].description

    def test_utc_case(self):
        case = NormalizedCase(case_id="c", timezone="UTC",
                              documents=[document("doc_a", created_at="2024-03-14T21:00:00Z")])
        assert statuses(check_timezone_consistency(case)) == [RuleStatus.PASS]

    def test_unresolved_references(self):
        case = NormalizedCase(
            case_id="c",
            documents=[document(
                "doc_a",
                evidenceReferences=["EV001", "EV007", "ev_1"],
                timelineReferences=["E001", "E099"],
                mediaAttachments=["ev_1", "ev_9"],
            )],
            media=[media("ev_1")],
        )

        results = check_references(case, ["EV001"], ["E001"])

        assert [r.description for r in results] == [
            "doc_a cites unknown evidence EV007",
            "doc_a cites unknown event E099",
            "doc_a attaches unknown media ev_9",
        ]

    def test_golden_truth_support(self):
        plan = EvidencePlan.model_validate({
            "mainElements": ["fingerprint", "cctv_footage", "ledger_page"],
            "goldenTruth": [
                {"factId": "F001", "statement": "a", "minSupports": 2, "supportedBy": ["EV001", "EV002"]},
                {"factId": "F002", "statement": "b", "minSupports": 2, "supportedBy": ["EV001", "EV003"]},
            ],
        })
        case = NormalizedCase(
            case_id="c",
            documents=[document("doc_a", evidenceReferences=["EV001"])],
            media=[media("ev_1", relatedEvidenceIds=["EV002"])],
        )

        results = check_golden_truth_support(case, plan)

        assert statuses(results) == [RuleStatus.PASS, RuleStatus.FAIL]
        assert results[1].description == "Fact F002 supported by 1 of 2 required evidence items"

    def test_no_golden_truth_warns(self):
        assert statuses(check_golden_truth_support(NormalizedCase(case_id="c"), None)) == [RuleStatus.WARN]


class TestReviewer:
    """Tests for the reviewer pass."""

    async def _saved_case(self, context, case_id):
        await fx.save_plan(context, case_id)
        await context.save(case_id, CASE_PATH, NormalizedCase(case_id=case_id, timezone=fx.TIMEZONE))

    @pytest.mark.asyncio
    async def test_reviewer_failure_does_not_fail_phase(self, context, case_id):
        await self._saved_case(context, case_id)
        service = ValidateService(context, ScriptedGenerator(text=GeneratorError("provider down")))

        report = await service.run(case_id)

        assert report.llm_review is None
        assert await context.load(case_id, VALIDATE_REPORT_PATH, ValidationReport) is not None

    @pytest.mark.asyncio
    async def test_unparseable_review(self, context, case_id):
        await self._saved_case(context, case_id)
        service = ValidateService(context, ScriptedGenerator(text="Looks fine to me."))

        report = await service.run(case_id)

        assert report.llm_review == {"verdict": "UNPARSEABLE", "raw": "Looks fine to me."}

    @pytest.mark.asyncio
    async def test_without_generator(self, context, case_id):
        await self._saved_case(context, case_id)
        report = await ValidateService(context).run(case_id)
        assert report.llm_review is None


# ============================================================================
# End to end
# ============================================================================

class TestServices:
    """Tests for NormalizeService and ValidateService on the scripted case."""

    @pytest.mark.asyncio
    async def test_normalize_then_validate(self, context, store, case_id):
        generator = await generated_case(context, store, case_id)

        case = await NormalizeService(context).run(case_id)
        report = await ValidateService(context, generator).run(case_id)

        assert [d.doc_id for d in case.documents] == sorted(d.doc_id for d in case.documents)
        assert len(case.documents) == 6
        assert len(case.media) == 3
        assert not [r for r in case.validation_results if r.status == RuleStatus.FAIL]
        police = next(d for d in case.documents if d.doc_id == "doc_police_report_001")
        assert police.evidence_references == ["EV001", "EV002"]
        assert await context.load(case_id, CASE_PATH, NormalizedCase) is not None

        assert report.passed
        assert report.llm_review == {"verdict": "PASS", "issues": []}

    @pytest.mark.asyncio
    async def test_same_inputs_same_case(self, context, store, case_id):
        await generated_case(context, store, case_id)
        service = NormalizeService(context)

        first = await service.run(case_id)
        second = await service.run(case_id)

        assert first.model_dump(exclude={"created_at"}) == second.model_dump(exclude={"created_at"})

    @pytest.mark.asyncio
    async def test_failed_document_surfaces_as_rule_failure(self, context, store, case_id):
        await generated_case(context, store, case_id)
        memo = await context.load(case_id, generated_document_path("doc_memo_admin_001"))
        memo["metadata"]["error"] = "schema violation"
        await context.save(case_id, generated_document_path("doc_memo_admin_001"), memo)

        case = await NormalizeService(context).run(case_id)

        failures = [r for r in case.validation_results if r.status == RuleStatus.FAIL]
        assert [r.rule for r in failures] == ["GENERATION_ERRORS"]

    @pytest.mark.asyncio
    async def test_missing_generated_artifact(self, context, store, case_id):
        generator = fx.pipeline_generator()
        await design_case(context, store, case_id, generator)

        with pytest.raises(MissingContextError):
            await NormalizeService(context).run(case_id)
