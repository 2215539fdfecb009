"""
Unit tests for the chunked red-team analyzer.

Tests cover:
- Report repair from drifting generator output
- Deterministic, order-independent merging with deduplication
- Skeleton temporal ledger
- Lossless, budgeted chunk planning (oversized items analysed alone)
- Full analysis: dedup across chunks, global focus areas, fallbacks, cache
"""

import json

import pytest

from casegen.core.errors import GeneratorError
from casegen.core.red_team import (
    MIN_CHUNK_BUDGET_BYTES,
    NO_ISSUES_SUMMARY,
    RedTeamAnalyzer,
    merge_reports,
    repair_report,
)
from casegen.core.json_repair import json_size_bytes
from casegen.models.schemas import GlobalAnalysis, IssuePriority, RedTeamIssue, RedTeamReport
from casegen.prompts.red_team import RED_TEAM_GLOBAL_SYSTEM_PROMPT
from casegen.services.analysis_cache import InMemoryAnalysisCache

from .conftest import ScriptedGenerator


def make_document(index: int, content_bytes: int = 200, created_at: str = "2024-03-14T21:05:00-03:00"):
    return {
        "docId": f"doc_interview_{index:03d}",
        "type": "interview",
        "title": f"Interview {index}",
        "createdAt": created_at,
        "sections": [{"title": "Statement", "content": "x" * content_bytes}],
    }


def make_sectioned_document(index: int, sections: int, evidence_refs: int):
    return {
        "docId": f"doc_witness_statement_{index:03d}",
        "type": "witness_statement",
        "title": f"Statement {index}",
        "createdAt": "2024-03-14T22:10:00-03:00",
        "evidenceRefs": [f"ev_photo_{n:03d}" for n in range(1, evidence_refs + 1)],
        "sections": [
            {"title": f"Part {n}", "content": f"The witness recalls detail {n} near the pier."}
            for n in range(1, sections + 1)
        ],
    }


def make_media(index: int):
    return {"evidenceId": f"ev_photo_{index:03d}", "kind": "photo", "title": f"Photo {index}"}


def make_case(documents, media=()):
    return {"caseId": "case0001", "timezone": "America/Sao_Paulo", "difficulty": "Detective",
            "documents": list(documents), "media": list(media)}


def issue(doc_id: str, field: str = "createdAt", priority: str = "High", problem: str = "conflict"):
    return {
        "priority": priority,
        "type": "timeline",
        "location": {"docId": doc_id, "field": field},
        "problem": problem,
        "fix": {"action": "UpdateTimestamp", "newValue": "2024-03-14T22:00:00-03:00"},
    }


class TestRepairReport:
    """Tests for repair_report."""

    def test_prose_wrapped_report(self):
        text = "Findings:\n```json\n" + json.dumps({"issues": [issue("doc_police_report_001")]}) + "\n```"

        report = repair_report(text, chunk_index=2)

        assert report.chunk_index == 2
        assert report.high_priority_count == 1
        assert report.issues[0].location.doc_id == "doc_police_report_001"
        assert report.issues[0].fix.new_value == "2024-03-14T22:00:00-03:00"

    def test_pascal_case_and_drift(self):
        raw = {
            "Issues": [
                {"Priority": "low", "Location": "doc_interview_002", "Problem": ["tone", "register"],
                 "Fix": "rewrite the opening"},
                "not an issue",
            ]
        }

        report = repair_report(raw)

        assert report.total_count == 1
        repaired = report.issues[0]
        assert repaired.priority == IssuePriority.LOW
        assert repaired.location.doc_id == "doc_interview_002"
        assert repaired.problem == "tone, register"
        assert repaired.fix.reason == "rewrite the opening"
        assert repaired.fix.action == "ReplaceText"

    def test_unknown_priority_defaults_to_medium(self):
        report = repair_report({"issues": [issue("d1", priority="urgent")]})
        assert report.medium_priority_count == 1

    def test_bare_issue_list(self):
        report = repair_report([issue("d1"), issue("d2")])
        assert report.total_count == 2

    def test_issues_not_a_list(self):
        report = repair_report({"issues": "none found", "summary": "clean"})
        assert report.total_count == 0
        assert report.summary == "clean"

    def test_unusable_output(self):
        assert repair_report("I could not analyse this case.") is None


class TestMergeReports:
    """Tests for merge_reports."""

    def _reports(self):
        first = repair_report({"issues": [issue("doc_a"), issue("doc_b", field="sections[0].content")],
                               "summary": "chunk one"}, chunk_index=0)
        second = repair_report({"issues": [issue("doc_a", problem="seen again"), issue("doc_c", priority="Low")],
                                "summary": "chunk two"}, chunk_index=1)
        third = repair_report({"issues": [], "summary": ""}, chunk_index=2)
        return [first, second, third]

    def test_order_independent(self):
        reports = self._reports()

        forward = merge_reports(reports)
        backward = merge_reports(list(reversed(reports)))
        shuffled = merge_reports([reports[1], reports[2], reports[0]])

        assert forward.to_json_dict() == backward.to_json_dict() == shuffled.to_json_dict()

    def test_dedup_keeps_lowest_chunk_occurrence(self):
        merged = merge_reports(self._reports())

        doc_a = [i for i in merged.issues if i.location.doc_id == "doc_a"]
        assert len(doc_a) == 1
        assert doc_a[0].problem == "conflict"
        assert merged.total_count == 3
        assert merged.high_priority_count == 2
        assert merged.low_priority_count == 1

    def test_no_issues(self):
        merged = merge_reports([RedTeamReport(chunk_index=0)])
        assert merged.summary == NO_ISSUES_SUMMARY
        assert merged.total_count == 0

    def test_recount_defaults_to_medium(self):
        report = RedTeamReport(issues=[RedTeamIssue(problem="x")]).recount()
        assert report.medium_priority_count == 1


class TestChunkPlanning:
    """Tests for skeleton and chunk planning."""

    def test_skeleton_ledger_is_chronological(self):
        analyzer = RedTeamAnalyzer(ScriptedGenerator())
        case = make_case([
            make_document(1, created_at="2024-03-14T23:00:00-03:00"),
            make_document(2, created_at="2024-03-14T21:00:00-03:00"),
        ])

        skeleton = analyzer.build_skeleton(case)

        assert skeleton["timezone"] == "America/Sao_Paulo"
        assert skeleton["indexes"]["docIds"] == ["doc_interview_001", "doc_interview_002"]
        assert [e["ref"] for e in skeleton["temporalLedger"]] == ["doc_interview_002", "doc_interview_001"]

    def test_case_three_times_the_budget(self):
        analyzer = RedTeamAnalyzer(ScriptedGenerator(), max_bytes_per_call=20_000)
        case = make_case([make_document(i, content_bytes=2_100) for i in range(1, 31)], [make_media(1)])
        skeleton = analyzer.build_skeleton(case)
        budget = analyzer.chunk_budget(skeleton)
        total = sum(json_size_bytes(d) for d in case["documents"] + case["media"])
        assert total >= 3 * budget

        chunks = analyzer.plan_chunks(case, skeleton)

        assert len(chunks) >= 3
        assert all(chunk.size_bytes <= budget for chunk in chunks)
        assert [c.index for c in chunks] == list(range(len(chunks)))

    def test_chunking_is_lossless(self):
        analyzer = RedTeamAnalyzer(ScriptedGenerator(), max_bytes_per_call=20_000)
        case = make_case([make_document(i, content_bytes=3_000) for i in range(1, 16)],
                         [make_media(i) for i in range(1, 6)])

        chunks = analyzer.plan_chunks(case)

        seen = [item_id for chunk in chunks for item_id in chunk.item_ids()]
        expected = [d["docId"] for d in case["documents"]] + [m["evidenceId"] for m in case["media"]]
        assert sorted(seen) == sorted(expected)
        assert len(seen) == len(set(seen))

    def test_oversized_item_gets_its_own_chunk(self):
        analyzer = RedTeamAnalyzer(ScriptedGenerator(), max_bytes_per_call=12_000)
        case = make_case([make_document(1), make_document(2, content_bytes=30_000), make_document(3)])

        chunks = analyzer.plan_chunks(case)

        assert [c.item_ids() for c in chunks] == [
            ["doc_interview_001"], ["doc_interview_002"], ["doc_interview_003"],
        ]

    def test_budget_leaves_room_for_prompt_frame(self):
        analyzer = RedTeamAnalyzer(ScriptedGenerator(), max_bytes_per_call=20_000)
        skeleton = analyzer.build_skeleton(make_case([make_document(1)]))

        assert analyzer.chunk_budget(skeleton) <= 20_000 - analyzer.prompt_frame_bytes(skeleton)

    def test_budget_floor(self):
        analyzer = RedTeamAnalyzer(ScriptedGenerator(), max_bytes_per_call=500)
        assert analyzer.chunk_budget({"timezone": "UTC"}) == MIN_CHUNK_BUDGET_BYTES

    def test_rejects_zero_parallelism(self):
        with pytest.raises(ValueError):
            RedTeamAnalyzer(ScriptedGenerator(), max_parallel_calls=0)


class TestAnalyze:
    """Tests for the full analysis."""

    @pytest.mark.asyncio
    async def test_same_conflict_in_two_chunks_reported_once(self):
        response = json.dumps({"issues": [issue("doc_interview_001")], "summary": "timestamp conflict"})
        generator = ScriptedGenerator(text=response)
        analyzer = RedTeamAnalyzer(generator, max_bytes_per_call=20_000, max_parallel_calls=2)
        case = make_case([make_document(i, content_bytes=2_100) for i in range(1, 31)])

        report = await analyzer.analyze("case0001", case, use_global=False)

        assert len(generator.calls_for("text")) >= 3
        assert report.total_count == 1
        assert report.high_priority_count == 1
        assert not report.is_fallback

    @pytest.mark.asyncio
    async def test_chunk_prompts_stay_under_byte_budget(self):
        generator = ScriptedGenerator(text=json.dumps({"issues": []}))
        analyzer = RedTeamAnalyzer(generator, max_bytes_per_call=20_000)
        documents = [
            make_sectioned_document(i, sections=12, evidence_refs=8) for i in range(1, 61)
        ]
        case = make_case(documents, [make_media(i) for i in range(1, 9)])

        await analyzer.analyze("case0001", case, use_global=False)

        sizes = [len(call["user"].encode("utf-8")) for call in generator.calls_for("text")]
        assert len(sizes) >= 2
        assert all(size <= 20_000 for size in sizes)

    @pytest.mark.asyncio
    async def test_global_focus_areas_reach_chunk_prompts(self):
        global_response = json.dumps({
            "macroIssues": [{"type": "timeline", "severity": "Critical", "description": "alibi overlap"}],
            "focusAreas": ["alibi window between 21:00 and 22:00"],
            "overallAssessment": "one macro issue",
        })

        def script(system_prompt, user_prompt):
            if system_prompt == RED_TEAM_GLOBAL_SYSTEM_PROMPT:
                return global_response
            return json.dumps({"issues": []})

        generator = ScriptedGenerator(text=script)
        analyzer = RedTeamAnalyzer(generator)

        report = await analyzer.analyze("case0001", make_case([make_document(1)]))

        chunk_calls = [c for c in generator.calls_for("text") if c["system"] != RED_TEAM_GLOBAL_SYSTEM_PROMPT]
        assert len(chunk_calls) == 1
        assert "alibi window between 21:00 and 22:00" in chunk_calls[0]["system"]
        assert report.total_count == 0

    @pytest.mark.asyncio
    async def test_empty_case_is_fallback(self):
        generator = ScriptedGenerator()
        analyzer = RedTeamAnalyzer(generator)

        report = await analyzer.analyze("case0001", {"documents": [], "media": []})

        assert report.is_fallback
        assert generator.calls == []
        assert (await analyzer.analyze("case0001", "not json")).is_fallback

    @pytest.mark.asyncio
    async def test_all_chunks_failing_is_fallback(self):
        generator = ScriptedGenerator(text=GeneratorError("provider down"))
        analyzer = RedTeamAnalyzer(generator)

        report = await analyzer.analyze("case0001", make_case([make_document(1)]))

        assert report.is_fallback
        assert report.summary.startswith("FALLBACK ANALYSIS")

    @pytest.mark.asyncio
    async def test_partial_chunk_failure_keeps_other_results(self):
        responses = [
            GeneratorError("provider down"),
            json.dumps({"issues": [issue("doc_interview_020")]}),
        ]
        generator = ScriptedGenerator(text=responses)
        analyzer = RedTeamAnalyzer(generator, max_bytes_per_call=20_000, max_parallel_calls=1)
        case = make_case([make_document(i, content_bytes=2_100) for i in range(1, 16)])

        report = await analyzer.analyze("case0001", case, use_global=False)

        assert not report.is_fallback
        assert report.total_count == 1

    @pytest.mark.asyncio
    async def test_cache_skips_repeat_calls(self):
        generator = ScriptedGenerator(text=json.dumps({"issues": [issue("doc_interview_001")]}))
        cache = InMemoryAnalysisCache()
        analyzer = RedTeamAnalyzer(generator, cache=cache)
        case = make_case([make_document(1)])

        first = await analyzer.analyze("case0001", case, use_global=False)
        second = await analyzer.analyze("case0001", case, use_global=False)

        assert len(generator.calls_for("text")) == 1
        assert cache.hits == 1
        assert first.to_json_dict() == second.to_json_dict()

    @pytest.mark.asyncio
    async def test_cache_is_keyed_by_global_analysis(self):
        generator = ScriptedGenerator(text=json.dumps({"issues": []}))
        analyzer = RedTeamAnalyzer(generator, cache=InMemoryAnalysisCache())
        case = make_case([make_document(1)])
        skeleton = analyzer.build_skeleton(case)
        chunk = analyzer.plan_chunks(case, skeleton)[0]
        overlap = GlobalAnalysis(overall_assessment="alibi overlap between S001 and S002")
        forged = GlobalAnalysis(overall_assessment="ledger entries look forged")

        await analyzer.analyze_chunk("case0001", chunk, skeleton, 1, overlap)
        await analyzer.analyze_chunk("case0001", chunk, skeleton, 1, forged)
        await analyzer.analyze_chunk("case0001", chunk, skeleton, 1, overlap)

        assert len(generator.calls_for("text")) == 2
