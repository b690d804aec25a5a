"""Unit tests for the bottom-up phase.

Tests cover:
- Tier classification and leaf-first ordering
- InsightRegistry write-once semantics and child-context budget
- Deep Research aspect de-duplication and missing synthesis
- FileAnalyzer single pass, quality gates, diagram repair, truncation
- BottomUpRunner failure recording (synthesis failure marks file failed)
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docweave.core.bottom_up import (
    BatchPrioritizer,
    BottomUpRunner,
    FileAnalyzer,
    InsightRegistry,
    child_context_for,
    group_by_tier,
    quality_issues,
)
from docweave.core.bottom_up.diagram import strip_fence, validate_mermaid
from docweave.core.bottom_up.prompts import ANALYSIS_SCHEMA
from docweave.core.characterization import KeyArea, ProjectProfile
from docweave.core.checkpoint import CheckpointStore, SessionManager
from docweave.core.config import ModeConfig, PipelineConfig
from docweave.core.constants import TRUNCATION_MARKER
from docweave.core.db import DatabaseManager
from docweave.core.discovery import FileScanner
from docweave.core.errors import FileAnalysisError, LLMError, NoSynthesisError
from docweave.core.models import (
    FileInsight,
    Importance,
    PrioritizedFile,
    ProcessingTier,
    RelatedFile,
)
from docweave.core.parsing import RegexParser
from docweave.core.research import DeepResearcher, ResearchContext


# ── Fixtures ──────────────────────────────────────────────────────────────


class _CharCounter:
    """Token counter stand-in: four characters per token."""

    def count(self, text):
        return len(text) // 4

    def truncate(self, text, max_tokens):
        if self.count(text) <= max_tokens:
            return text
        return text[: max_tokens * 4] + TRUNCATION_MARKER


def _llm(*responses):
    llm = MagicMock()
    llm.generate = AsyncMock(side_effect=list(responses))
    return llm


def _words(n):
    return " ".join(f"word{i}" for i in range(n))


def _insight(path, tier, content="First. Second. Third. Fourth.", related=()):
    return FileInsight(
        file_path=path,
        purpose=f"{path} purpose",
        tier=tier,
        content=content,
        related_files=[RelatedFile(p) for p in related],
    )


# ── Tests: Scheduling ────────────────────────────────────────────────────


class TestBatchPrioritizer:

    def test_classification(self):
        p = BatchPrioritizer()

        assert p.classify("src/main.rs") == ProcessingTier.CORE
        assert p.classify("src/utils/strings.rs") == ProcessingTier.LEAF
        assert p.classify("src/handler.rs") == ProcessingTier.IMPORTANT
        assert p.classify("src/widget.rs") == ProcessingTier.STANDARD

    def test_key_area_longest_prefix_wins(self):
        profile = ProjectProfile(name="p", key_areas=[
            KeyArea("src", Importance.LOW),
            KeyArea("src/billing", Importance.CRITICAL),
        ])
        p = BatchPrioritizer(profile)

        assert p.classify("src/billing/invoice.rs") == ProcessingTier.CORE
        assert p.classify("src/widget.rs") == ProcessingTier.LEAF

    def test_leaf_first_then_depth(self):
        paths = ["src/main.rs", "src/api/routes.rs", "src/a/b/deep.rs",
                 "src/shallow.rs", "src/helpers/fmt.rs"]

        ordered = [pf.path for pf in BatchPrioritizer().prioritize(paths)]

        assert ordered == [
            "src/helpers/fmt.rs",
            "src/a/b/deep.rs",
            "src/shallow.rs",
            "src/api/routes.rs",
            "src/main.rs",
        ]

    def test_entry_points_last_within_tier(self):
        profile = ProjectProfile(name="p", key_areas=[
            KeyArea("src/billing", Importance.CRITICAL),
        ])
        paths = ["src/main.rs", "src/billing/invoice.rs"]

        ordered = BatchPrioritizer(profile).prioritize(paths)

        assert [pf.tier for pf in ordered] == [ProcessingTier.CORE, ProcessingTier.CORE]
        assert [pf.path for pf in ordered] == ["src/billing/invoice.rs", "src/main.rs"]

    def test_entry_point_flag_outranks_depth(self):
        profile = ProjectProfile(name="p", key_areas=[
            KeyArea("src/billing", Importance.CRITICAL),
        ])
        paths = ["crates/net/src/lib.rs", "src/billing/invoice.rs"]

        ordered = [pf.path for pf in BatchPrioritizer(profile).prioritize(paths)]

        assert ordered == ["src/billing/invoice.rs", "crates/net/src/lib.rs"]

    @pytest.mark.parametrize("path", ["src/Main.java", "web/App.ts", "INDEX.JS"])
    def test_entry_point_names_ignore_case(self, path):
        pf = BatchPrioritizer().prioritize_one(path)

        assert pf.is_entry_point is True
        assert pf.tier == ProcessingTier.CORE

    def test_ordering_is_deterministic(self):
        paths = ["b.rs", "a.rs", "src/lib.rs", "src/x/y.rs"]

        assert BatchPrioritizer().prioritize(paths) == BatchPrioritizer().prioritize(paths)

    def test_group_by_tier_ascending(self):
        files = BatchPrioritizer().prioritize(["src/main.rs", "src/utils/x.rs", "src/w.rs"])

        assert [tier for tier, _ in group_by_tier(files)] == [
            ProcessingTier.LEAF, ProcessingTier.STANDARD, ProcessingTier.CORE,
        ]

    def test_child_context_candidates(self):
        p = BatchPrioritizer()
        files = p.prioritize(["src/main.rs", "src/utils/x.rs", "other/y.rs"])
        main = next(f for f in files if f.path == "src/main.rs")

        assert [c.path for c in child_context_for(main, files)] == ["src/utils/x.rs"]


class TestInsightRegistry:

    def test_write_once(self):
        registry = InsightRegistry()
        first = _insight("src/a.rs", ProcessingTier.LEAF)

        assert registry.register(first) is True
        assert registry.register(_insight("src/a.rs", ProcessingTier.LEAF, "other")) is False
        assert registry.get("src/a.rs") is first

    def test_child_contexts_lower_tier_in_subtree(self):
        registry = InsightRegistry()
        registry.register_batch([
            _insight("src/util.rs", ProcessingTier.LEAF),
            _insight("src/handler.rs", ProcessingTier.IMPORTANT),
            _insight("src/main.rs", ProcessingTier.CORE),
            _insight("lib/far.rs", ProcessingTier.LEAF),
            _insight("lib/refers.rs", ProcessingTier.LEAF, related=["src/handler.rs"]),
        ])

        contexts = registry.get_child_contexts("src/handler.rs", ProcessingTier.IMPORTANT)

        assert [c.path for c in contexts] == ["lib/refers.rs", "src/util.rs"]
        assert contexts[0].summary == "First. Second. Third"

    def test_child_contexts_follow_scheduler_candidates(self):
        paths = ["src/api/routes.rs", "src/api/v1/dto.rs", "src/api/helpers.rs",
                 "src/db/pool.rs", "src/api/service.rs"]
        scheduled = BatchPrioritizer().prioritize(paths)
        registry = InsightRegistry()
        registry.register_batch([_insight(pf.path, pf.tier) for pf in scheduled])
        target = next(pf for pf in scheduled if pf.path == "src/api/routes.rs")

        contexts = registry.get_child_contexts(target.path, target.tier)

        expected = sorted(c.path for c in child_context_for(target, scheduled))
        assert sorted(c.path for c in contexts) == expected
        assert expected == ["src/api/helpers.rs", "src/api/v1/dto.rs"]

    def test_child_contexts_respect_budget(self):
        registry = InsightRegistry()
        for i in range(20):
            registry.register(_insight(f"src/m{i:02d}.rs", ProcessingTier.LEAF, _words(60)))

        contexts = registry.get_child_contexts("src/main.rs", ProcessingTier.CORE, token_budget=300)

        assert 0 < len(contexts) < 20
        assert sum(c.estimated_tokens for c in contexts) <= 300

    def test_low_tiers_get_no_children(self):
        registry = InsightRegistry()
        registry.register(_insight("src/util.rs", ProcessingTier.LEAF))

        assert registry.get_child_contexts("src/w.rs", ProcessingTier.STANDARD) == []


# ── Tests: Deep Research ─────────────────────────────────────────────────


class TestResearchContext:

    def test_is_covered_is_case_insensitive_both_ways(self):
        ctx = ResearchContext(topic="x", covered_aspects=["Error Handling"])

        assert ctx.is_covered("error handling")
        assert ctx.is_covered("ERROR")
        assert ctx.is_covered("error handling strategy")
        assert not ctx.is_covered("caching")


class TestDeepResearcher:

    def test_aspects_are_never_reported_twice(self):
        llm = _llm(
            {"findings": "plan", "new_aspects": ["Error handling", "Routing"]},
            {"findings": "looked", "new_aspects": ["error handling", "Caching"]},
            {"purpose": "Routes requests", "content": "Detailed docs."},
        )
        researcher = DeepResearcher(llm, token_counter=_CharCounter())

        ctx = asyncio.run(researcher.research("src/h.rs", "fn x() {}", ProcessingTier.IMPORTANT))

        assert ctx.covered_aspects == ["Error handling", "Routing", "Caching"]
        assert ctx.iterations[1].new_aspects == ["Caching"]
        assert ctx.get_synthesis().purpose == "Routes requests"
        assert llm.generate.await_count == 3
        second_prompt = llm.generate.await_args_list[1].args[0]
        assert "Error handling" in second_prompt

    def test_core_runs_four_iterations(self):
        llm = _llm(
            {"findings": "a", "new_aspects": ["one"]},
            {"findings": "b", "new_aspects": ["two"]},
            {"findings": "c", "new_aspects": ["three"]},
            {"purpose": "p", "content": "c"},
        )

        ctx = asyncio.run(DeepResearcher(llm, token_counter=_CharCounter()).research(
            "src/main.rs", "", ProcessingTier.CORE
        ))

        assert len(ctx.iterations) == 4
        assert ctx.iterations[-1].phase.is_synthesizing

    def test_missing_synthesis_raises(self):
        llm = _llm(
            {"findings": "a", "new_aspects": []},
            {"findings": "b", "new_aspects": []},
            {"purpose": "only a purpose", "content": ""},
        )

        with pytest.raises(NoSynthesisError):
            asyncio.run(DeepResearcher(llm, token_counter=_CharCounter()).research(
                "src/h.rs", "", ProcessingTier.IMPORTANT
            ))


# ── Tests: Analyzer ──────────────────────────────────────────────────────


class TestQualityIssues:

    def test_clean_insight_passes(self):
        insight = _insight("src/a.rs", ProcessingTier.LEAF, _words(30))

        assert quality_issues(insight) == []

    def test_anti_patterns_are_reported(self):
        insight = _insight(
            "src/a.rs", ProcessingTier.IMPORTANT,
            "Here is the documentation. This is well-structured. TODO: more",
        )
        issues = quality_issues(insight)

        assert any("preamble" in i for i in issues)
        assert any("generic praise" in i for i in issues)
        assert any("too short" in i for i in issues)
        assert any("placeholder" in i for i in issues)
        assert any("diagram" in i for i in issues)


class TestDiagram:

    def test_valid_flowchart(self):
        assert validate_mermaid("```mermaid\nflowchart TD\n  A[Start] --> B(End)\n```") == []

    def test_invalid_reports_errors(self):
        errors = validate_mermaid("boxes\n  A[Start --> B")

        assert any("unknown diagram type" in e for e in errors)
        assert any("unclosed" in e for e in errors)

    def test_strip_fence(self):
        assert strip_fence("```mermaid\ngraph LR\n```") == "graph LR"


class TestFileAnalyzer:

    def _pf(self, path, tier):
        return PrioritizedFile(path=path, tier=tier, is_entry_point=False, depth=path.count("/"))

    def test_single_pass_builds_insight_and_facts(self):
        llm = _llm({
            "purpose": "Formats strings",
            "content": _words(30),
            "related_files": [{"path": "src/b.rs", "relationship": "calls"}, {"path": "src/a.rs"}],
        })
        analyzer = FileAnalyzer(llm, RegexParser(), token_counter=_CharCounter())

        insight, facts = asyncio.run(analyzer.analyze(
            self._pf("src/a.rs", ProcessingTier.LEAF),
            "use crate::b;\npub fn format() {}\n",
            language="rust",
        ))

        assert insight.related_paths() == {"src/b.rs"}
        assert insight.importance == Importance.LOW
        assert insight.line_count == 2
        ids = {f.node_id for f in facts}
        assert {"doc:src/a.rs", "rel:src/a.rs:src/b.rs", "fact:src/a.rs:format"} <= ids

    def test_empty_answer_is_a_file_failure(self):
        llm = _llm({"purpose": "", "content": ""})
        analyzer = FileAnalyzer(llm, token_counter=_CharCounter())

        with pytest.raises(FileAnalysisError):
            asyncio.run(analyzer.analyze(self._pf("src/a.rs", ProcessingTier.STANDARD), "x"))

    def test_content_is_truncated_to_tier_budget(self):
        llm = _llm({"purpose": "p", "content": "x" * 4000})
        analyzer = FileAnalyzer(llm, token_counter=_CharCounter())

        insight, _ = asyncio.run(analyzer.analyze(self._pf("src/a.rs", ProcessingTier.LEAF), "x"))

        assert insight.content.endswith(TRUNCATION_MARKER)
        assert len(insight.content) < 4000

    def test_diagram_is_repaired(self):
        llm = _llm({"diagram": "flowchart TD\n  A --> B"})
        analyzer = FileAnalyzer(llm, token_counter=_CharCounter())

        fixed = asyncio.run(analyzer.validate_and_fix_diagram("flowchart TD\n  A[x --> B"))

        assert fixed == "flowchart TD\n  A --> B"

    def test_diagram_kept_after_failed_repairs(self):
        llm = _llm(LLMError("down", transient=True), {"diagram": "still [broken"})
        analyzer = FileAnalyzer(llm, token_counter=_CharCounter())

        kept = asyncio.run(analyzer.validate_and_fix_diagram("flowchart TD\n  A[x --> B"))

        assert kept == "flowchart TD\n  A[x --> B"
        assert llm.generate.await_count == 2


# ── Tests: Runner ────────────────────────────────────────────────────────


class TestBottomUpRunner:

    @pytest.fixture
    def env(self, tmp_path):
        src = tmp_path / "src"
        src.mkdir()
        (src / "util.rs").write_text("pub fn util() {}\n")
        (src / "handler.rs").write_text("use crate::util;\npub fn handle() {}\n")

        db = DatabaseManager("sqlite://")
        db.create_tables()
        store = CheckpointStore(db)
        sid = SessionManager(db).create_session(str(tmp_path))
        scanner = FileScanner(str(tmp_path))
        store.track_files(sid, [f.to_tracking_row() for f in scanner.scan()])
        yield store, sid, scanner
        db.dispose()

    def test_synthesis_failure_marks_file_failed(self, env):
        store, sid, scanner = env
        llm = MagicMock()

        async def generate(prompt, schema=None):
            props = (schema or {}).get("properties", {})
            if "findings" in props:
                return {"findings": "notes", "new_aspects": []}
            if schema is ANALYSIS_SCHEMA:
                return {"purpose": "Utility", "content": _words(30)}
            return {"purpose": "", "content": ""}

        llm.generate = AsyncMock(side_effect=generate)
        analyzer = FileAnalyzer(llm, token_counter=_CharCounter())
        runner = BottomUpRunner(store, analyzer, scanner, PipelineConfig(), ModeConfig())

        progress = asyncio.run(runner.run(sid))

        assert (progress.total, progress.analyzed, progress.failed) == (2, 1, 1)
        assert "src/util.rs" in runner.registry
        assert "src/handler.rs" not in runner.registry
        assert store.retryable_failed_files(sid) == ["src/handler.rs"]

    def test_resume_skips_completed_files(self, env):
        store, sid, scanner = env
        store.record_file_analysis(sid, _insight("src/util.rs", ProcessingTier.LEAF, _words(30)))
        llm = _llm(
            {"findings": "plan", "new_aspects": ["x"]},
            {"findings": "more", "new_aspects": ["y"]},
            {"purpose": "Handles", "content": _words(120)},
        )
        analyzer = FileAnalyzer(llm, token_counter=_CharCounter())
        runner = BottomUpRunner(store, analyzer, scanner, PipelineConfig(), ModeConfig())

        progress = asyncio.run(runner.run(sid))

        assert progress.analyzed == 2
        assert llm.generate.await_count == 3
        handler = next(i for i in store.load_file_insights(sid) if i.file_path == "src/handler.rs")
        assert "src/util.rs" in handler.related_paths()
