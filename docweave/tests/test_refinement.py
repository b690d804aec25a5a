"""Tests for quality scoring and bounded refinement rounds."""

import asyncio
import logging
from unittest.mock import MagicMock

import pytest

from docweave.core.config import ModeConfig
from docweave.core.models import DomainInsight, RelatedFile
from docweave.core.refinement import (
    QualityScore,
    QualityScorer,
    RefinementRunner,
    validate_cross_references,
)


# ── Fixtures ──────────────────────────────────────────────────────────────


def _store(turn=0, history=None):
    store = MagicMock()
    store.load_refinement_state.return_value = (turn, list(history or []))
    return store


def _documented(name, files, related=()):
    return DomainInsight(
        name=name,
        files=list(files),
        content="x" * 200,
        diagram="graph TD; A-->B",
        related_files=[RelatedFile(p, "uses") for p in related],
    )


# ── Tests: Scorer ────────────────────────────────────────────────────────


class TestQualityScorer:

    def test_weighted_overall(self):
        domains = [
            _documented("a", ["src/a.rs"], related=["src/b.rs"]),
            DomainInsight(name="b", files=["src/b.rs"], gaps=["No architecture diagram"]),
        ]

        score = QualityScorer().score(domains)

        assert score.content_coverage == pytest.approx(0.5)
        assert score.diagram_coverage == pytest.approx(0.5)
        assert score.relationships == pytest.approx(0.5)
        assert score.overall == pytest.approx(0.5)
        assert score.gaps == ["b: No architecture diagram"]

    def test_no_domains(self):
        score = QualityScorer().score([])

        assert score.overall == 0.0
        assert score.gaps == ["No domains documented"]

    def test_to_dict_rounds(self):
        score = QualityScore(content_coverage=1 / 3)

        assert score.to_dict()["content_coverage"] == 0.3333
        assert score.to_dict()["overall"] == pytest.approx(0.1667)


# ── Tests: Cross-references ──────────────────────────────────────────────


class TestCrossReferences:

    def test_dangling_links_are_dropped(self, caplog):
        a = _documented("a", ["src/a.rs"], related=["src/b.rs", "src/gone.rs"])
        b = _documented("b", ["src/b.rs"])

        with caplog.at_level(logging.WARNING):
            dropped = validate_cross_references([a, b])

        assert dropped == 1
        assert [r.path for r in a.related_files] == ["src/b.rs"]
        assert "src/gone.rs" in caplog.text


# ── Tests: Runner ────────────────────────────────────────────────────────


class TestRefinementRunner:

    def test_stops_when_target_met(self):
        store = _store()
        domains = [_documented("a", ["src/a.rs"], related=["src/a.rs"])]

        score = asyncio.run(RefinementRunner(store, ModeConfig()).run("s1", domains))

        assert score.overall == pytest.approx(1.0)
        store.store_refinement_turn.assert_called_once()
        args = store.store_refinement_turn.call_args.args
        assert args[1] == 1
        assert args[3][0]["turn"] == 1

    def test_runs_to_limit_below_target(self, caplog):
        store = _store()
        domains = [DomainInsight(name="a", files=["src/a.rs"])]

        with caplog.at_level(logging.WARNING):
            score = asyncio.run(
                RefinementRunner(store, ModeConfig(refinement_max_turns=3)).run("s1", domains)
            )

        assert score.overall == 0.0
        assert store.store_refinement_turn.call_count == 3
        assert "Quality gate" in caplog.text

    def test_limit_already_reached(self):
        store = _store(turn=3, history=[{"turn": 3, "overall": 0.4}])

        score = asyncio.run(RefinementRunner(store, ModeConfig()).run("s1", []))

        assert score is None
        store.store_refinement_turn.assert_not_called()

    def test_explicit_rounds_run_exactly(self):
        store = _store(turn=3, history=[{"turn": 3, "overall": 1.0}])
        domains = [_documented("a", ["src/a.rs"], related=["src/a.rs"])]

        asyncio.run(RefinementRunner(store, ModeConfig()).run("s1", domains, rounds=2))

        turns = [c.args[1] for c in store.store_refinement_turn.call_args_list]
        assert turns == [4, 5]
        history = store.store_refinement_turn.call_args.args[3]
        assert [h["turn"] for h in history] == [3, 4, 5]

    def test_changed_domains_are_persisted(self):
        store = _store()
        domains = [_documented("a", ["src/a.rs"], related=["src/gone.rs"])]

        asyncio.run(RefinementRunner(store, ModeConfig(refinement_max_turns=1)).run("s1", domains))

        store.record_domain_summaries.assert_called_once_with("s1", domains)
        assert domains[0].related_files == []
