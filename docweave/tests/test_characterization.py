"""Tests for characterization: agents, synthesis, flat shortcut, refinement rounds."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docweave.core.characterization import (
    CharacterizationRunner,
    OrganizationStyle,
    ProfileSynthesis,
    ProjectProfile,
    ProjectSnapshot,
    merge_insights,
)
from docweave.core.characterization.agents import (
    DependencyAgent,
    EntryPointAgent,
    StructureAgent,
    TechnicalAgent,
    _manifest_dependencies,
)
from docweave.core.checkpoint import CheckpointStore, SessionManager
from docweave.core.config import AnalysisMode, ModeConfig, PipelineConfig, ProjectScale
from docweave.core.db import DatabaseManager
from docweave.core.errors import AgentError, LLMError
from docweave.core.models import AgentInsight
from docweave.core.pipeline import TurnContext


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def store(tmp_path):
    db = DatabaseManager("sqlite://")
    db.create_tables()
    store = CheckpointStore(db)
    store.session_id = SessionManager(db).create_session(str(tmp_path))
    yield store
    db.dispose()


def _context(turn=1, **prior):
    return TurnContext(turn=turn, prior=prior)


def _snapshot(files, readme="", manifests=None):
    return ProjectSnapshot(name="demo", files=list(files), manifests=manifests or {}, readme=readme)


_AGENT_ANSWERS = {
    "directory_patterns": {"directory_patterns": ["src/"], "organization_style": "layer-based",
                           "key_areas": [{"path": "src/api", "importance": "high"}]},
    "dependencies": {"dependencies": ["axum"], "frameworks": ["axum"]},
    "entry_points": {"entry_points": [{"entry_type": "main", "file": "src/main.rs"}]},
    "technical_traits": {"technical_traits": ["async"], "architecture_hints": ["layered"]},
    "domain_traits": {"domain_traits": ["billing"], "terms": [{"term": "Invoice", "definition": "A bill"}]},
    "sections": {"sections": [{"name": "Billing Flow"}]},
}


def _scripted_llm(purpose_answers):
    """LLM stub answering by required schema key; purposes answered in order."""
    purposes = iter(purpose_answers)

    async def generate_with_retry(prompt, schema=None, retries=1):
        key = schema["required"][0]
        if key == "purposes":
            return {"purposes": next(purposes)}
        return _AGENT_ANSWERS[key]

    llm = MagicMock()
    llm.generate_with_retry = AsyncMock(side_effect=generate_with_retry)
    return llm


# ── Tests: Heuristic Agents ──────────────────────────────────────────────


class TestHeuristics:

    def test_structure_detects_src_and_tests(self):
        snapshot = _snapshot([
            "src/models/user.rs", "src/services/auth.rs", "src/main.rs", "tests/it.rs",
        ])

        payload = StructureAgent(snapshot).heuristic(_context())

        assert "src/ directory structure" in payload["directory_patterns"]
        assert "dedicated test directory" in payload["directory_patterns"]
        assert payload["organization_style"] == "layer-based"
        assert [a["path"] for a in payload["key_areas"]] == ["src/models", "src/services"]

    def test_flat_layout(self):
        payload = StructureAgent(_snapshot(["a.py", "b.py"])).heuristic(_context())

        assert payload["organization_style"] == "flat"
        assert payload["key_areas"] == []

    def test_entry_points(self):
        payload = EntryPointAgent(_snapshot(["src/main.rs", "src/lib.rs", "src/x.rs"])).heuristic(
            _context()
        )

        assert payload["entry_points"] == [
            {"entry_type": "main", "file": "src/main.rs", "symbol": None},
            {"entry_type": "library", "file": "src/lib.rs", "symbol": None},
        ]

    def test_technical_reads_turn1_dependencies(self):
        dependency = AgentInsight("dependency", 1, {"dependencies": ["tokio", "serde"],
                                                    "languages": ["rust"]})

        payload = TechnicalAgent(_snapshot([])).heuristic(_context(2, dependency=dependency))

        assert payload["technical_traits"][0] == "written in rust"
        assert "async runtime" in payload["technical_traits"]
        assert "serialization" in payload["technical_traits"]


class TestManifestDependencies:

    def test_requirements(self):
        content = "# comment\nrequests>=2.0\nPyYAML==6.0\n-e .\nfoo[bar]; python_version>'3'\n"

        assert _manifest_dependencies("requirements.txt", content) == ["requests", "PyYAML", "foo"]

    def test_cargo(self):
        content = '[package]\nname = "x"\n\n[dependencies]\ntokio = "1"\nserde = { version = "1" }\n'

        assert _manifest_dependencies("Cargo.toml", content) == ["tokio", "serde"]

    def test_package_json(self):
        content = '{"dependencies": {"express": "^4"}, "devDependencies": {"jest": "^29"}}'

        assert sorted(_manifest_dependencies("package.json", content)) == ["express", "jest"]


class TestAgentFallback:

    def test_llm_failure_uses_heuristic(self):
        llm = MagicMock()
        llm.generate_with_retry = AsyncMock(side_effect=LLMError("down", transient=True))
        agent = DependencyAgent(_snapshot(["src/main.rs"]), llm)

        with pytest.raises(LLMError):
            asyncio.run(agent.analyze(_context()))
        insight = agent.fallback(_context())

        assert insight.is_fallback is True
        assert insight.confidence == pytest.approx(0.4)

    def test_missing_keys_are_rejected(self):
        llm = MagicMock()
        llm.generate_with_retry = AsyncMock(return_value={"unrelated": 1})

        with pytest.raises(AgentError, match="missing keys"):
            asyncio.run(DependencyAgent(_snapshot([]), llm).analyze(_context()))


# ── Tests: Synthesis ─────────────────────────────────────────────────────


class TestProfileSynthesis:

    def test_maps_agent_payloads(self):
        insights = {
            name: AgentInsight(name, 1, payload)
            for name, payload in {
                "structure": _AGENT_ANSWERS["directory_patterns"],
                "dependency": _AGENT_ANSWERS["dependencies"],
                "entry_point": _AGENT_ANSWERS["entry_points"],
                "purpose": {"purposes": ["Unknown", "Bill customers"]},
                "technical": _AGENT_ANSWERS["technical_traits"],
                "terminology": _AGENT_ANSWERS["domain_traits"],
                "section_discovery": _AGENT_ANSWERS["sections"],
            }.items()
        }

        profile = ProfileSynthesis("demo", ProjectScale.SMALL, AnalysisMode.FAST).synthesize(
            insights, turns=3
        )

        assert profile.purposes == ["Bill customers"]
        assert profile.organization_style == OrganizationStyle.LAYER_BASED
        assert profile.technical_traits == ["axum", "async"]
        assert profile.entry_points[0].file == "src/main.rs"
        assert profile.terminology[0].term == "Invoice"
        assert profile.dynamic_sections[0].name == "Billing Flow"
        assert profile.key_areas[0].path == "src/api"
        assert profile.characterization_turns == 3
        assert profile.is_complete()

    def test_profile_dict_round_trip(self):
        profile = ProfileSynthesis("demo", ProjectScale.LARGE, AnalysisMode.DEEP).synthesize(
            {"terminology": AgentInsight("terminology", 2, _AGENT_ANSWERS["domain_traits"])}, turns=2
        )

        restored = ProjectProfile.from_dict(profile.to_dict())

        assert restored == profile

    def test_merge_insights(self):
        previous = AgentInsight("purpose", 2, {"purposes": ["a"], "problem_domain": "x"}, 0.4,
                                is_fallback=True)
        current = AgentInsight("purpose", 2, {"purposes": ["a", "b"], "problem_domain": ""}, 0.8)

        merged = merge_insights(previous, current)

        assert merged.payload == {"purposes": ["a", "b"], "problem_domain": "x"}
        assert merged.confidence == pytest.approx(0.6)
        assert merged.is_fallback is False


# ── Tests: Runner ────────────────────────────────────────────────────────


class TestCharacterizationRunner:

    def test_flat_project_makes_no_llm_calls(self, store):
        llm = _scripted_llm([])
        snapshot = _snapshot(["main.py", "util.py"], readme="# Demo\n\nConverts invoices to PDF.\n")
        runner = CharacterizationRunner(store, llm, PipelineConfig(), ModeConfig())

        profile = asyncio.run(runner.run(store.session_id, snapshot))

        llm.generate_with_retry.assert_not_awaited()
        assert profile.purposes == ["Converts invoices to PDF."]
        assert store.completed_agent_names(store.session_id) == {
            "structure", "dependency", "entry_point", "purpose", "technical", "terminology",
        }

    def test_refinement_round_merges_and_bumps_turns(self, store):
        llm = _scripted_llm([["Serve HTTP"], ["Route requests"]])
        snapshot = _snapshot(["src/main.rs", "src/api/routes.rs"])
        mode = ModeConfig(char_turn3_enabled=True, char_refinement_rounds=1)
        runner = CharacterizationRunner(store, llm, PipelineConfig(), mode)

        profile = asyncio.run(runner.run(store.session_id, snapshot))

        assert profile.purposes == ["Serve HTTP", "Route requests"]
        assert profile.characterization_turns == 4
        assert profile.dynamic_sections[0].name == "Billing Flow"
        state = store.load_checkpoint_state(store.session_id)
        assert state.checkpoint_data["char_refinement_rounds_done"] == 1

    def test_resume_does_not_repeat_agents_or_rounds(self, store):
        llm = _scripted_llm([["Serve HTTP"], ["Route requests"]])
        snapshot = _snapshot(["src/main.rs", "src/api/routes.rs"])
        mode = ModeConfig(char_refinement_rounds=1)
        runner = CharacterizationRunner(store, llm, PipelineConfig(), mode)
        asyncio.run(runner.run(store.session_id, snapshot))
        calls = llm.generate_with_retry.await_count

        profile = asyncio.run(runner.run(store.session_id, snapshot))

        assert llm.generate_with_retry.await_count == calls
        assert profile.characterization_turns == 3
