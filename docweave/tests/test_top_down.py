"""Tests for top-down agent selection, heuristics and the phase-4 runner."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docweave.core.characterization import OrganizationStyle, ProjectProfile
from docweave.core.checkpoint import CheckpointStore, SessionManager
from docweave.core.config import ModeConfig, ProjectScale
from docweave.core.db import DatabaseManager
from docweave.core.errors import LLMError
from docweave.core.models import FileInsight, ProcessingTier, RelatedFile
from docweave.core.top_down import (
    ArchitectureAgent,
    FlowAgent,
    RiskAgent,
    TopDownRecorder,
    TopDownRunner,
    select_agents,
)


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def store(tmp_path):
    db = DatabaseManager("sqlite://")
    db.create_tables()
    store = CheckpointStore(db)
    store.session_id = SessionManager(db).create_session(str(tmp_path))
    yield store
    db.dispose()


def _profile(scale=ProjectScale.MEDIUM, technical=("async",), domain=()):
    return ProjectProfile(
        name="demo",
        scale=scale,
        technical_traits=list(technical),
        domain_traits=list(domain),
        organization_style=OrganizationStyle.LAYER_BASED,
    )


def _insight(path, tier=ProcessingTier.STANDARD, related=(), complexity="low"):
    return FileInsight(
        file_path=path,
        purpose=f"Purpose of {path}",
        tier=tier,
        complexity=complexity,
        related_files=[RelatedFile(p, "calls") for p in related],
    )


INSIGHTS = [
    _insight("src/main.rs", ProcessingTier.CORE, related=["src/api/routes.rs", "src/db/pool.rs"]),
    _insight("src/api/routes.rs", ProcessingTier.IMPORTANT, related=["src/db/pool.rs"],
             complexity="high"),
    _insight("src/db/pool.rs", ProcessingTier.LEAF),
]


# ── Tests: Selection ─────────────────────────────────────────────────────


class TestSelectAgents:

    def test_small_project_gets_architecture_only(self):
        assert select_agents(_profile(ProjectScale.SMALL, technical=()), 4) == ["architecture"]

    def test_full_profile_is_capped(self):
        profile = _profile(domain=("billing",))

        assert select_agents(profile, 4) == ["architecture", "risk", "flow", "domain"]
        assert select_agents(profile, 2) == ["architecture", "risk"]
        assert select_agents(profile, 0) == ["architecture"]


# ── Tests: Heuristics ────────────────────────────────────────────────────


class TestHeuristics:

    def test_architecture_layers_from_modules(self):
        payload = ArchitectureAgent(None, INSIGHTS, _profile()).heuristic()

        assert payload["architecture_pattern"] == "layer-based"
        assert [layer["name"] for layer in payload["layers"]] == ["api", "db", "src"]
        api = payload["layers"][0]
        assert api["dependencies"] == ["db"]

    def test_risk_hotspots(self):
        payload = RiskAgent(None, INSIGHTS, _profile()).heuristic()

        assert payload["hotspots"] == [
            {"file": "src/db/pool.rs", "reason": "referenced by 2 files", "dependents": 2}
        ]
        assert payload["risk_areas"][0]["files"] == ["src/api/routes.rs"]

    def test_flows_start_at_core_files(self):
        payload = FlowAgent(None, INSIGHTS, _profile()).heuristic()

        assert payload["flows"][0]["steps"] == [
            "src/main.rs", "src/api/routes.rs", "src/db/pool.rs",
        ]


# ── Tests: Runner ────────────────────────────────────────────────────────


class TestTopDownRunner:

    def test_failed_agents_fall_back_and_are_recorded(self, store):
        llm = MagicMock()

        async def generate_with_retry(prompt, schema=None, retries=1):
            if "risk areas" in prompt:
                raise LLMError("rate limited", transient=True)
            return {"summary": "Layered service.", "layers": [], "flows": []}

        llm.generate_with_retry = AsyncMock(side_effect=generate_with_retry)
        runner = TopDownRunner(store, llm, ModeConfig(top_down_max_agents=3))

        results = asyncio.run(runner.run(store.session_id, _profile(), INSIGHTS))

        assert sorted(results) == ["architecture", "flow", "risk"]
        assert results["risk"].is_fallback is True
        assert results["architecture"].payload["summary"] == "Layered service."

        stored = TopDownRecorder(store, store.session_id).load_completed()
        assert sorted(stored) == ["architecture", "flow", "risk"]
        state = store.load_checkpoint_state(store.session_id)
        assert state.checkpoint_data["top_down_agents"] == ["architecture", "risk", "flow"]
        assert state.last_completed_phase == 4

    def test_resume_runs_only_missing_agents(self, store):
        TopDownRecorder(store, store.session_id).record(
            ArchitectureAgent(None, INSIGHTS, _profile()).fallback(MagicMock(turn=1))
        )
        llm = MagicMock()
        llm.generate_with_retry = AsyncMock(return_value={"summary": "ok", "risk_areas": []})
        runner = TopDownRunner(store, llm, ModeConfig(top_down_max_agents=2))

        results = asyncio.run(runner.run(store.session_id, _profile(), INSIGHTS))

        assert llm.generate_with_retry.await_count == 1
        assert results["architecture"].payload["layers"]
        assert results["risk"].payload == {"summary": "ok", "risk_areas": []}
