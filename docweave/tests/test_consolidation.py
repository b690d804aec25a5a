"""Tests for domain grouping, synthesis fallback and gap detection."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from docweave.core.checkpoint import CheckpointStore, SessionManager
from docweave.core.consolidation import (
    ConsolidationRunner,
    DomainGrouper,
    detect_gaps,
    group_by_path,
    path_domain,
    simple_merge,
)
from docweave.core.consolidation.grouping import GROUPING_SCHEMA
from docweave.core.db import DatabaseManager
from docweave.core.errors import LLMError
from docweave.core.models import DomainInsight, FileInsight, ProcessingTier, RelatedFile


# ── Fixtures ──────────────────────────────────────────────────────────────


@pytest.fixture
def store(tmp_path):
    db = DatabaseManager("sqlite://")
    db.create_tables()
    store = CheckpointStore(db)
    store.session_id = SessionManager(db).create_session(str(tmp_path))
    yield store
    db.dispose()


def _file(path, tier=ProcessingTier.STANDARD, related=()):
    return FileInsight(
        file_path=path,
        purpose=f"Purpose of {path}",
        tier=tier,
        content=f"Documentation for {path}.",
        related_files=[RelatedFile(p, "calls") for p in related],
    )


AUTH_FILES = ["src/auth/login.rs", "src/auth/token.rs", "src/auth/session.rs"]


# ── Tests: Path Grouping ─────────────────────────────────────────────────


class TestPathDomain:

    @pytest.mark.parametrize("path,expected", [
        ("src/a/b/c/x.rs", "a-b-c"),
        ("src/a/b/x.rs", "a-b"),
        ("src/a/x.rs", "a"),
        ("src/main.rs", "src"),
        ("main.rs", "core"),
        ("crates/net/src/Http_Client/x.rs", "http-client"),
        ("scripts/build.py", "scripts"),
    ])
    def test_path_domain(self, path, expected):
        assert path_domain(path) == expected

    def test_group_by_path_covers_every_file(self):
        insights = [_file(p) for p in AUTH_FILES + ["src/db/pool.rs", "main.rs"]]

        groups = group_by_path(insights)

        assert sorted(groups) == ["auth", "core", "db"]
        assert sum(len(v) for v in groups.values()) == len(insights)


class TestDomainGrouper:

    def test_orphans_join_closest_domain(self):
        insights = [_file(p) for p in AUTH_FILES[:2] + ["src/db/pool.rs"]]
        grouper = DomainGrouper(MagicMock())
        result = {"domains": [{
            "name": "Auth Flow",
            "description": "Login and tokens",
            "files": ["src/auth/login.rs", "bogus.rs", "src/auth/login.rs"],
        }]}

        groups = grouper.parse_grouping(result, insights)

        assert [f.file_path for f in groups["auth-flow"]] == ["src/auth/login.rs", "src/auth/token.rs"]
        assert [f.file_path for f in groups["db"]] == ["src/db/pool.rs"]
        assert grouper.descriptions == {"auth-flow": "Login and tokens"}

    def test_model_failure_falls_back_to_paths(self):
        llm = MagicMock()
        llm.generate = AsyncMock(side_effect=LLMError("timeout", transient=True))
        insights = [_file(p) for p in AUTH_FILES + ["src/db/pool.rs"]]

        groups = asyncio.run(DomainGrouper(llm).group(insights))

        assert sorted(groups) == ["auth", "db"]

    def test_large_projects_refine_path_groups(self):
        llm = MagicMock()
        llm.generate = AsyncMock(return_value={
            "merges": [{"name": "Storage", "groups": ["db", "cache"]}],
        })
        insights = [_file(p) for p in ["src/db/pool.rs", "src/cache/lru.rs", "src/auth/login.rs"]]

        groups = asyncio.run(DomainGrouper(llm, llm_max_files=2).group(insights))

        assert sorted(groups) == ["auth", "storage"]
        assert len(groups["storage"]) == 2

    def test_malformed_file_entries_are_skipped(self):
        llm = MagicMock()
        llm.generate = AsyncMock(return_value={"domains": [{
            "name": "x",
            "files": [{"path": "src/auth/login.rs"}, ["nested"], "src/db/pool.rs"],
        }]})
        insights = [_file(p) for p in ["src/auth/login.rs", "src/db/pool.rs"]]

        groups = asyncio.run(DomainGrouper(llm).group(insights))

        assert [f.file_path for f in groups["x"]] == ["src/db/pool.rs"]
        assert [f.file_path for f in groups["auth"]] == ["src/auth/login.rs"]

    def test_malformed_merge_entries_are_skipped(self):
        llm = MagicMock()
        llm.generate = AsyncMock(return_value={"merges": [
            {"name": "Storage", "groups": [{"group": "db"}, "cache"]},
            {"name": "broken", "groups": "db"},
        ]})
        insights = [_file(p) for p in ["src/db/pool.rs", "src/cache/lru.rs", "src/auth/login.rs"]]

        groups = asyncio.run(DomainGrouper(llm, llm_max_files=2).group(insights))

        assert sorted(groups) == ["auth", "db", "storage"]
        assert [f.file_path for f in groups["storage"]] == ["src/cache/lru.rs"]


# ── Tests: Merge and Gaps ────────────────────────────────────────────────


class TestSimpleMerge:

    def test_primary_file_leads_and_others_are_linked(self):
        files = [
            _file("src/db/pool.rs", related=["src/config.rs"]),
            _file("src/db/mod.rs", tier=ProcessingTier.CORE, related=["src/db/pool.rs"]),
        ]

        domain = simple_merge("db", files)

        assert domain.description == "Purpose of src/db/mod.rs"
        assert domain.content.startswith("Documentation for src/db/mod.rs.")
        assert "- [src/db/pool.rs](src_db_pool.rs.md): Purpose of src/db/pool.rs" in domain.content
        assert [r.path for r in domain.related_files] == ["src/config.rs"]
        assert domain.files == ["src/db/pool.rs", "src/db/mod.rs"]


class TestGapDetection:

    def test_large_domain_without_docs(self):
        domain = DomainInsight(name="misc", files=[f"src/misc/m{i}.rs" for i in range(6)])

        assert detect_gaps(domain) == [
            "No documentation content for multi-file domain",
            "No architecture diagram for multi-file domain",
            "No cross-references documented for multi-file domain",
        ]

    def test_api_files_need_contract(self):
        domain = DomainInsight(name="web", files=["src/api/routes.rs"], content="Routing.")

        assert detect_gaps(domain) == ["API-related files may need API contract documentation"]

    def test_content_mentions_close_gaps(self):
        domain = DomainInsight(
            name="web",
            files=["src/api/routes.rs", "src/session/store.rs", "src/client/http.rs"],
            content="Each endpoint reads session state and calls the external provider.",
        )

        assert detect_gaps(domain) == []


# ── Tests: Runner ────────────────────────────────────────────────────────


class TestConsolidationRunner:

    def _llm(self):
        async def generate(prompt, schema=None):
            if schema is GROUPING_SCHEMA:
                return {"domains": [
                    {"name": "auth", "files": AUTH_FILES},
                    {"name": "db", "files": ["src/db/pool.rs"]},
                ]}
            return {
                "description": "Credential checks and token issuing",
                "content": "Login verifies credentials, token issues signed tokens.",
                "related_files": [{"path": "src/db/pool.rs", "relationship": "uses"}],
            }

        llm = MagicMock()
        llm.generate = AsyncMock(side_effect=generate)
        return llm

    def test_synthesizes_and_persists(self, store):
        llm = self._llm()
        insights = [_file(p) for p in AUTH_FILES] + [_file("src/db/pool.rs")]

        domains = asyncio.run(ConsolidationRunner(store, llm).run(store.session_id, insights))

        assert [d.name for d in domains] == ["auth", "db"]
        auth, db = domains
        assert auth.description == "Credential checks and token issuing"
        assert auth.related_files == [RelatedFile("src/db/pool.rs", "uses")]
        assert auth.gaps == ["State-related files may need state machine documentation"]
        assert auth.token_count == len(auth.content) // 4
        assert db.content == "Documentation for src/db/pool.rs."
        # grouping + one synthesis; the single-file domain is merged
        assert llm.generate.await_count == 2
        assert [d.name for d in store.load_domain_summaries(store.session_id)] == ["auth", "db"]

    def test_second_run_returns_stored_domains(self, store):
        llm = self._llm()
        insights = [_file(p) for p in AUTH_FILES]
        runner = ConsolidationRunner(store, llm)
        asyncio.run(runner.run(store.session_id, insights))
        calls = llm.generate.await_count

        domains = asyncio.run(runner.run(store.session_id, insights))

        assert llm.generate.await_count == calls
        assert [d.name for d in domains] == ["auth"]

    def test_synthesis_failure_merges_mechanically(self, store):
        llm = MagicMock()
        llm.generate = AsyncMock(side_effect=LLMError("bad json"))
        insights = [_file(p) for p in AUTH_FILES]

        domains = asyncio.run(ConsolidationRunner(store, llm).run(store.session_id, insights))

        assert len(domains) == 1
        assert domains[0].content.startswith("Documentation for src/auth/login.rs.")
        assert "## Related Files" in domains[0].content
