"""Tests for the regex parser and file discovery."""

import hashlib

import pytest

from docweave.core.checkpoint import CheckpointStore, SessionManager
from docweave.core.constants import FILE_DISCOVERED, FILE_UNANALYZED
from docweave.core.db import DatabaseManager
from docweave.core.discovery import FileScanner, run_discovery
from docweave.core.parsing import (
    RegexParser,
    Relation,
    StructuralFact,
    detect_language,
    format_structural_context,
)


# ── Fixtures ──────────────────────────────────────────────────────────────


PYTHON_SOURCE = """import os
from pkg.sub import thing

class Foo:
    def method(self):
        pass

async def run():
    pass
"""

RUST_SOURCE = """use crate::db::Pool;
mod handlers;

pub struct Server {
}

pub(crate) async fn start() {}
impl Server {
    pub fn new() -> Self {}
}
"""


@pytest.fixture
def project(tmp_path):
    src = tmp_path / "src"
    src.mkdir()
    (src / "main.rs").write_text("fn main() {\n    run();\n}\n")
    (src / "lib.rs").write_text("   \n")
    (src / "blob.rs").write_bytes(b"\x00\x01binary")
    (src / "latin.py").write_bytes(b"\xff\xfe caf\xe9")
    (src / "big.rs").write_text("x" * 500)
    (tmp_path / "README.md").write_text("# Demo\n")
    for excluded in ("node_modules", "target", ".hidden"):
        (tmp_path / excluded).mkdir()
        (tmp_path / excluded / "skip.js").write_text("console.log(1)\n")
    return tmp_path


# ── Tests: Parser ────────────────────────────────────────────────────────


class TestRegexParser:

    def test_python(self):
        facts, relations = RegexParser().parse("pkg/mod.py", PYTHON_SOURCE)

        assert facts == [
            StructuralFact("class", "Foo", 4),
            StructuralFact("function", "run", 8),
        ]
        assert [r.target for r in relations] == ["os", "pkg.sub"]

    def test_rust(self):
        facts, relations = RegexParser().parse("src/server.rs", RUST_SOURCE)

        assert [(f.kind, f.name) for f in facts] == [
            ("struct", "Server"),
            ("function", "start"),
            ("function", "new"),
        ]
        assert relations == [
            Relation("imports", "crate::db::Pool", 1),
            Relation("imports", "handlers", 2),
        ]

    def test_unknown_language_yields_nothing(self):
        assert RegexParser().parse("notes.txt", "class Foo:\n") == ([], [])

    def test_detect_language(self):
        assert detect_language("src/App.TSX") == "typescript"
        assert detect_language("Makefile") == ""

    def test_format_structural_context(self):
        block = format_structural_context(
            [StructuralFact("function", "run", 3)], [Relation("imports", "os", 1)]
        )

        assert block == "Definitions:\n- function run (line 3)\nImports:\n- os"
        assert format_structural_context([], []) == ""


# ── Tests: Discovery ─────────────────────────────────────────────────────


class TestFileScanner:

    def test_walk_honors_exclusions_and_size(self, project):
        scanner = FileScanner(str(project), max_file_bytes=100)

        assert list(scanner.iter_paths()) == [
            "src/blob.rs", "src/latin.py", "src/lib.rs", "src/main.rs",
        ]

    def test_unusable_files_are_marked_unanalyzed(self, project):
        scanned = {f.path: f for f in FileScanner(str(project), max_file_bytes=100).scan()}

        assert scanned["src/blob.rs"].reason == "binary content"
        assert scanned["src/latin.py"].reason == "not valid UTF-8"
        assert scanned["src/lib.rs"].reason == "empty file"
        assert {scanned[p].status for p in ("src/blob.rs", "src/latin.py", "src/lib.rs")} == {
            FILE_UNANALYZED
        }

        main = scanned["src/main.rs"]
        assert main.status == FILE_DISCOVERED
        assert main.line_count == 3
        assert main.language == "rust"
        assert main.content_hash == hashlib.sha256(
            (project / "src" / "main.rs").read_bytes()
        ).hexdigest()

    def test_run_discovery_completes_phase(self, project):
        db = DatabaseManager("sqlite://")
        db.create_tables()
        try:
            store = CheckpointStore(db)
            session_id = SessionManager(db).create_session(str(project))

            total = run_discovery(store, session_id, FileScanner(str(project), max_file_bytes=100))

            assert total == 1
            state = store.load_checkpoint_state(session_id)
            assert state.last_completed_phase == 2
            assert state.checkpoint_data["discovery_complete"] is True
            assert store.iter_pending_files(session_id) == ["src/main.rs"]
        finally:
            db.dispose()
