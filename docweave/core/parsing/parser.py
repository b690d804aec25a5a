"""Parser collaborator: mechanical source -> structural facts.

``parse(path, content) -> (facts, relations)`` is pure and synchronous.
The default RegexParser is intentionally shallow: top-level definitions
and import targets per language, enough to ground analysis prompts.
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, List, Pattern, Protocol, Tuple

from ..constants import LANGUAGE_BY_EXTENSION


@dataclass(frozen=True)
class StructuralFact:
    """A definition found in a file (function, class, struct, ...)."""
    kind: str
    name: str
    line: int


@dataclass(frozen=True)
class Relation:
    """An import/use edge from a file to a module or path."""
    kind: str      # imports|uses|requires
    target: str
    line: int


class Parser(Protocol):
    def parse(self, path: str, content: str) -> Tuple[List[StructuralFact], List[Relation]]:
        ...


def detect_language(path: str) -> str:
    """Language name from extension, or '' when unrecognized."""
    return LANGUAGE_BY_EXTENSION.get(PurePosixPath(path).suffix.lower(), "")


_DEFINITIONS: Dict[str, List[Tuple[str, Pattern]]] = {
    "python": [
        ("class", re.compile(r"^class\s+(\w+)")),
        ("function", re.compile(r"^(?:async\s+)?def\s+(\w+)")),
    ],
    "rust": [
        ("function", re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?fn\s+(\w+)")),
        ("struct", re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?struct\s+(\w+)")),
        ("enum", re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?enum\s+(\w+)")),
        ("trait", re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?trait\s+(\w+)")),
    ],
    "typescript": [
        ("class", re.compile(r"^(?:export\s+)?(?:default\s+)?class\s+(\w+)")),
        ("function", re.compile(r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\s+(\w+)")),
        ("interface", re.compile(r"^(?:export\s+)?interface\s+(\w+)")),
    ],
    "go": [
        ("function", re.compile(r"^func\s+(?:\([^)]*\)\s*)?(\w+)")),
        ("type", re.compile(r"^type\s+(\w+)")),
    ],
    "java": [
        ("class", re.compile(r"^\s*(?:public\s+|final\s+|abstract\s+)*(?:class|interface|enum)\s+(\w+)")),
    ],
}
_DEFINITIONS["javascript"] = _DEFINITIONS["typescript"][:2]
_DEFINITIONS["kotlin"] = _DEFINITIONS["java"]

_IMPORTS: Dict[str, List[Pattern]] = {
    "python": [
        re.compile(r"^from\s+([\w.]+)\s+import"),
        re.compile(r"^import\s+([\w.]+)"),
    ],
    "rust": [re.compile(r"^\s*(?:pub\s+)?use\s+([\w:]+)"), re.compile(r"^\s*mod\s+(\w+)\s*;")],
    "typescript": [
        re.compile(r"""^import\s+.*?from\s+['"]([^'"]+)['"]"""),
        re.compile(r"""require\(\s*['"]([^'"]+)['"]\s*\)"""),
    ],
    "go": [re.compile(r"""^\s*(?:import\s+)?"([\w./-]+)"$""")],
    "java": [re.compile(r"^import\s+([\w.]+);")],
}
_IMPORTS["javascript"] = _IMPORTS["typescript"]
_IMPORTS["kotlin"] = _IMPORTS["java"]


class RegexParser:
    """Line-oriented definition/import extraction."""

    def parse(self, path: str, content: str) -> Tuple[List[StructuralFact], List[Relation]]:
        language = detect_language(path)
        definitions = _DEFINITIONS.get(language, [])
        imports = _IMPORTS.get(language, [])

        facts: List[StructuralFact] = []
        relations: List[Relation] = []
        for lineno, line in enumerate(content.splitlines(), start=1):
            for kind, pattern in definitions:
                match = pattern.match(line)
                if match:
                    facts.append(StructuralFact(kind=kind, name=match.group(1), line=lineno))
                    break
            for pattern in imports:
                match = pattern.search(line)
                if match:
                    relations.append(Relation(kind="imports", target=match.group(1), line=lineno))
                    break
        return facts, relations


def format_structural_context(facts: List[StructuralFact], relations: List[Relation],
                              limit: int = 40) -> str:
    """Compact text block injected into analysis prompts."""
    if not facts and not relations:
        return ""
    lines = []
    if facts:
        lines.append("Definitions:")
        lines.extend(f"- {f.kind} {f.name} (line {f.line})" for f in facts[:limit])
    if relations:
        lines.append("Imports:")
        lines.extend(f"- {r.target}" for r in relations[:limit])
    return "\n".join(lines)
