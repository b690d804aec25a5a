"""Characterization agents.

Turn 1 reads the raw project (structure, dependencies, entry points).
Turn 2 reads Turn 1's outputs as well (purpose, technical traits,
terminology). Turn 3 (section discovery) reads everything before it.

Each agent asks the LLM for a JSON object and falls back to a
path/manifest heuristic when the call or the parse fails. Heuristic
output carries a lower confidence than a model answer.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from ..errors import AgentError
from ..llm import LLMClient
from ..models import AgentInsight, PrioritizedFile
from ..pipeline.orchestrator import Agent, TurnContext
from .snapshot import ProjectSnapshot

logger = logging.getLogger(__name__)

LLM_CONFIDENCE = 0.85
EMPTY_RESULT_CONFIDENCE = 0.5
FALLBACK_CONFIDENCE = 0.4

SYSTEM_PROMPT = (
    "You are a senior engineer characterizing a software project before "
    "writing its documentation. Answer only from the evidence given."
)

_STRING_LIST = {"type": "array", "items": {"type": "string"}}

_LAYER_DIRS = {"models", "views", "controllers", "services", "repositories", "handlers", "routes"}
_GENERIC_DIRS = {
    "src", "lib", "app", "test", "tests", "spec", "docs", "doc", "examples",
    "scripts", "bin", "utils", "util", "common", "shared", "internal", "pkg", "cmd",
}


class CharacterizationAgent(Agent):
    """LLM-backed agent with a heuristic fallback.

    With no LLM client (flat projects) analyze() returns the heuristic
    directly, without a model call.
    """

    turn: int = 1
    schema: Dict[str, Any] = {}
    required_keys: tuple = ()

    def __init__(self, snapshot: ProjectSnapshot, llm: Optional[LLMClient] = None):
        self.snapshot = snapshot
        self._llm = llm

    # Subclasses implement these two
    def build_prompt(self, context: TurnContext) -> str:
        raise NotImplementedError

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        raise NotImplementedError

    def normalize(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Validate the model answer. Raise AgentError when unusable."""
        missing = [k for k in self.required_keys if k not in payload]
        if missing:
            raise AgentError(self.name, f"response missing keys {missing}")
        return payload

    def confidence_for(self, payload: Dict[str, Any]) -> float:
        has_content = any(payload.get(k) for k in self.required_keys)
        return LLM_CONFIDENCE if has_content else EMPTY_RESULT_CONFIDENCE

    async def analyze(self, context: TurnContext) -> AgentInsight:
        if self._llm is None:
            return self._heuristic_insight(context)

        prompt = f"{SYSTEM_PROMPT}\n\n{self.build_prompt(context)}"
        response = await self._llm.generate_with_retry(prompt, self.schema, retries=1)
        payload = self.normalize(response)
        logger.debug(f"{self.name} agent: {len(payload)} fields, {len(context.prior)} prior insights")
        return AgentInsight(
            agent_name=self.name,
            turn=self.turn,
            payload=payload,
            confidence=self.confidence_for(payload),
        )

    def fallback(self, context: TurnContext) -> AgentInsight:
        return self._heuristic_insight(context)

    def _heuristic_insight(self, context: TurnContext) -> AgentInsight:
        return AgentInsight(
            agent_name=self.name,
            turn=self.turn,
            payload=self.heuristic(context),
            confidence=FALLBACK_CONFIDENCE,
            is_fallback=True,
        )

    def _prior_block(self, context: TurnContext) -> str:
        if not context.prior:
            return ""
        lines = ["Earlier findings:"]
        for name, insight in context.prior.items():
            lines.append(f"- {name}: {json.dumps(insight.payload)[:1500]}")
        return "\n".join(lines)


# ── Turn 1 ──────────────────────────────────────────────────────────────


class StructureAgent(CharacterizationAgent):
    name = "structure"
    turn = 1
    required_keys = ("directory_patterns", "organization_style")
    schema = {
        "type": "object",
        "properties": {
            "directory_patterns": _STRING_LIST,
            "module_boundaries": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"name": {"type": "string"}, "path": {"type": "string"}},
                },
            },
            "organization_style": {"type": "string"},
            "key_areas": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "path": {"type": "string"},
                        "importance": {"type": "string"},
                        "focus_reasons": _STRING_LIST,
                    },
                },
            },
            "test_organization": {"type": "string"},
        },
        "required": ["directory_patterns", "organization_style"],
    }

    def build_prompt(self, context: TurnContext) -> str:
        return (
            "Describe how this project is organized: recurring directory "
            "patterns, module boundaries, the organization style "
            "(domain-driven, layer-based, feature-based, flat or hybrid) and "
            "the key areas that deserve the most documentation, each with an "
            "importance (low, medium, high, critical).\n\n"
            f"{self.snapshot.prompt_block()}"
        )

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        files = self.snapshot.files
        has_src = any(f.startswith("src/") for f in files)
        has_lib = any(f.startswith("lib/") or "/lib/" in f for f in files)
        has_tests = any("test" in f or "spec" in f for f in files)

        patterns = []
        if has_src:
            patterns.append("src/ directory structure")
        if has_lib:
            patterns.append("lib/ library structure")
        if has_tests:
            patterns.append("dedicated test directory")

        top_dirs = self.snapshot.top_level_dirs()
        modules = [{"name": d, "path": d} for d in top_dirs]

        if not top_dirs:
            style = "flat"
        elif len(_LAYER_DIRS & set(self._second_level_dirs())) >= 2:
            style = "layer-based"
        elif len(top_dirs) > 5:
            style = "feature-based"
        else:
            style = "hybrid"

        return {
            "directory_patterns": patterns,
            "module_boundaries": modules,
            "organization_style": style,
            "key_areas": self._heuristic_key_areas(),
            "test_organization": "separate" if has_tests else None,
        }

    def _second_level_dirs(self) -> List[str]:
        dirs = []
        for f in self.snapshot.files:
            parts = f.split("/")
            if len(parts) > 2:
                dirs.append(parts[1])
            if len(parts) > 1:
                dirs.append(parts[0])
        return dirs

    def _heuristic_key_areas(self) -> List[Dict[str, Any]]:
        # Modules directly under src/ (or top-level dirs) ranked by size
        counts: Dict[str, int] = {}
        for f in self.snapshot.files:
            parts = f.split("/")
            if parts[0] == "src" and len(parts) > 2:
                area = f"src/{parts[1]}"
            elif len(parts) > 1 and parts[0] not in _GENERIC_DIRS:
                area = parts[0]
            else:
                continue
            counts[area] = counts.get(area, 0) + 1

        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:5]
        return [
            {
                "path": area,
                "importance": "high" if i == 0 and count > 2 else "medium",
                "focus_reasons": [f"{count} source files"],
            }
            for i, (area, count) in enumerate(ranked)
        ]


class DependencyAgent(CharacterizationAgent):
    name = "dependency"
    turn = 1
    required_keys = ("dependencies",)
    schema = {
        "type": "object",
        "properties": {
            "dependencies": _STRING_LIST,
            "frameworks": _STRING_LIST,
            "languages": _STRING_LIST,
            "build_tools": _STRING_LIST,
        },
        "required": ["dependencies"],
    }

    def build_prompt(self, context: TurnContext) -> str:
        return (
            "List the project's external dependencies, the frameworks it is "
            "built on, its languages and its build tools.\n\n"
            f"{self.snapshot.prompt_block()}"
        )

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        deps: List[str] = []
        for name, content in self.snapshot.manifests.items():
            deps.extend(_manifest_dependencies(name, content))
        return {
            "dependencies": sorted(set(deps)),
            "frameworks": [],
            "languages": list(self.snapshot.language_counts()),
            "build_tools": sorted(self.snapshot.manifests),
        }


def _manifest_dependencies(name: str, content: str) -> List[str]:
    if name == "package.json":
        try:
            data = json.loads(content)
        except ValueError:
            return []
        deps = dict(data.get("dependencies") or {})
        deps.update(data.get("devDependencies") or {})
        return list(deps)
    if name == "requirements.txt":
        return [
            re.split(r"[<>=!~\[; ]", line.strip(), maxsplit=1)[0]
            for line in content.splitlines()
            if line.strip() and not line.strip().startswith(("#", "-"))
        ]
    if name in ("Cargo.toml", "pyproject.toml"):
        # Keys inside [dependencies]-like sections
        found, in_deps = [], False
        for line in content.splitlines():
            stripped = line.strip()
            if stripped.startswith("["):
                in_deps = "dependencies" in stripped
                continue
            if in_deps and "=" in stripped and not stripped.startswith("#"):
                found.append(stripped.split("=", 1)[0].strip().strip('"'))
        return found
    if name == "go.mod":
        return [
            line.split()[0] for line in content.splitlines()
            if line.startswith("\t") and line.split()
        ]
    return []


class EntryPointAgent(CharacterizationAgent):
    name = "entry_point"
    turn = 1
    required_keys = ("entry_points",)
    schema = {
        "type": "object",
        "properties": {
            "entry_points": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "entry_type": {"type": "string"},
                        "file": {"type": "string"},
                        "symbol": {"type": "string"},
                    },
                },
            },
        },
        "required": ["entry_points"],
    }

    def build_prompt(self, context: TurnContext) -> str:
        return (
            "Identify the project's entry points (binaries, CLI commands, "
            "servers, library roots, scripts) with their file and symbol.\n\n"
            f"{self.snapshot.prompt_block()}"
        )

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        entries = []
        for f in self.snapshot.files:
            if not PrioritizedFile.is_entry_point_name(f):
                continue
            stem = f.rsplit("/", 1)[-1].lower().split(".", 1)[0]
            if stem in ("main", "__main__"):
                entry_type = "main"
            elif stem in ("server", "app"):
                entry_type = "server"
            else:
                entry_type = "library"
            entries.append({"entry_type": entry_type, "file": f, "symbol": None})
        return {"entry_points": entries}


# ── Turn 2 ──────────────────────────────────────────────────────────────


class PurposeAgent(CharacterizationAgent):
    name = "purpose"
    turn = 2
    required_keys = ("purposes",)
    schema = {
        "type": "object",
        "properties": {
            "purposes": _STRING_LIST,
            "target_users": _STRING_LIST,
            "problem_domain": {"type": "string"},
        },
        "required": ["purposes"],
    }

    def build_prompt(self, context: TurnContext) -> str:
        return (
            "State what this project is for (1-3 purposes) and who uses it.\n\n"
            f"{self._prior_block(context)}\n\n{self.snapshot.prompt_block()}"
        )

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        purpose = _readme_first_paragraph(self.snapshot.readme)
        return {
            "purposes": [purpose] if purpose else ["Unknown"],
            "target_users": [],
            "problem_domain": None,
        }


def _readme_first_paragraph(readme: str, max_chars: int = 300) -> str:
    lines = []
    for line in readme.splitlines():
        stripped = line.strip()
        if not stripped:
            if lines:
                break
            continue
        if stripped.startswith(("#", "!", "[", "<", "=", "-")):
            continue
        lines.append(stripped)
    return " ".join(lines)[:max_chars]


class TechnicalAgent(CharacterizationAgent):
    name = "technical"
    turn = 2
    required_keys = ("technical_traits",)
    schema = {
        "type": "object",
        "properties": {
            "technical_traits": _STRING_LIST,
            "architecture_hints": _STRING_LIST,
            "patterns": _STRING_LIST,
        },
        "required": ["technical_traits"],
    }

    _TRAIT_HINTS = {
        "async runtime": ("tokio", "async-std", "asyncio", "aiohttp", "trio"),
        "web service": ("axum", "actix-web", "fastapi", "flask", "django", "express", "rocket"),
        "database access": ("sqlx", "diesel", "sqlalchemy", "prisma", "gorm", "rusqlite"),
        "command-line interface": ("clap", "click", "typer", "commander", "cobra"),
        "serialization": ("serde", "pydantic", "protobuf"),
    }

    def build_prompt(self, context: TurnContext) -> str:
        return (
            "Summarize the project's technical traits (runtime model, I/O, "
            "persistence, interfaces) and architecture hints.\n\n"
            f"{self._prior_block(context)}\n\n{self.snapshot.prompt_block()}"
        )

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        deps = {d.lower() for d in context.payload("dependency").get("dependencies") or []}
        traits = [trait for trait, hints in self._TRAIT_HINTS.items() if deps & set(hints)]
        languages = context.payload("dependency").get("languages") or list(
            self.snapshot.language_counts()
        )
        if languages:
            traits.insert(0, f"written in {', '.join(languages[:3])}")

        style = context.payload("structure").get("organization_style")
        hints = [f"{style} organization"] if style else []
        return {"technical_traits": traits, "architecture_hints": hints, "patterns": []}


class TerminologyAgent(CharacterizationAgent):
    name = "terminology"
    turn = 2
    required_keys = ("domain_traits", "terms")
    schema = {
        "type": "object",
        "properties": {
            "domain_traits": _STRING_LIST,
            "terms": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "term": {"type": "string"},
                        "definition": {"type": "string"},
                        "context": {"type": "string"},
                    },
                },
            },
        },
        "required": ["domain_traits", "terms"],
    }

    def build_prompt(self, context: TurnContext) -> str:
        return (
            "Name the business/problem domain traits of this project and the "
            "domain-specific terms a new contributor must learn, each with a "
            "short definition.\n\n"
            f"{self._prior_block(context)}\n\n{self.snapshot.prompt_block()}"
        )

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        names = set()
        for f in self.snapshot.files:
            for part in f.split("/")[:-1]:
                if part not in _GENERIC_DIRS and not part.startswith((".", "_")):
                    names.add(part)
        return {"domain_traits": sorted(names)[:10], "terms": []}


# ── Turn 3 ──────────────────────────────────────────────────────────────


class SectionDiscoveryAgent(CharacterizationAgent):
    name = "section_discovery"
    turn = 3
    required_keys = ("sections",)
    schema = {
        "type": "object",
        "properties": {
            "sections": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "description": {"type": "string"},
                        "extraction_hints": _STRING_LIST,
                    },
                },
            },
        },
        "required": ["sections"],
    }

    def build_prompt(self, context: TurnContext) -> str:
        return (
            "Propose documentation sections specific to this project beyond "
            "the usual overview/architecture/API pages. For each give a name, "
            "a description and hints about which code to extract it from.\n\n"
            f"{self._prior_block(context)}\n\n{self.snapshot.prompt_block()}"
        )

    def heuristic(self, context: TurnContext) -> Dict[str, Any]:
        areas = context.payload("structure").get("key_areas") or []
        sections = [
            {
                "name": area["path"].rsplit("/", 1)[-1].replace("_", " ").title(),
                "description": f"How {area['path']} works",
                "extraction_hints": [area["path"]],
            }
            for area in areas if isinstance(area, dict) and area.get("path")
        ]
        return {"sections": sections}


TURN1_AGENT_CLASSES = (StructureAgent, DependencyAgent, EntryPointAgent)
TURN2_AGENT_CLASSES = (PurposeAgent, TechnicalAgent, TerminologyAgent)
TURN3_AGENT_CLASSES = (SectionDiscoveryAgent,)
