"""Single-pass analysis prompt for Leaf/Standard files."""

from typing import Any, Dict, Sequence

from ..models import ChildContext, ProcessingTier

ANALYSIS_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "purpose": {"type": "string"},
        "content": {"type": "string"},
        "diagram": {"type": "string"},
        "related_files": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "relationship": {"type": "string"},
                },
            },
        },
    },
    "required": ["purpose", "content"],
}

DIAGRAM_FIX_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {"diagram": {"type": "string"}},
    "required": ["diagram"],
}

_TIER_GUIDANCE = {
    ProcessingTier.LEAF: "Be brief: what the file provides and who uses it.",
    ProcessingTier.STANDARD: "Describe responsibilities, main types/functions and collaborators.",
    ProcessingTier.IMPORTANT: "Explain the design, data flow and how it coordinates its dependencies.",
    ProcessingTier.CORE: "Explain the design, data flow and how it coordinates its dependencies.",
}


def build_analysis_prompt(
    file_path: str,
    source: str,
    tier: ProcessingTier,
    profile_context: str,
    max_chars: int,
    child_contexts: Sequence[ChildContext] = (),
    structural_context: str = "",
) -> str:
    if len(source) > max_chars:
        source = source[:max_chars] + "... [truncated]"

    parts = [
        f"Document the file `{file_path}` ({tier.name.lower()} tier).",
        _TIER_GUIDANCE[tier],
        "Start directly with substance: no preamble, no praise. "
        "List files it interacts with in related_files.",
        profile_context,
    ]
    if structural_context:
        parts.append(f"Structural facts:\n{structural_context}")
    if child_contexts:
        children = "\n".join(f"- {c.path}: {c.purpose}" for c in child_contexts)
        parts.append(
            "Already documented files (link to them by path, do not repeat them):\n"
            f"{children}"
        )
    parts.append(f"Source:\n```\n{source}\n```")
    return "\n\n".join(p for p in parts if p)


def build_diagram_fix_prompt(diagram: str, errors: Sequence[str]) -> str:
    problems = "\n".join(f"- {e}" for e in errors)
    return (
        "This mermaid diagram does not validate. Return a corrected version "
        "that keeps its meaning.\n\n"
        f"Problems:\n{problems}\n\nDiagram:\n```mermaid\n{diagram}\n```"
    )
