"""Prompt builders and response parsing for Deep Research iterations."""

from typing import Any, Dict, List

from ..models import ChildContext, RelatedFile
from .models import ResearchContext, ResearchIteration, ResearchPhase

_ITERATION_SCHEMA = {
    "type": "object",
    "properties": {
        "findings": {"type": "string"},
        "new_aspects": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["findings", "new_aspects"],
}

_SYNTHESIS_SCHEMA = {
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


def research_output_schema(phase: ResearchPhase) -> Dict[str, Any]:
    return _SYNTHESIS_SCHEMA if phase.is_synthesizing else _ITERATION_SCHEMA


def _format_children(children: List[ChildContext]) -> str:
    if not children:
        return "None"
    return "\n".join(f"- {c.path}: {c.purpose} {c.summary}".rstrip() for c in children)


def build_research_prompt(
    phase: ResearchPhase,
    file_path: str,
    context: ResearchContext,
    source: str,
    profile_context: str,
    max_chars: int,
    child_contexts: List[ChildContext],
    structural_context: str = "",
) -> str:
    source = source[:max_chars]
    parts = [
        f"You are researching `{file_path}` in depth.",
        profile_context,
        f"{phase.section_header()}",
    ]
    if phase.is_planning:
        parts.append(
            "List the aspects of this file worth documenting and what you "
            "already understand about each. Return them as new_aspects."
        )
    elif phase.is_synthesizing:
        parts.append(
            "Write the final documentation: a 1-2 sentence purpose, markdown "
            "content and an optional mermaid diagram. Link documented child "
            "files by path instead of repeating their content."
        )
        parts.append(f"Findings so far:\n{context.summarize_findings()}")
    else:
        pending = context.pending_areas()
        parts.append(
            "Investigate aspects that are NOT already covered. Do not repeat "
            "covered aspects."
        )
        parts.append(f"Already covered: {context.covered_aspects_str()}")
        if pending:
            parts.append(f"Still open: {', '.join(pending)}")
        parts.append(f"Findings so far:\n{context.summarize_findings()}")

    parts.append(f"Documented child files:\n{_format_children(child_contexts)}")
    if structural_context:
        parts.append(f"Structural facts:\n{structural_context}")
    parts.append(f"Source:\n```\n{source}\n```")
    return "\n\n".join(p for p in parts if p)


def parse_research_output(phase: ResearchPhase, response: Dict[str, Any]) -> ResearchIteration:
    if not phase.is_synthesizing:
        aspects = response.get("new_aspects") or []
        return ResearchIteration(
            phase=phase,
            findings=str(response.get("findings") or ""),
            new_aspects=[str(a) for a in aspects if isinstance(a, (str, int, float))],
        )

    related = [
        rf for rf in (RelatedFile.from_dict(d) for d in response.get("related_files") or [])
        if rf is not None
    ]
    diagram = response.get("diagram") or None
    return ResearchIteration(
        phase=phase,
        findings=str(response.get("content") or ""),
        purpose=str(response.get("purpose") or ""),
        content=str(response.get("content") or ""),
        diagram=str(diagram) if diagram else None,
        related_files=related,
    )
