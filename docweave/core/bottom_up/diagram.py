"""Structural checks for mermaid diagrams produced by the model."""

from typing import List

DIAGRAM_TYPES = (
    "flowchart", "graph", "sequenceDiagram", "classDiagram", "stateDiagram",
    "stateDiagram-v2", "erDiagram", "gantt", "pie", "journey", "gitGraph", "mindmap",
)

_PAIRS = {"(": ")", "[": "]", "{": "}"}


def strip_fence(diagram: str) -> str:
    text = diagram.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()


def validate_mermaid(diagram: str) -> List[str]:
    """Problems found in a diagram; empty when it looks valid."""
    body = strip_fence(diagram)
    if not body:
        return ["Empty diagram"]

    errors = []
    first = body.splitlines()[0].strip()
    if first.split(" ", 1)[0] not in DIAGRAM_TYPES:
        errors.append(f"Line 1: unknown diagram type '{first[:40]}'")

    for lineno, line in enumerate(body.splitlines(), start=1):
        if line.count('"') % 2:
            errors.append(f"Line {lineno}: mismatched quotes")
        stack = []
        for ch in line:
            if ch in _PAIRS:
                stack.append(_PAIRS[ch])
            elif ch in _PAIRS.values():
                if not stack or stack.pop() != ch:
                    errors.append(f"Line {lineno}: unbalanced '{ch}'")
                    break
        else:
            if stack:
                errors.append(f"Line {lineno}: unclosed bracket")
    return errors
