"""Parser collaborator interface and the default regex implementation."""

from .parser import (
    Parser,
    RegexParser,
    Relation,
    StructuralFact,
    detect_language,
    format_structural_context,
)

__all__ = [
    "Parser",
    "RegexParser",
    "Relation",
    "StructuralFact",
    "detect_language",
    "format_structural_context",
]
