"""Phase 3: bottom-up per-file analysis.

Exports:
    BatchPrioritizer: tier classification and leaf-first ordering
    InsightRegistry: write-once in-process map of completed insights
    FileAnalyzer: single-pass / Deep Research analysis with post-processing
    BottomUpRunner: tiered, bounded-concurrency driver with checkpointing
"""

from .analyzer import FileAnalyzer, build_facts, quality_issues
from .prioritizer import BatchPrioritizer, child_context_for, group_by_tier, order
from .registry import InsightRegistry, to_child_context
from .runner import BottomUpRunner

__all__ = [
    "BatchPrioritizer",
    "BottomUpRunner",
    "FileAnalyzer",
    "InsightRegistry",
    "build_facts",
    "child_context_for",
    "group_by_tier",
    "order",
    "quality_issues",
    "to_child_context",
]
