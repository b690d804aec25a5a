"""Phase 5: domain consolidation.

Exports:
    ConsolidationRunner: grouping + bounded-concurrency domain synthesis
    DomainGrouper: model-assisted grouping with path fallback
    GapDetector: documentation gap rules
"""

from .gaps import GapDetector, detect_gaps
from .grouping import DomainGrouper, group_by_path, path_domain
from .runner import ConsolidationRunner, simple_merge

__all__ = [
    "ConsolidationRunner",
    "DomainGrouper",
    "GapDetector",
    "detect_gaps",
    "group_by_path",
    "path_domain",
    "simple_merge",
]
