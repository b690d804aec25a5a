"""Phase 6: quality scoring and refinement rounds."""

from .runner import RefinementRunner, validate_cross_references
from .scorer import QualityScore, QualityScorer

__all__ = ["QualityScore", "QualityScorer", "RefinementRunner", "validate_cross_references"]
