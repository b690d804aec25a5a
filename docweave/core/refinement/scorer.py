"""Documentation quality scoring over consolidated domains."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from ..models import DomainInsight

CONTENT_WEIGHT = 0.5
DIAGRAM_WEIGHT = 0.3
RELATIONSHIP_WEIGHT = 0.2


@dataclass
class QualityScore:
    content_coverage: float = 0.0
    diagram_coverage: float = 0.0
    relationships: float = 0.0
    gaps: List[str] = field(default_factory=list)

    @property
    def overall(self) -> float:
        return (
            self.content_coverage * CONTENT_WEIGHT
            + self.diagram_coverage * DIAGRAM_WEIGHT
            + self.relationships * RELATIONSHIP_WEIGHT
        )

    def meets(self, target: float) -> bool:
        return self.overall >= target

    def to_dict(self) -> Dict[str, Any]:
        return {
            "overall": round(self.overall, 4),
            "content_coverage": round(self.content_coverage, 4),
            "diagram_coverage": round(self.diagram_coverage, 4),
            "relationships": round(self.relationships, 4),
            "gaps": list(self.gaps),
        }


class QualityScorer:
    def score(self, domains: Sequence[DomainInsight]) -> QualityScore:
        if not domains:
            return QualityScore(gaps=["No domains documented"])
        total = len(domains)
        gaps = [f"{d.name}: {gap}" for d in domains for gap in d.gaps]
        return QualityScore(
            content_coverage=sum(1 for d in domains if d.has_content()) / total,
            diagram_coverage=sum(1 for d in domains if d.diagram) / total,
            relationships=sum(1 for d in domains if d.related_files) / total,
            gaps=gaps,
        )
