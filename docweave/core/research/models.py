"""Deep Research types.

ResearchPhase walks Planning -> Investigating(2..k-1) -> Synthesizing.
ResearchContext accumulates iterations for one file and tracks which
aspects are already covered so later iterations cannot re-report them.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..models import RelatedFile


class PhaseKind(Enum):
    PLANNING = "planning"
    INVESTIGATING = "investigating"
    SYNTHESIZING = "synthesizing"


@dataclass(frozen=True)
class ResearchPhase:
    kind: PhaseKind
    iteration: Optional[int] = None   # set for INVESTIGATING only

    @classmethod
    def from_iteration(cls, current: int, total: int) -> "ResearchPhase":
        if current == 1:
            return cls(PhaseKind.PLANNING)
        if current >= total:
            return cls(PhaseKind.SYNTHESIZING)
        return cls(PhaseKind.INVESTIGATING, current)

    @property
    def is_planning(self) -> bool:
        return self.kind is PhaseKind.PLANNING

    @property
    def is_synthesizing(self) -> bool:
        return self.kind is PhaseKind.SYNTHESIZING

    def section_header(self) -> str:
        if self.kind is PhaseKind.PLANNING:
            return "## Research Plan"
        if self.kind is PhaseKind.INVESTIGATING:
            return f"## Research Update {self.iteration}"
        return "## Final Conclusion"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "iteration": self.iteration}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResearchPhase":
        return cls(PhaseKind(data["kind"]), data.get("iteration"))


@dataclass
class ResearchIteration:
    phase: ResearchPhase
    findings: str
    new_aspects: List[str] = field(default_factory=list)
    # Populated by the Synthesizing iteration only
    purpose: Optional[str] = None
    content: Optional[str] = None
    diagram: Optional[str] = None
    related_files: List[RelatedFile] = field(default_factory=list)

    def has_synthesis(self) -> bool:
        return bool((self.purpose or "").strip()) and bool((self.content or "").strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase.to_dict(),
            "findings": self.findings,
            "new_aspects": list(self.new_aspects),
            "purpose": self.purpose,
            "content": self.content,
            "diagram": self.diagram,
            "related_files": [rf.to_dict() for rf in self.related_files],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResearchIteration":
        return cls(
            phase=ResearchPhase.from_dict(data["phase"]),
            findings=data.get("findings", ""),
            new_aspects=list(data.get("new_aspects") or []),
            purpose=data.get("purpose"),
            content=data.get("content"),
            diagram=data.get("diagram"),
            related_files=[
                rf for rf in (RelatedFile.from_dict(d) for d in data.get("related_files") or [])
                if rf is not None
            ],
        )


@dataclass
class ResearchContext:
    """Per-file accumulator. Lives for one file's research run."""
    topic: str
    iterations: List[ResearchIteration] = field(default_factory=list)
    covered_aspects: List[str] = field(default_factory=list)

    def is_covered(self, aspect: str) -> bool:
        """Case-insensitive substring match in either direction."""
        lower = aspect.lower().strip()
        if not lower:
            return True
        return any(
            lower in covered.lower() or covered.lower() in lower
            for covered in self.covered_aspects
        )

    def add_iteration(self, iteration: ResearchIteration) -> List[str]:
        """Append an iteration, keeping only aspects not covered before.

        The iteration's new_aspects is rewritten to the accepted list,
        which is also returned.
        """
        accepted: List[str] = []
        for aspect in iteration.new_aspects:
            if not self.is_covered(aspect):
                self.covered_aspects.append(aspect)
                accepted.append(aspect)
        iteration.new_aspects = accepted
        self.iterations.append(iteration)
        return accepted

    def summarize_findings(self) -> str:
        return "\n\n---\n\n".join(
            f"{it.phase.section_header()}\n\n{it.findings}" for it in self.iterations
        )

    def covered_aspects_str(self) -> str:
        return ", ".join(self.covered_aspects) if self.covered_aspects else "None yet"

    def get_synthesis(self) -> Optional[ResearchIteration]:
        for iteration in self.iterations:
            if iteration.phase.is_synthesizing:
                return iteration
        return None

    def pending_areas(self) -> List[str]:
        """Planned aspects that no later iteration's findings mention yet."""
        planned = next((it for it in self.iterations if it.phase.is_planning), None)
        if planned is None:
            return []
        later = " ".join(
            it.findings.lower() for it in self.iterations if not it.phase.is_planning
        )
        return [a for a in planned.new_aspects if a.lower() not in later]

    def serialize(self) -> Dict[str, Any]:
        return {
            "iterations": [it.to_dict() for it in self.iterations],
            "aspects": list(self.covered_aspects),
        }
