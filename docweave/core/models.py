"""Data contracts shared across pipeline phases.

Kept as dataclasses (not ORM models) for transport between layers:
the checkpoint store serializes them, the phases produce and consume them.
"""

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Set

from .constants import ENTRY_POINT_NAMES


class Importance(Enum):
    """Architectural importance label assigned by characterization / analysis."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Importance":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.MEDIUM


class ProcessingTier(IntEnum):
    """Scheduling tier. Lower tiers are analyzed first."""
    LEAF = 0
    STANDARD = 1
    IMPORTANT = 2
    CORE = 3

    @property
    def uses_deep_research(self) -> bool:
        return self >= ProcessingTier.IMPORTANT

    @property
    def uses_child_context(self) -> bool:
        return self >= ProcessingTier.IMPORTANT

    @property
    def research_iterations(self) -> int:
        if self == ProcessingTier.CORE:
            return 4
        if self == ProcessingTier.IMPORTANT:
            return 3
        return 1

    @property
    def max_content_tokens(self) -> int:
        return _TIER_MAX_TOKENS[self]

    @property
    def tokens_per_iteration(self) -> int:
        """Findings budget for one Deep Research iteration."""
        return _TIER_ITERATION_TOKENS[self]

    @property
    def min_words(self) -> int:
        return _TIER_MIN_WORDS[self]

    @property
    def importance(self) -> Importance:
        return _TIER_IMPORTANCE[self]

    @classmethod
    def from_importance(cls, importance: Importance) -> "ProcessingTier":
        return {
            Importance.CRITICAL: cls.CORE,
            Importance.HIGH: cls.IMPORTANT,
            Importance.MEDIUM: cls.STANDARD,
            Importance.LOW: cls.LEAF,
        }[importance]

    @classmethod
    def parse(cls, value: str) -> "ProcessingTier":
        try:
            return cls[str(value).upper()]
        except KeyError:
            return cls.STANDARD


_TIER_MAX_TOKENS = {
    ProcessingTier.LEAF: 500,
    ProcessingTier.STANDARD: 1200,
    ProcessingTier.IMPORTANT: 3000,
    ProcessingTier.CORE: 5000,
}

_TIER_ITERATION_TOKENS = {
    ProcessingTier.LEAF: 500,
    ProcessingTier.STANDARD: 1200,
    ProcessingTier.IMPORTANT: 3000,
    ProcessingTier.CORE: 3500,
}

_TIER_MIN_WORDS = {
    ProcessingTier.LEAF: 20,
    ProcessingTier.STANDARD: 50,
    ProcessingTier.IMPORTANT: 100,
    ProcessingTier.CORE: 150,
}

_TIER_IMPORTANCE = {
    ProcessingTier.LEAF: Importance.LOW,
    ProcessingTier.STANDARD: Importance.MEDIUM,
    ProcessingTier.IMPORTANT: Importance.HIGH,
    ProcessingTier.CORE: Importance.CRITICAL,
}


@dataclass(frozen=True)
class PrioritizedFile:
    """Scheduling metadata for one file. Pure function of path + profile."""
    path: str
    tier: ProcessingTier
    is_entry_point: bool
    depth: int

    @property
    def parent_dir(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""

    @staticmethod
    def is_entry_point_name(path: str) -> bool:
        return path.rsplit("/", 1)[-1].lower() in ENTRY_POINT_NAMES


@dataclass
class RelatedFile:
    """A file the analyzed code interacts with."""
    path: str
    relationship: str = "uses"   # imports|exports|calls|implements|configures|extends|uses

    def to_dict(self) -> Dict[str, str]:
        return {"path": self.path, "relationship": self.relationship}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["RelatedFile"]:
        path = data.get("path") if isinstance(data, dict) else None
        if not path:
            return None
        return cls(path=str(path), relationship=str(data.get("relationship") or "uses"))


@dataclass
class ChildContext:
    """Condensed view of a lower-tier file handed to a higher-tier analysis."""
    path: str
    purpose: str
    summary: str
    tier: ProcessingTier

    @property
    def estimated_tokens(self) -> int:
        return (len(self.path) + len(self.purpose) + len(self.summary)) // 4


@dataclass
class FileInsight:
    """Completed analysis of one file (the FileAnalysisCheckpoint payload)."""
    file_path: str
    purpose: str
    tier: ProcessingTier = ProcessingTier.STANDARD
    importance: Importance = Importance.MEDIUM
    language: Optional[str] = None
    line_count: int = 0
    complexity: str = "low"
    content: str = ""
    diagram: Optional[str] = None
    related_files: List[RelatedFile] = field(default_factory=list)
    token_count: int = 0
    # Deep Research history, Important/Core only
    research_iterations: Optional[List[Dict[str, Any]]] = None
    research_aspects: Optional[List[str]] = None

    def related_paths(self) -> Set[str]:
        return {rf.path for rf in self.related_files}


def complexity_label(line_count: int) -> str:
    if line_count < 100:
        return "low"
    if line_count < 300:
        return "medium"
    if line_count < 1000:
        return "high"
    return "critical"


@dataclass
class DerivedFact:
    """A node written alongside a file analysis (entity, relation, parser fact)."""
    node_id: str
    node_type: str
    name: str
    path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    tier: str = "fact"
    confidence: float = 1.0


@dataclass
class AgentInsight:
    """Output of one named agent for one turn.

    payload is opaque to the checkpoint store; consumers parse it.
    """
    agent_name: str
    turn: int
    payload: Dict[str, Any]
    confidence: float = 1.0
    is_fallback: bool = False

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, float(self.confidence)))


@dataclass
class AnalysisProgress:
    total: int = 0
    analyzed: int = 0
    failed: int = 0

    @property
    def remaining(self) -> int:
        return max(self.total - self.analyzed - self.failed, 0)


@dataclass
class CheckpointState:
    """Phase-and-progress snapshot used to decide where a run resumes."""
    session_id: str
    last_completed_phase: int = 0
    total_files: int = 0
    analyzed_files: int = 0
    failed_files: int = 0
    completed_agents: Set[str] = field(default_factory=set)
    characterization_turns: int = 0
    refinement_turn: int = 0
    checkpoint_data: Dict[str, Any] = field(default_factory=dict)

    @property
    def resume_phase(self) -> Optional[int]:
        """Next phase number to run, or None when all six are done."""
        nxt = self.last_completed_phase + 1
        return nxt if nxt <= 6 else None

    @property
    def is_fresh(self) -> bool:
        return self.last_completed_phase == 0 and not self.completed_agents


@dataclass
class DomainInsight:
    """Consolidated documentation for a group of related files."""
    name: str
    description: str = ""
    importance: Importance = Importance.MEDIUM
    files: List[str] = field(default_factory=list)
    content: str = ""
    diagram: Optional[str] = None
    related_files: List[RelatedFile] = field(default_factory=list)
    gaps: List[str] = field(default_factory=list)
    token_count: int = 0

    def has_content(self) -> bool:
        return len(self.content) > 100
