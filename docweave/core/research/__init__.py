"""Deep Research: bounded multi-iteration analysis for high-importance files."""

from .models import PhaseKind, ResearchContext, ResearchIteration, ResearchPhase
from .researcher import DeepResearcher

__all__ = [
    "DeepResearcher",
    "PhaseKind",
    "ResearchContext",
    "ResearchIteration",
    "ResearchPhase",
]
