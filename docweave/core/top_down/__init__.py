"""Phase 4: top-down, project-wide analysis agents."""

from .agents import (
    AGENT_CLASSES,
    ArchitectureAgent,
    DomainAgent,
    FlowAgent,
    RiskAgent,
    TopDownAgent,
    select_agents,
)
from .runner import TopDownRecorder, TopDownRunner

__all__ = [
    "AGENT_CLASSES",
    "ArchitectureAgent",
    "DomainAgent",
    "FlowAgent",
    "RiskAgent",
    "TopDownAgent",
    "TopDownRecorder",
    "TopDownRunner",
    "select_agents",
]
