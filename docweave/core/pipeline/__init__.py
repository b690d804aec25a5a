"""Phase state machine and turn-based agent orchestration.

Exports:
    PipelinePhase: the six ordered phases
    PhaseStateMachine: monotonic per-session phase tracking
    Agent, TurnContext, TurnOrchestrator: concurrent turn execution

The end-to-end runner lives in ``docweave.core.pipeline.runner``.
"""

from .orchestrator import Agent, InsightRecorder, TurnContext, TurnOrchestrator
from .phases import PhaseStateMachine, PipelinePhase

__all__ = [
    "Agent",
    "InsightRecorder",
    "PhaseStateMachine",
    "PipelinePhase",
    "TurnContext",
    "TurnOrchestrator",
]
