"""Turn-based multi-agent orchestration.

A turn runs every not-yet-completed agent concurrently with the same
read-only context (all earlier turns' outputs). Each agent's insight is
persisted as soon as that agent finishes, independent of its siblings.
A failing agent is replaced by its heuristic fallback; one agent's
failure never aborts the turn. Turn N starts only after every turn N-1
agent has finished and been checkpointed.

Agents already completed for the session are skipped and their stored
insight is reused verbatim as context for later turns.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from ..errors import StoreError
from ..models import AgentInsight

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TurnContext:
    """Read-only inputs shared by every agent of a turn."""
    turn: int
    prior: Mapping[str, AgentInsight]
    shared: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))

    def payload(self, agent_name: str) -> Dict[str, Any]:
        insight = self.prior.get(agent_name)
        return dict(insight.payload) if insight else {}


class Agent(ABC):
    """One independent analysis agent."""

    name: str = ""

    @abstractmethod
    async def analyze(self, context: TurnContext) -> AgentInsight:
        """Produce this agent's insight. May raise on any failure."""

    def fallback(self, context: TurnContext) -> Optional[AgentInsight]:
        """Heuristic output used when analyze() fails. None if there is none."""
        return None


class InsightRecorder(Protocol):
    """Persistence seam: where a phase stores its agents' insights."""

    def load_completed(self) -> Dict[str, AgentInsight]:
        ...

    def record(self, insight: AgentInsight) -> None:
        ...


class TurnOrchestrator:
    """Runs agents turn by turn with per-agent checkpointing."""

    def __init__(self, recorder: InsightRecorder):
        self._recorder = recorder
        self._completed: Optional[Dict[str, AgentInsight]] = None

    async def _load_completed(self) -> Dict[str, AgentInsight]:
        if self._completed is None:
            self._completed = await asyncio.to_thread(self._recorder.load_completed)
        return self._completed

    async def run_turn(
        self,
        turn: int,
        agents: Sequence[Agent],
        prior: Mapping[str, AgentInsight],
        shared: Optional[Mapping[str, Any]] = None,
        force: bool = False,
    ) -> Dict[str, AgentInsight]:
        """Run one turn. Returns agent name -> insight for this turn's agents.

        force=True re-runs agents even if completed (refinement rounds);
        their rows are overwritten.
        """
        completed = await self._load_completed()
        context = TurnContext(
            turn=turn,
            prior=MappingProxyType(dict(prior)),
            shared=MappingProxyType(dict(shared or {})),
        )

        results: Dict[str, AgentInsight] = {}
        to_run: List[Agent] = []
        for agent in agents:
            if not force and agent.name in completed:
                logger.info(f"Turn {turn}: '{agent.name}' already completed, reusing checkpoint")
                results[agent.name] = completed[agent.name]
            else:
                to_run.append(agent)

        if to_run:
            logger.info(f"Turn {turn}: running {len(to_run)} agents: {[a.name for a in to_run]}")
            outcomes = await asyncio.gather(
                *(self._run_agent(agent, context) for agent in to_run),
                return_exceptions=True,
            )
            store_errors = []
            for agent, outcome in zip(to_run, outcomes):
                if isinstance(outcome, StoreError):
                    store_errors.append(outcome)
                elif isinstance(outcome, BaseException):
                    raise outcome
                elif outcome is not None:
                    results[agent.name] = outcome
                    completed[agent.name] = outcome
            if store_errors:
                raise store_errors[0]

        # Preserve the declared agent order
        return {a.name: results[a.name] for a in agents if a.name in results}

    async def _run_agent(self, agent: Agent, context: TurnContext) -> Optional[AgentInsight]:
        try:
            insight = await agent.analyze(context)
        except Exception as e:
            logger.warning(f"Turn {context.turn}: agent '{agent.name}' failed: {e}")
            insight = agent.fallback(context)
            if insight is None:
                logger.error(f"Turn {context.turn}: agent '{agent.name}' has no fallback; skipped")
                return None
            insight.is_fallback = True
            logger.info(f"Turn {context.turn}: using heuristic fallback for '{agent.name}'")

        insight.turn = context.turn
        await asyncio.to_thread(self._recorder.record, insight)
        return insight

    async def run_turns(
        self,
        turns: Sequence[Sequence[Agent]],
        shared: Optional[Mapping[str, Any]] = None,
        first_turn: int = 1,
    ) -> Dict[str, AgentInsight]:
        """Run turns in order; each sees every earlier turn's outputs."""
        accumulated: Dict[str, AgentInsight] = {}
        for offset, agents in enumerate(turns):
            turn_results = await self.run_turn(first_turn + offset, agents, accumulated, shared)
            accumulated.update(turn_results)
        return accumulated
