"""Phase 1: turn-based characterization of the project.

Turn 1 and Turn 2 always run, Turn 3 only when the mode enables it.
Every agent insight is checkpointed as it completes, so a resumed run
re-executes only the agents that had not finished. Extra refinement
rounds re-run Turn 2 with all prior outputs, merge into the stored
insights and bump the characterization-turn counter.
"""

import asyncio
import logging
from typing import Dict, List, Mapping, Optional

from ..checkpoint import CheckpointStore
from ..config import ModeConfig, PipelineConfig, ProjectScale
from ..llm import LLMClient
from ..models import AgentInsight
from ..pipeline.orchestrator import Agent, TurnOrchestrator
from .agents import TURN1_AGENT_CLASSES, TURN2_AGENT_CLASSES, TURN3_AGENT_CLASSES
from .profile import ProjectProfile
from .snapshot import ProjectSnapshot
from .synthesis import ProfileSynthesis, merge_insights

logger = logging.getLogger(__name__)

REFINEMENT_ROUNDS_KEY = "char_refinement_rounds_done"


class CharacterizationRecorder:
    """Agent insights live in characterization_insights."""

    def __init__(self, store: CheckpointStore, session_id: str):
        self._store = store
        self._session_id = session_id

    def load_completed(self) -> Dict[str, AgentInsight]:
        return {i.agent_name: i for i in self._store.load_agent_insights(self._session_id)}

    def record(self, insight: AgentInsight) -> None:
        self._store.record_agent_insight(self._session_id, insight)


class MergingRecorder(CharacterizationRecorder):
    """Refinement rounds merge into the stored insight instead of replacing it."""

    def __init__(self, store: CheckpointStore, session_id: str,
                 previous: Mapping[str, AgentInsight]):
        super().__init__(store, session_id)
        self._previous = dict(previous)

    def record(self, insight: AgentInsight) -> None:
        prev = self._previous.get(insight.agent_name)
        if prev is not None:
            insight = merge_insights(prev, insight)
        super().record(insight)


class CharacterizationRunner:
    """Runs the characterization turns and synthesizes the profile."""

    def __init__(
        self,
        store: CheckpointStore,
        llm: Optional[LLMClient],
        config: PipelineConfig,
        mode_config: ModeConfig,
    ):
        self._store = store
        self._llm = llm
        self._config = config
        self._mode_config = mode_config

    def _build_turns(self, snapshot: ProjectSnapshot, llm: Optional[LLMClient]) -> List[List[Agent]]:
        turns: List[List[Agent]] = [
            [cls(snapshot, llm) for cls in TURN1_AGENT_CLASSES],
            [cls(snapshot, llm) for cls in TURN2_AGENT_CLASSES],
        ]
        if self._mode_config.char_turn3_enabled:
            turns.append([cls(snapshot, llm) for cls in TURN3_AGENT_CLASSES])
        return turns

    async def run(self, session_id: str, snapshot: ProjectSnapshot) -> ProjectProfile:
        state = await asyncio.to_thread(self._store.load_checkpoint_state, session_id)

        flat = snapshot.is_flat(self._config.flat_project_threshold)
        llm = None if flat else self._llm
        if flat:
            logger.info(
                f"Characterization: flat project ({snapshot.file_count} files), "
                f"using heuristics only"
            )

        turns = self._build_turns(snapshot, llm)
        logger.info(f"Characterization: {len(turns)} turns for {snapshot.name}")

        orchestrator = TurnOrchestrator(CharacterizationRecorder(self._store, session_id))
        insights = await orchestrator.run_turns(turns)

        turn_count = state.characterization_turns
        if turn_count < len(turns):
            turn_count = await asyncio.to_thread(
                self._store.bump_characterization_turns, session_id, len(turns) - turn_count
            )

        if not flat:
            rounds_done = int(state.checkpoint_data.get(REFINEMENT_ROUNDS_KEY, 0))
            for round_no in range(rounds_done + 1, self._mode_config.char_refinement_rounds + 1):
                insights = await self.refine_round(session_id, snapshot, insights)
                turn_count = await asyncio.to_thread(
                    self._store.bump_characterization_turns, session_id, 1
                )
                await asyncio.to_thread(
                    self._store.update_checkpoint_data, session_id, {REFINEMENT_ROUNDS_KEY: round_no}
                )
                logger.info(f"Characterization: refinement round {round_no} merged")

        synthesis = ProfileSynthesis(
            project_name=snapshot.name,
            scale=ProjectScale.from_file_count(snapshot.file_count),
            mode=self._config.mode,
        )
        return synthesis.synthesize(insights, turns=turn_count)

    async def refine_round(
        self,
        session_id: str,
        snapshot: ProjectSnapshot,
        insights: Mapping[str, AgentInsight],
    ) -> Dict[str, AgentInsight]:
        """Re-run Turn 2 with every prior output and merge the results."""
        agents = [cls(snapshot, self._llm) for cls in TURN2_AGENT_CLASSES]
        orchestrator = TurnOrchestrator(MergingRecorder(self._store, session_id, insights))
        await orchestrator.run_turn(2, agents, insights, force=True)

        stored = await asyncio.to_thread(self._store.load_agent_insights, session_id)
        return {i.agent_name: i for i in stored}
