"""Phase 4: one orchestrated turn of top-down agents.

Each agent's output is a module_summaries row at ``top_down:<agent>``.
The planned agent list is written to the checkpoint blob before the
turn starts, which is what lets a resumed run tell "all planned agents
finished" apart from "some finished".
"""

import asyncio
import logging
from typing import Dict, Sequence

from ..checkpoint import CheckpointStore
from ..config import ModeConfig
from ..constants import TOP_DOWN_PREFIX
from ..llm import LLMClient
from ..models import AgentInsight, FileInsight
from ..pipeline.orchestrator import TurnOrchestrator
from .agents import AGENT_CLASSES, select_agents

logger = logging.getLogger(__name__)

PLANNED_AGENTS_KEY = "top_down_agents"


class TopDownRecorder:
    """Agent insights live in module_summaries under a reserved prefix."""

    def __init__(self, store: CheckpointStore, session_id: str, file_count: int = 0):
        self._store = store
        self._session_id = session_id
        self._file_count = file_count

    def load_completed(self) -> Dict[str, AgentInsight]:
        rows = self._store.load_module_summaries(self._session_id, TOP_DOWN_PREFIX)
        return {
            path[len(TOP_DOWN_PREFIX):]: AgentInsight(
                agent_name=path[len(TOP_DOWN_PREFIX):],
                turn=1,
                payload=row["payload"],
                confidence=row["confidence"] or 0.0,
            )
            for path, row in rows.items()
        }

    def record(self, insight: AgentInsight) -> None:
        self._store.record_module_summary(
            self._session_id,
            f"{TOP_DOWN_PREFIX}{insight.agent_name}",
            insight.agent_name,
            insight.payload,
            confidence=insight.confidence,
            role=insight.agent_name,
            purpose=str(insight.payload.get("summary") or "")[:2000] or None,
            file_count=self._file_count,
        )


class TopDownRunner:
    def __init__(self, store: CheckpointStore, llm: LLMClient, mode_config: ModeConfig):
        self._store = store
        self._llm = llm
        self._mode_config = mode_config

    async def run(self, session_id: str, profile,
                  insights: Sequence[FileInsight]) -> Dict[str, AgentInsight]:
        selected = select_agents(profile, self._mode_config.top_down_max_agents)
        logger.info(f"Top-Down: agents {selected} over {len(insights)} file insights")
        await asyncio.to_thread(
            self._store.update_checkpoint_data, session_id, {PLANNED_AGENTS_KEY: selected}
        )

        snapshot = list(insights)
        agents = [AGENT_CLASSES[name](self._llm, snapshot, profile) for name in selected]
        recorder = TopDownRecorder(self._store, session_id, file_count=len(snapshot))
        return await TurnOrchestrator(recorder).run_turn(1, agents, prior={})
