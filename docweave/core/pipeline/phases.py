"""Phase state machine for a documentation session.

Six ordered phases. A session's last completed phase only moves forward;
on resume every phase at or below it is skipped and its persisted output
is trusted. Refinement is the one phase that may run again after it is
first completed, for a bounded number of extra rounds.
"""

import logging
from enum import IntEnum
from typing import Any, Dict, Optional

from ..checkpoint import CheckpointStore
from ..models import CheckpointState

logger = logging.getLogger(__name__)


class PipelinePhase(IntEnum):
    CHARACTERIZATION = 1
    FILE_DISCOVERY = 2
    BOTTOM_UP = 3
    TOP_DOWN = 4
    CONSOLIDATION = 5
    REFINEMENT = 6

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @classmethod
    def from_number(cls, number: int) -> Optional["PipelinePhase"]:
        try:
            return cls(number)
        except ValueError:
            return None

    def next(self) -> Optional["PipelinePhase"]:
        return PipelinePhase.from_number(self.value + 1)


_DISPLAY_NAMES = {
    PipelinePhase.CHARACTERIZATION: "Characterization",
    PipelinePhase.FILE_DISCOVERY: "File Discovery",
    PipelinePhase.BOTTOM_UP: "Bottom-Up Analysis",
    PipelinePhase.TOP_DOWN: "Top-Down Analysis",
    PipelinePhase.CONSOLIDATION: "Consolidation",
    PipelinePhase.REFINEMENT: "Refinement",
}


class PhaseStateMachine:
    """Tracks the highest completed phase of one session."""

    def __init__(self, store: CheckpointStore, session_id: str):
        self._store = store
        self.session_id = session_id
        self._state: Optional[CheckpointState] = None

    def load(self) -> CheckpointState:
        """Reload the checkpoint snapshot from the store."""
        self._state = self._store.load_checkpoint_state(self.session_id)
        return self._state

    @property
    def state(self) -> CheckpointState:
        if self._state is None:
            return self.load()
        return self._state

    @property
    def last_completed(self) -> int:
        return self.state.last_completed_phase

    @property
    def is_finished(self) -> bool:
        return self.last_completed >= PipelinePhase.REFINEMENT

    def should_run(self, phase: PipelinePhase) -> bool:
        """True when the phase has not been completed for this session."""
        return phase > self.last_completed

    def next_phase(self) -> Optional[PipelinePhase]:
        return PipelinePhase.from_number(self.last_completed + 1)

    def complete(self, phase: PipelinePhase, checkpoint_data: Optional[Dict[str, Any]] = None) -> int:
        """Persist completion. Never lowers the stored marker."""
        stored = self._store.mark_phase_complete(self.session_id, int(phase), checkpoint_data)
        state = self.state
        state.last_completed_phase = max(state.last_completed_phase, stored)
        if checkpoint_data:
            state.checkpoint_data.update(checkpoint_data)
        logger.info(
            f"Phase {int(phase)} ({phase.display_name}) complete "
            f"[session={self.session_id}, marker={state.last_completed_phase}]"
        )
        return state.last_completed_phase

    def can_rerun_refinement(self, rounds_done: int, max_rounds: int) -> bool:
        """Extra refinement rounds are allowed only after phase 6 and within budget."""
        return self.is_finished and rounds_done < max_rounds
