"""End-to-end documentation pipeline.

DocumentationPipeline drives the six phases for one session. Every phase
checks the state machine first and is skipped when its marker is already
set, so ``run`` is also the resume path. The whole run is bounded by
``PipelineConfig.timeout_seconds``; on timeout no new work is scheduled,
checkpoint writes already handed to worker threads still finish, and the
session stays resumable.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from ..bottom_up import BottomUpRunner, FileAnalyzer
from ..characterization import CharacterizationRunner, ProjectProfile, ProjectSnapshot
from ..checkpoint import CheckpointStore, SessionManager
from ..config import ModeConfig, PipelineConfig, ProjectScale
from ..consolidation import ConsolidationRunner
from ..db import DatabaseManager
from ..discovery import FileScanner, run_discovery
from ..errors import PipelineTimeoutError, SessionError
from ..llm import LLMClient
from ..models import AgentInsight, CheckpointState, DomainInsight
from ..parsing import Parser, RegexParser
from ..refinement import QualityScore, RefinementRunner
from ..top_down import TopDownRecorder, TopDownRunner
from .phases import PhaseStateMachine, PipelinePhase

logger = logging.getLogger(__name__)

PROFILE_KEY = "profile"
EXTRA_REFINEMENT_KEY = "extra_refinement_rounds"


class DocumentationPipeline:
    """Resumable six-phase documentation run over one project."""

    def __init__(
        self,
        db: DatabaseManager,
        config: Optional[PipelineConfig] = None,
        llm: Optional[LLMClient] = None,
        parser: Optional[Parser] = None,
    ):
        self.config = config or PipelineConfig()
        self.store = CheckpointStore(db, max_retries=self.config.max_retries)
        self.sessions = SessionManager(db)
        self.llm = llm or LLMClient()
        self.parser = parser if parser is not None else RegexParser()

    # ── Session entry points ────────────────────────────────────────────

    def start(self, project_path: str) -> str:
        """Create a new session for the project. Returns its id."""
        return self.sessions.create_session(project_path, self.config.mode.value)

    async def run(self, session_id: str) -> CheckpointState:
        """Run (or resume) every remaining phase within the wall-clock budget.

        Raises:
            PipelineTimeoutError: the budget elapsed; the session stays running.
            SessionError: the session does not exist.
            StoreError: a checkpoint write failed.
        """
        record = await asyncio.to_thread(self.sessions.get_session, session_id)
        await asyncio.to_thread(self.sessions.mark_running, session_id)
        try:
            await asyncio.wait_for(
                self._run(session_id, record.project_path), self.config.timeout_seconds
            )
        except asyncio.TimeoutError as e:
            logger.warning(
                f"Session {session_id} timed out after {self.config.timeout_seconds}s; "
                f"resume to continue"
            )
            raise PipelineTimeoutError(
                f"Run exceeded {self.config.timeout_seconds}s for session {session_id}"
            ) from e

        await asyncio.to_thread(self.sessions.complete_session, session_id)
        return await asyncio.to_thread(self.store.load_checkpoint_state, session_id)

    async def run_with_recovery(self, session_id: str) -> CheckpointState:
        """Run, marking the session failed when the run raises (timeouts excepted)."""
        try:
            return await self.run(session_id)
        except PipelineTimeoutError:
            raise
        except Exception as e:
            await asyncio.to_thread(self.sessions.fail_session, session_id, str(e))
            raise

    async def refine(self, session_id: str, rounds: int = 1) -> Optional[QualityScore]:
        """Extra refinement rounds on a session whose six phases are complete.

        Extra rounds are bounded per session by the mode's
        ``refinement_max_turns``; a request past the remaining budget is
        clamped, and a request once the budget is spent raises SessionError.
        """
        machine = PhaseStateMachine(self.store, session_id)
        state = await asyncio.to_thread(machine.load)
        if not machine.is_finished:
            raise SessionError(
                f"Session {session_id} has not completed phase "
                f"{int(PipelinePhase.REFINEMENT)}; resume it before refining"
            )
        mode_config = self.config.for_scale(ProjectScale.from_file_count(state.total_files))
        budget = mode_config.refinement_max_turns
        done = int(state.checkpoint_data.get(EXTRA_REFINEMENT_KEY, 0))
        if not machine.can_rerun_refinement(done, budget):
            raise SessionError(
                f"Session {session_id} already ran its {budget} extra refinement rounds"
            )
        allowed = min(max(rounds, 0), budget - done)
        if allowed < rounds:
            logger.warning(
                f"Refinement: {rounds} rounds requested, {allowed} left in budget "
                f"({done}/{budget} used)"
            )

        domains = await asyncio.to_thread(self.store.load_domain_summaries, session_id)
        score = await RefinementRunner(self.store, mode_config).run(
            session_id, domains, rounds=allowed
        )
        await asyncio.to_thread(
            self.store.update_checkpoint_data, session_id, {EXTRA_REFINEMENT_KEY: done + allowed}
        )
        return score

    # ── Phases ──────────────────────────────────────────────────────────

    def _log_resume_report(self, session_id: str, state: CheckpointState) -> None:
        if state.is_fresh:
            logger.info(f"Session {session_id}: starting fresh")
            return
        nxt = PipelinePhase.from_number(state.resume_phase) if state.resume_phase else None
        remaining = max(state.total_files - state.analyzed_files - state.failed_files, 0)
        logger.info(
            f"Session {session_id}: resuming at "
            f"{nxt.display_name if nxt else 'refinement rounds'} "
            f"(last completed phase {state.last_completed_phase}); "
            f"files {state.analyzed_files}/{state.total_files} analyzed, "
            f"{state.failed_files} failed, {remaining} remaining; "
            f"{len(state.completed_agents)} agents done"
        )

    async def _run(self, session_id: str, project_path: str) -> None:
        machine = PhaseStateMachine(self.store, session_id)
        state = await asyncio.to_thread(machine.load)
        self._log_resume_report(session_id, state)

        scanner = FileScanner(project_path, self.config.exclude_dirs, self.config.max_file_bytes)
        snapshot = await asyncio.to_thread(ProjectSnapshot.from_scanner, scanner)
        scale = ProjectScale.from_file_count(snapshot.file_count)
        mode_config = self.config.for_scale(scale)
        logger.info(f"Session {session_id}: {snapshot.file_count} files, scale={scale.value}")

        # Phase 1
        profile = self._stored_profile(state)
        if machine.should_run(PipelinePhase.CHARACTERIZATION) or profile is None:
            runner = CharacterizationRunner(self.store, self.llm, self.config, mode_config)
            profile = await runner.run(session_id, snapshot)
            await asyncio.to_thread(
                machine.complete, PipelinePhase.CHARACTERIZATION, {PROFILE_KEY: profile.to_dict()}
            )

        # Phase 2
        if machine.should_run(PipelinePhase.FILE_DISCOVERY):
            await asyncio.to_thread(run_discovery, self.store, session_id, scanner)
            await asyncio.to_thread(machine.load)

        # Phase 3
        if machine.should_run(PipelinePhase.BOTTOM_UP):
            bottom_up = self._bottom_up_runner(scanner, mode_config)
            await bottom_up.run(session_id, profile)
            progress = await bottom_up.retry_failed(session_id, profile)
            await asyncio.to_thread(
                machine.complete,
                PipelinePhase.BOTTOM_UP,
                {"analyzed": progress.analyzed, "failed": progress.failed},
            )
        elif await asyncio.to_thread(self.store.retryable_failed_files, session_id):
            # Failures with retry budget left are re-attempted on every resume
            bottom_up = self._bottom_up_runner(scanner, mode_config)
            progress = await bottom_up.retry_failed(session_id, profile)
            await asyncio.to_thread(
                self.store.update_checkpoint_data,
                session_id,
                {"analyzed": progress.analyzed, "failed": progress.failed},
            )

        # Phase 4
        project_insights: Dict[str, AgentInsight]
        if machine.should_run(PipelinePhase.TOP_DOWN):
            insights = await asyncio.to_thread(self.store.load_file_insights, session_id)
            project_insights = await TopDownRunner(self.store, self.llm, mode_config).run(
                session_id, profile, insights
            )
            await asyncio.to_thread(
                machine.complete, PipelinePhase.TOP_DOWN,
                {"top_down_done": sorted(project_insights)},
            )
        else:
            project_insights = await asyncio.to_thread(
                TopDownRecorder(self.store, session_id).load_completed
            )

        # Phase 5
        domains: List[DomainInsight]
        if machine.should_run(PipelinePhase.CONSOLIDATION):
            insights = await asyncio.to_thread(self.store.load_file_insights, session_id)
            consolidation = ConsolidationRunner(
                self.store,
                self.llm,
                concurrency=self.config.domain_concurrency,
                llm_grouping_max_files=self.config.llm_grouping_max_files,
            )
            domains = await consolidation.run(
                session_id, insights, project_insights, profile.prompt_context()
            )
            await asyncio.to_thread(
                machine.complete, PipelinePhase.CONSOLIDATION, {"domains": len(domains)}
            )
        else:
            domains = await asyncio.to_thread(self.store.load_domain_summaries, session_id)

        # Phase 6
        if machine.should_run(PipelinePhase.REFINEMENT):
            score = await RefinementRunner(self.store, mode_config).run(session_id, domains)
            await asyncio.to_thread(
                machine.complete,
                PipelinePhase.REFINEMENT,
                {"quality_score": score.overall if score is not None else None},
            )

    def _bottom_up_runner(self, scanner: FileScanner, mode_config: ModeConfig) -> BottomUpRunner:
        analyzer = FileAnalyzer(
            self.llm, self.parser, max_file_chars=mode_config.bottom_up_max_file_chars
        )
        return BottomUpRunner(self.store, analyzer, scanner, self.config, mode_config)

    @staticmethod
    def _stored_profile(state: CheckpointState) -> Optional[ProjectProfile]:
        data = state.checkpoint_data.get(PROFILE_KEY)
        return ProjectProfile.from_dict(data) if data else None
