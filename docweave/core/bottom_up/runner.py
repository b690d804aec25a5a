"""Phase 3: tiered bottom-up analysis of every pending file.

Tiers run strictly in order (Leaf, Standard, Important, Core). Inside a
tier, files are fanned out in batches under a semaphore and collected
as they complete. Each finished file is checkpointed first and only
then published to the in-memory registry, so the store stays the
authority on what is done.

A file failure is recorded against that file (status 'failed', error
message, retry counter) and never stops its siblings. Store failures
propagate.
"""

import asyncio
import logging
from typing import List, Optional, Sequence

from ..checkpoint import CheckpointStore
from ..config import ModeConfig, PipelineConfig
from ..discovery import FileScanner
from ..errors import FileAnalysisError, LLMError, StoreError
from ..models import AnalysisProgress, PrioritizedFile
from ..parsing import detect_language
from .analyzer import FileAnalyzer
from .prioritizer import BatchPrioritizer, group_by_tier
from .registry import InsightRegistry

logger = logging.getLogger(__name__)

BOTTOM_UP_STARTED_KEY = "bottom_up_started"


class BottomUpRunner:
    """Drives the scheduler, the analyzer and the checkpoint writes."""

    def __init__(
        self,
        store: CheckpointStore,
        analyzer: FileAnalyzer,
        scanner: FileScanner,
        config: PipelineConfig,
        mode_config: ModeConfig,
        registry: Optional[InsightRegistry] = None,
    ):
        self._store = store
        self._analyzer = analyzer
        self._scanner = scanner
        self._config = config
        self._mode_config = mode_config
        self.registry = registry if registry is not None else InsightRegistry()

    async def load_registry(self, session_id: str) -> int:
        """Rebuild the registry from persisted analyses."""
        insights = await asyncio.to_thread(self._store.load_file_insights, session_id)
        added = self.registry.register_batch(insights)
        if added:
            logger.info(f"Bottom-Up: restored {added} completed insights from checkpoint")
        return added

    async def run(
        self,
        session_id: str,
        profile=None,
        files: Optional[Sequence[str]] = None,
    ) -> AnalysisProgress:
        """Analyze pending files (or exactly ``files``) and return progress."""
        await self.load_registry(session_id)
        await asyncio.to_thread(
            self._store.update_checkpoint_data, session_id, {BOTTOM_UP_STARTED_KEY: True}
        )

        if files is None:
            files = await asyncio.to_thread(
                self._store.iter_pending_files, session_id, self._config.page_size
            )
        pending = [f for f in files if f not in self.registry]

        ordered = BatchPrioritizer(profile).prioritize(pending)
        profile_context = profile.prompt_context() if profile is not None else ""
        logger.info(f"Bottom-Up: {len(ordered)} files pending, {len(self.registry)} already done")

        for tier, group in group_by_tier(ordered):
            logger.info(f"Bottom-Up: tier {tier.name} ({len(group)} files)")
            await self._run_tier(session_id, group, profile_context)

        progress = await asyncio.to_thread(self._store.analysis_progress, session_id)
        logger.info(
            f"Bottom-Up: {progress.analyzed}/{progress.total} analyzed, "
            f"{progress.failed} failed"
        )
        return progress

    async def retry_failed(self, session_id: str, profile=None) -> AnalysisProgress:
        """Re-run only failed files whose retry budget is not exhausted."""
        retryable = await asyncio.to_thread(self._store.retryable_failed_files, session_id)
        if retryable:
            logger.info(f"Bottom-Up: retrying {len(retryable)} failed files")
        return await self.run(session_id, profile, files=retryable)

    async def _run_tier(self, session_id: str, group: List[PrioritizedFile],
                        profile_context: str) -> None:
        semaphore = asyncio.Semaphore(self._mode_config.bottom_up_concurrency)
        batch_size = max(self._mode_config.bottom_up_batch_size, 1)

        for start in range(0, len(group), batch_size):
            batch = group[start:start + batch_size]
            tasks = [
                asyncio.ensure_future(self._process(semaphore, session_id, pf, profile_context))
                for pf in batch
            ]
            succeeded = 0
            try:
                for next_done in asyncio.as_completed(tasks):
                    if await next_done:
                        succeeded += 1
            finally:
                # On cancellation stop scheduling; running writes finish in their threads
                for task in tasks:
                    if not task.done():
                        task.cancel()
            logger.info(
                f"Bottom-Up: batch {start // batch_size + 1} done "
                f"({succeeded}/{len(batch)} succeeded)"
            )

    async def _process(self, semaphore: asyncio.Semaphore, session_id: str,
                       pf: PrioritizedFile, profile_context: str) -> bool:
        async with semaphore:
            try:
                await asyncio.to_thread(self._store.mark_file_analyzing, session_id, pf.path)
                source = await asyncio.to_thread(self._scanner.read_source, pf.path)
                children = self.registry.get_child_contexts(
                    pf.path, pf.tier, self._config.child_context_token_budget
                )
                insight, facts = await self._analyzer.analyze(
                    pf, source, profile_context, children, detect_language(pf.path)
                )
            except StoreError:
                raise
            except Exception as e:
                expected = isinstance(e, (FileAnalysisError, LLMError))
                logger.error(f"Bottom-Up: {pf.path} failed: {e}", exc_info=not expected)
                await asyncio.to_thread(self._store.mark_file_failed, session_id, pf.path, str(e))
                return False

            await asyncio.to_thread(self._store.record_file_analysis, session_id, insight, facts)
            self.registry.register(insight)
            logger.debug(f"Bottom-Up: {pf.path} analyzed ({pf.tier.name})")
            return True
