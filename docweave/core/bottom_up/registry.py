"""In-process registry of completed per-file insights.

Write-once per path, read by many tasks. A lock guards the map so
readers always see either no entry or the complete insight; snapshot()
returns a copy so consumers never iterate a mutating view.

The registry is not persisted. On resume it is rebuilt from the
checkpoint store (``CheckpointStore.load_file_insights``).
"""

import logging
import threading
from typing import Dict, Iterable, List, Optional

from ..constants import CHILD_CONTEXT_TOKEN_BUDGET, CHILD_SUMMARY_MAX_CHARS
from ..models import ChildContext, FileInsight, PrioritizedFile, ProcessingTier
from ..utils.text_utils import first_sentences
from .prioritizer import child_context_for, path_depth

logger = logging.getLogger(__name__)


def _scheduled(path: str, tier: ProcessingTier) -> PrioritizedFile:
    return PrioritizedFile(
        path=path,
        tier=tier,
        is_entry_point=PrioritizedFile.is_entry_point_name(path),
        depth=path_depth(path),
    )


def to_child_context(insight: FileInsight) -> ChildContext:
    return ChildContext(
        path=insight.file_path,
        purpose=insight.purpose,
        summary=first_sentences(insight.content, count=3, max_chars=CHILD_SUMMARY_MAX_CHARS),
        tier=insight.tier,
    )


class InsightRegistry:
    """Thread-safe write-once map: file path -> FileInsight."""

    def __init__(self):
        self._insights: Dict[str, FileInsight] = {}
        self._lock = threading.Lock()

    def register(self, insight: FileInsight) -> bool:
        """Publish an insight. Returns False if the path was already published."""
        with self._lock:
            if insight.file_path in self._insights:
                logger.debug(f"Registry already holds {insight.file_path}; keeping first write")
                return False
            self._insights[insight.file_path] = insight
            return True

    def register_batch(self, insights: Iterable[FileInsight]) -> int:
        return sum(1 for insight in insights if self.register(insight))

    def get(self, file_path: str) -> Optional[FileInsight]:
        with self._lock:
            return self._insights.get(file_path)

    def snapshot(self) -> List[FileInsight]:
        """Consistent copy of all insights, ordered by path."""
        with self._lock:
            return [self._insights[p] for p in sorted(self._insights)]

    def __len__(self) -> int:
        with self._lock:
            return len(self._insights)

    def __contains__(self, file_path: str) -> bool:
        with self._lock:
            return file_path in self._insights

    def get_child_contexts(
        self,
        file_path: str,
        tier: ProcessingTier,
        token_budget: int = CHILD_CONTEXT_TOKEN_BUDGET,
    ) -> List[ChildContext]:
        """Condensed lower-tier insights relevant to file_path.

        Directory candidates come from the scheduler's child_context_for;
        a lower-tier insight that lists the target among its related files
        also qualifies. Highest tier first; stops at the token budget.
        """
        if not tier.uses_child_context:
            return []

        by_path = {insight.file_path: insight for insight in self.snapshot()}
        nearby = {
            pf.path
            for pf in child_context_for(
                _scheduled(file_path, tier),
                (_scheduled(path, insight.tier) for path, insight in by_path.items()),
            )
        }
        candidates = [
            insight for path, insight in by_path.items()
            if path in nearby or (
                path != file_path and insight.tier < tier
                and file_path in insight.related_paths()
            )
        ]
        candidates.sort(key=lambda i: (-int(i.tier), i.file_path))

        contexts: List[ChildContext] = []
        used = 0
        for insight in candidates:
            ctx = to_child_context(insight)
            if used + ctx.estimated_tokens > token_budget:
                break
            contexts.append(ctx)
            used += ctx.estimated_tokens
        return contexts
