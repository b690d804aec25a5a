"""Phase 6: bounded refinement rounds.

A round validates cross-references between domains (dangling links are
dropped with a warning), re-runs gap detection, scores the result and
persists ``refinement_turn`` with the score history. Rounds stop once the
quality target is met or the turn limit is reached. An explicit round
count (the ``refine`` command) runs exactly that many extra rounds.
"""

import asyncio
import logging
from typing import List, Optional, Sequence, Set

from ..checkpoint import CheckpointStore
from ..config import ModeConfig
from ..consolidation import detect_gaps
from ..models import DomainInsight
from .scorer import QualityScore, QualityScorer

logger = logging.getLogger(__name__)


def validate_cross_references(domains: Sequence[DomainInsight]) -> int:
    """Drop related-file links that point outside every domain. Returns the count dropped."""
    known: Set[str] = {path for d in domains for path in d.files}
    dropped = 0
    for domain in domains:
        kept = []
        for rel in domain.related_files:
            if rel.path in known:
                kept.append(rel)
            else:
                logger.warning(f"Cross-reference: {domain.name} links unknown file {rel.path}")
                dropped += 1
        domain.related_files = kept
    return dropped


class RefinementRunner:
    def __init__(self, store: CheckpointStore, mode_config: ModeConfig,
                 scorer: Optional[QualityScorer] = None):
        self._store = store
        self._mode_config = mode_config
        self._scorer = scorer or QualityScorer()

    async def run(
        self,
        session_id: str,
        domains: List[DomainInsight],
        rounds: Optional[int] = None,
    ) -> Optional[QualityScore]:
        """Run refinement rounds and return the last score (None if no round ran)."""
        turn, history = await asyncio.to_thread(self._store.load_refinement_state, session_id)
        target = self._mode_config.refinement_quality_target
        explicit = rounds is not None
        limit = turn + max(rounds, 0) if explicit else self._mode_config.refinement_max_turns

        if turn >= limit:
            logger.info(f"Refinement: turn limit reached ({turn}/{limit}), nothing to do")
            return None

        score: Optional[QualityScore] = None
        while turn < limit:
            changed = self.refine_round(domains)
            score = self._scorer.score(domains)
            turn += 1
            history = list(history) + [{"turn": turn, **score.to_dict()}]
            if changed:
                await asyncio.to_thread(self._store.record_domain_summaries, session_id, domains)
            await asyncio.to_thread(
                self._store.store_refinement_turn, session_id, turn, score.overall, history
            )
            logger.info(
                f"Refinement: turn {turn}/{limit} score {score.overall:.2f} "
                f"(target {target:.2f}, {len(score.gaps)} gaps)"
            )
            if not explicit and score.meets(target):
                break

        if score is not None and not score.meets(target):
            logger.warning(f"Quality gate: refinement ended below target ({score.overall:.2f} < {target:.2f})")
        return score

    @staticmethod
    def refine_round(domains: Sequence[DomainInsight]) -> bool:
        """One in-place pass over the domains. True when anything changed."""
        changed = validate_cross_references(domains) > 0
        for domain in domains:
            gaps = detect_gaps(domain)
            if gaps != domain.gaps:
                domain.gaps = gaps
                changed = True
        return changed
