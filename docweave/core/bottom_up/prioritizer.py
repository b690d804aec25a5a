"""Tiered batch scheduler: classify files into tiers and order them leaf-first.

Lower tiers and deeper, more specific modules are analyzed first, so when
a higher-tier or shallower file is analyzed its dependencies already have
published insights it can link to instead of re-describing them.

Everything here is a pure function of (path, profile): recomputing on
resume yields the same order.
"""

import logging
from typing import TYPE_CHECKING, Iterable, List, Optional, Sequence

from ..models import Importance, PrioritizedFile, ProcessingTier

if TYPE_CHECKING:
    from ..characterization.profile import ProjectProfile

logger = logging.getLogger(__name__)

LEAF_PATTERNS = (
    "/util", "/helper", "/common", "/shared", "/constants",
    "/types", "/models", "/schema", "/dto", "/entities",
)
IMPORTANT_PATTERNS = (
    "/core", "/service", "/domain", "/engine", "/api",
    "/cli", "/handler", "/controller", "/route",
)


def _normalize(path: str) -> str:
    path = path.replace("\\", "/").strip()
    while path.startswith("./"):
        path = path[2:]
    return path.strip("/")


def path_depth(path: str) -> int:
    return _normalize(path).count("/")


class BatchPrioritizer:
    """Assigns ProcessingTier and processing order to files."""

    def __init__(self, profile: Optional["ProjectProfile"] = None):
        self._key_areas = []
        if profile is not None:
            self._key_areas = sorted(
                ((_normalize(area.path), area.importance) for area in profile.key_areas
                 if _normalize(area.path)),
                key=lambda item: len(item[0]),
                reverse=True,
            )

    def classify(self, path: str) -> ProcessingTier:
        """Tier for one path.

        1. Recognized entry-point filename => CORE
        2. Longest matching key-area prefix => tier of its importance
        3. Path keyword heuristic => LEAF / IMPORTANT, else STANDARD
        """
        normalized = _normalize(path)
        if PrioritizedFile.is_entry_point_name(normalized):
            return ProcessingTier.CORE

        importance = self._key_area_importance(normalized)
        if importance is not None:
            return ProcessingTier.from_importance(importance)

        probe = "/" + normalized.lower()
        if any(pattern in probe for pattern in LEAF_PATTERNS):
            return ProcessingTier.LEAF
        if any(pattern in probe for pattern in IMPORTANT_PATTERNS):
            return ProcessingTier.IMPORTANT
        return ProcessingTier.STANDARD

    def _key_area_importance(self, path: str) -> Optional[Importance]:
        # _key_areas is sorted longest-first, so the first hit is the longest prefix
        for area_path, importance in self._key_areas:
            if path == area_path or path.startswith(area_path + "/"):
                return importance
        return None

    def prioritize_one(self, path: str) -> PrioritizedFile:
        normalized = _normalize(path)
        return PrioritizedFile(
            path=normalized,
            tier=self.classify(normalized),
            is_entry_point=PrioritizedFile.is_entry_point_name(normalized),
            depth=path_depth(normalized),
        )

    def prioritize(self, paths: Iterable[str]) -> List[PrioritizedFile]:
        """Classify and order: the full scheduling pass."""
        return order([self.prioritize_one(p) for p in paths])


def order(files: Iterable[PrioritizedFile]) -> List[PrioritizedFile]:
    """Stable sort by (tier asc, entry points last, deeper paths first)."""
    return sorted(files, key=lambda f: (f.tier, f.is_entry_point, -f.depth))


def group_by_tier(files: Sequence[PrioritizedFile]):
    """[(tier, [files...])] in ascending tier order, preserving file order."""
    groups = {}
    for pf in files:
        groups.setdefault(pf.tier, []).append(pf)
    return [(tier, groups[tier]) for tier in sorted(groups)]


def child_context_for(target: PrioritizedFile,
                      all_files: Iterable[PrioritizedFile]) -> List[PrioritizedFile]:
    """Lower-tier files an Important/Core target may read as context.

    Candidates share the target's parent directory or live under it.
    """
    if not target.tier.uses_child_context:
        return []
    target_dir = target.parent_dir
    result = []
    for candidate in all_files:
        if candidate.path == target.path or candidate.tier >= target.tier:
            continue
        cand_dir = candidate.parent_dir
        if cand_dir == target_dir or (
            target_dir == "" or cand_dir.startswith(target_dir + "/")
        ):
            result.append(candidate)
    return result
