"""Semantic grouping of file insights into domains.

Small projects are grouped by the model directly. Larger ones are first
pre-grouped by path and the model only renames/merges those groups.
Any model failure falls back to the path grouping. Every file ends up
in exactly one domain.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Sequence

from ..errors import LLMError
from ..llm import LLMClient
from ..models import FileInsight
from ..utils.text_utils import sanitize_name

logger = logging.getLogger(__name__)

GROUPING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "domains": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "description": {"type": "string"},
                    "files": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["name", "files"],
            },
        },
    },
    "required": ["domains"],
}

REFINE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "merges": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "groups": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["name", "groups"],
            },
        },
    },
    "required": ["merges"],
}

DEFAULT_DOMAIN = "core"


def _as_list(value: Any) -> List[Any]:
    # Model answers are untrusted; anything but a list is treated as empty
    return value if isinstance(value, list) else []


def path_domain(path: str) -> str:
    """Domain name from path: src/a/b/c/x -> a-b-c, src/a/b/x -> a-b, src/a/x -> a."""
    parts = path.split("/")
    for i, part in enumerate(parts):
        if part != "src" or i + 1 >= len(parts):
            continue
        nxt = parts[i + 1]
        if "." in nxt:
            continue
        if i + 3 < len(parts) and "." not in parts[i + 2] and "." not in parts[i + 3]:
            return sanitize_name(f"{nxt}-{parts[i + 2]}-{parts[i + 3]}")
        if i + 2 < len(parts) and "." not in parts[i + 2]:
            return sanitize_name(f"{nxt}-{parts[i + 2]}")
        return sanitize_name(nxt)
    if len(parts) > 1:
        return sanitize_name(parts[0]) or DEFAULT_DOMAIN
    return DEFAULT_DOMAIN


def group_by_path(insights: Sequence[FileInsight]) -> Dict[str, List[FileInsight]]:
    groups: Dict[str, List[FileInsight]] = defaultdict(list)
    for insight in insights:
        groups[path_domain(insight.file_path)].append(insight)
    return dict(groups)


class DomainGrouper:
    def __init__(self, llm: LLMClient, profile_context: str = "", llm_max_files: int = 50):
        self._llm = llm
        self.profile_context = profile_context
        self.llm_max_files = llm_max_files
        self.descriptions: Dict[str, str] = {}

    async def group(self, insights: Sequence[FileInsight]) -> Dict[str, List[FileInsight]]:
        if not insights:
            return {}
        try:
            if len(insights) <= self.llm_max_files:
                return await self._group_with_llm(insights)
            return await self._refine_with_llm(group_by_path(insights))
        except LLMError as e:
            logger.warning(f"Consolidation: grouping via model failed, using path grouping: {e}")
            return group_by_path(insights)

    async def _group_with_llm(self, insights: Sequence[FileInsight]) -> Dict[str, List[FileInsight]]:
        listing = "\n".join(f"- {i.file_path}: {i.purpose}" for i in insights)
        prompt = (
            "Group these source files into semantic domains by purpose, not "
            "just by directory. Every file must be in exactly one domain. "
            "Domain names use only lowercase letters, digits and hyphens. "
            "Do not create a catch-all 'other' domain.\n\n"
            f"{self.profile_context}\n\nFiles:\n{listing}"
        )
        result = await self._llm.generate(prompt, GROUPING_SCHEMA)
        return self.parse_grouping(result, insights)

    def parse_grouping(self, result: Dict[str, Any],
                       insights: Sequence[FileInsight]) -> Dict[str, List[FileInsight]]:
        by_path = {i.file_path: i for i in insights}
        groups: Dict[str, List[FileInsight]] = defaultdict(list)
        assigned = set()

        for domain in _as_list(result.get("domains")):
            if not isinstance(domain, dict):
                continue
            name = sanitize_name(str(domain.get("name") or "")) or DEFAULT_DOMAIN
            if domain.get("description"):
                self.descriptions.setdefault(name, str(domain["description"]))
            for path in _as_list(domain.get("files")):
                if isinstance(path, str) and path in by_path and path not in assigned:
                    groups[name].append(by_path[path])
                    assigned.add(path)

        # Orphans join the domain sharing the most path components, else path grouping
        for insight in insights:
            if insight.file_path in assigned:
                continue
            parts = [p.lower() for p in insight.file_path.split("/")]
            best, best_score = None, 0
            for name in sorted(groups):
                score = sum(1 for p in parts if p.split(".")[0] and p.split(".")[0] in name)
                if score > best_score:
                    best, best_score = name, score
            target = best or path_domain(insight.file_path)
            logger.debug(f"Consolidation: orphan {insight.file_path} -> {target}")
            groups[target].append(insight)
        return dict(groups)

    async def _refine_with_llm(self, path_groups: Dict[str, List[FileInsight]]
                               ) -> Dict[str, List[FileInsight]]:
        summary = "\n".join(
            f"- {name} ({len(files)} files): "
            + "; ".join(f.purpose for f in files[:3])
            for name, files in sorted(path_groups.items())
        )
        prompt = (
            "These groups were formed from directory paths. Merge groups that "
            "belong to the same semantic domain and give each merged domain a "
            "lowercase hyphenated name. Groups you do not mention stay as they are.\n\n"
            f"{self.profile_context}\n\nGroups:\n{summary}"
        )
        result = await self._llm.generate(prompt, REFINE_SCHEMA)

        refined: Dict[str, List[FileInsight]] = defaultdict(list)
        consumed = set()
        for merge in _as_list(result.get("merges")):
            if not isinstance(merge, dict):
                continue
            name = sanitize_name(str(merge.get("name") or ""))
            if not name:
                continue
            for group in _as_list(merge.get("groups")):
                if isinstance(group, str) and group in path_groups and group not in consumed:
                    refined[name].extend(path_groups[group])
                    consumed.add(group)
        for name, files in path_groups.items():
            if name not in consumed:
                refined[name].extend(files)
        return dict(refined)
