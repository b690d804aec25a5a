"""Phase 5: consolidate file insights into domain documentation.

Domains are synthesized with bounded concurrency and collected as they
finish. Small domains (two files or fewer) and domains whose synthesis
call fails are merged mechanically instead. If domain summaries already
exist for the session they are returned unchanged.
"""

import asyncio
import logging
from typing import List, Mapping, Optional, Sequence

from ..checkpoint import CheckpointStore
from ..errors import LLMError
from ..llm import LLMClient
from ..models import AgentInsight, DomainInsight, FileInsight, RelatedFile
from ..utils.token_counter import estimate_tokens
from .gaps import detect_gaps
from .grouping import DomainGrouper

logger = logging.getLogger(__name__)

MAX_FULL_DETAIL_FILES = 5
MAX_SUMMARY_FILES = 10

SYNTHESIS_SCHEMA = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "content": {"type": "string"},
        "diagram": {"type": "string"},
        "related_files": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "relationship": {"type": "string"},
                },
            },
        },
    },
    "required": ["description", "content"],
}


def _primary(files: Sequence[FileInsight]) -> FileInsight:
    # Highest tier wins; ties go to the first path
    return max(files, key=lambda f: (int(f.tier), -files.index(f)))


def _collect_related(domain: DomainInsight, files: Sequence[FileInsight]) -> None:
    known = {r.path for r in domain.related_files} | set(domain.files)
    for insight in files:
        for rel in insight.related_files:
            if rel.path not in known:
                domain.related_files.append(rel)
                known.add(rel.path)


def simple_merge(name: str, files: Sequence[FileInsight]) -> DomainInsight:
    """Domain built from its most important file plus links to the rest."""
    primary = _primary(files)
    domain = DomainInsight(
        name=name,
        description=primary.purpose,
        importance=primary.importance,
        files=[f.file_path for f in files],
        content=primary.content,
        diagram=primary.diagram,
    )
    others = [f for f in files if f.file_path != primary.file_path]
    if others:
        links = "\n".join(
            f"- [{f.file_path}]({f.file_path.replace('/', '_')}.md): {f.purpose}" for f in others
        )
        domain.content += f"\n\n## Related Files\n\n{links}\n"
    _collect_related(domain, files)
    return domain


class ConsolidationRunner:
    def __init__(
        self,
        store: CheckpointStore,
        llm: LLMClient,
        concurrency: int = 3,
        llm_grouping_max_files: int = 50,
    ):
        self._store = store
        self._llm = llm
        self.concurrency = max(concurrency, 1)
        self.llm_grouping_max_files = llm_grouping_max_files

    async def run(
        self,
        session_id: str,
        insights: Sequence[FileInsight],
        project_insights: Optional[Mapping[str, AgentInsight]] = None,
        profile_context: str = "",
    ) -> List[DomainInsight]:
        cached = await asyncio.to_thread(self._store.load_domain_summaries, session_id)
        if cached:
            logger.info(f"Consolidation: resuming with {len(cached)} stored domain summaries")
            return cached

        logger.info(f"Consolidation: starting ({len(insights)} files)")
        grouper = DomainGrouper(self._llm, profile_context, self.llm_grouping_max_files)
        groups = await grouper.group(insights)
        logger.info(f"Consolidation: {len(insights)} files in {len(groups)} domains")

        overview = self._project_overview(project_insights or {})
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [
            asyncio.ensure_future(
                self._synthesize(semaphore, name, files, grouper.descriptions.get(name, ""), overview)
            )
            for name, files in sorted(groups.items())
        ]
        domains: List[DomainInsight] = []
        try:
            for next_done in asyncio.as_completed(tasks):
                domains.append(await next_done)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

        for domain in domains:
            domain.gaps = detect_gaps(domain)
            domain.token_count = estimate_tokens(domain.content)

        domains.sort(key=lambda d: d.name)
        await asyncio.to_thread(self._store.record_domain_summaries, session_id, domains)
        logger.info(f"Consolidation: complete ({len(domains)} domain summaries)")
        return domains

    @staticmethod
    def _project_overview(project_insights: Mapping[str, AgentInsight]) -> str:
        lines = [
            f"- {name}: {insight.payload.get('summary', '')}"
            for name, insight in sorted(project_insights.items())
            if insight.payload.get("summary")
        ]
        return "\n".join(lines)

    async def _synthesize(self, semaphore: asyncio.Semaphore, name: str,
                          files: List[FileInsight], description: str,
                          overview: str) -> DomainInsight:
        if len(files) <= 2:
            return simple_merge(name, files)

        async with semaphore:
            try:
                response = await self._llm.generate(
                    self._build_prompt(name, files, description, overview), SYNTHESIS_SCHEMA
                )
            except LLMError as e:
                logger.warning(f"Consolidation: synthesis failed for {name}, merging instead: {e}")
                return simple_merge(name, files)

        primary = _primary(files)
        content = str(response.get("content") or "").strip()
        if not content:
            logger.warning(f"Consolidation: empty synthesis for {name}, merging instead")
            return simple_merge(name, files)

        diagram = response.get("diagram") or None
        domain = DomainInsight(
            name=name,
            description=str(response.get("description") or description or primary.purpose),
            importance=primary.importance,
            files=[f.file_path for f in files],
            content=content,
            diagram=str(diagram) if diagram else None,
            related_files=[
                rf for rf in (RelatedFile.from_dict(d) for d in response.get("related_files") or [])
                if rf is not None
            ],
        )
        _collect_related(domain, files)
        return domain

    @staticmethod
    def _build_prompt(name: str, files: Sequence[FileInsight], description: str,
                      overview: str) -> str:
        ranked = sorted(files, key=lambda f: (-int(f.tier), f.file_path))
        detailed = "\n\n".join(
            f"### {f.file_path}\n{f.purpose}\n\n{f.content}" for f in ranked[:MAX_FULL_DETAIL_FILES]
        )
        brief = "\n".join(
            f"- {f.file_path}: {f.purpose}"
            for f in ranked[MAX_FULL_DETAIL_FILES:MAX_FULL_DETAIL_FILES + MAX_SUMMARY_FILES]
        )
        parts = [
            f"Write the documentation for the '{name}' domain of this project."
            + (f" It handles: {description}" if description else ""),
            "Explain how the files work together; link files by path instead of "
            "restating their documentation. Add a mermaid diagram when there is "
            "a meaningful flow.",
        ]
        if overview:
            parts.append(f"Project-level findings:\n{overview}")
        parts.append(f"Key files:\n\n{detailed}")
        if brief:
            parts.append(f"Other files:\n{brief}")
        remaining = len(ranked) - MAX_FULL_DETAIL_FILES - MAX_SUMMARY_FILES
        if remaining > 0:
            parts.append(f"... and {remaining} more files")
        return "\n\n".join(parts)
