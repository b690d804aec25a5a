"""Per-file analysis: single pass for Leaf/Standard, Deep Research above.

After the model answers, post-processing runs the quality gates (logged,
never fatal), validates the diagram with up to two repair attempts, and
enforces the tier's content token budget. The analyzer also derives the
fact rows stored alongside the insight.
"""

import logging
from typing import List, Optional, Sequence, Tuple

from ..constants import MAX_DIAGRAM_FIX_ATTEMPTS
from ..errors import FileAnalysisError, LLMError
from ..llm import LLMClient
from ..models import (
    ChildContext,
    DerivedFact,
    FileInsight,
    PrioritizedFile,
    ProcessingTier,
    RelatedFile,
    complexity_label,
)
from ..parsing import Parser, Relation, StructuralFact, format_structural_context
from ..research import DeepResearcher
from ..utils.text_utils import word_count
from ..utils.token_counter import TokenCounter, get_token_counter
from .diagram import strip_fence, validate_mermaid
from .prompts import (
    ANALYSIS_SCHEMA,
    DIAGRAM_FIX_SCHEMA,
    build_analysis_prompt,
    build_diagram_fix_prompt,
)

logger = logging.getLogger(__name__)

PREAMBLE_PATTERNS = (
    "here is the documentation",
    "here's the documentation",
    "this file contains the implementation",
    "let me explain",
    "i'll document",
    "the following documentation",
)
GENERIC_PRAISE_PATTERNS = (
    "well-structured",
    "well structured",
    "clean code",
    "follows best practices",
    "this is a well",
    "nicely organized",
    "good organization",
)
PLACEHOLDER_PATTERNS = ("todo:", "[todo]", "[placeholder]", "needs more detail")


def quality_issues(insight: FileInsight) -> List[str]:
    """Anti-patterns found in an insight. Empty list means it passed."""
    issues = []
    content = insight.content.lower()
    purpose = insight.purpose.lower()
    tier = insight.tier

    for pattern in PREAMBLE_PATTERNS:
        if content.startswith(pattern) or purpose.startswith(pattern):
            issues.append(f"starts with preamble '{pattern}'")
            break
    for pattern in GENERIC_PRAISE_PATTERNS:
        if pattern in content:
            issues.append(f"contains generic praise '{pattern}'")
            break

    words = word_count(insight.content)
    if words < tier.min_words:
        issues.append(f"content too short for {tier.name} tier: {words} words (min {tier.min_words})")
    if not insight.purpose.strip():
        issues.append("empty purpose")
    for pattern in PLACEHOLDER_PATTERNS:
        if pattern in content:
            issues.append(f"contains placeholder '{pattern}'")
            break
    if insight.content.strip().startswith(("```markdown", "```md")):
        issues.append("content wrapped in a markdown fence")
    if tier >= ProcessingTier.IMPORTANT and not insight.diagram:
        issues.append(f"{tier.name} tier should have a diagram")
    return issues


def build_facts(insight: FileInsight, structural: Sequence[StructuralFact] = (),
                imports: Sequence[str] = ()) -> List[DerivedFact]:
    """Entity node, one relation node per related file, parser facts."""
    path = insight.file_path
    facts = [
        DerivedFact(
            node_id=f"doc:{path}",
            node_type="document",
            name=path.rsplit("/", 1)[-1],
            path=path,
            metadata={
                "purpose": insight.purpose,
                "tier": insight.tier.name,
                "complexity": insight.complexity,
                "imports": list(imports),
            },
            tier="doc",
        )
    ]
    for rf in insight.related_files:
        facts.append(DerivedFact(
            node_id=f"rel:{path}:{rf.path}",
            node_type="relation",
            name=rf.relationship,
            path=path,
            metadata={"target": rf.path, "relationship": rf.relationship},
            tier="relation",
        ))
    seen = set()
    for sf in structural:
        node_id = f"fact:{path}:{sf.name}"
        if node_id in seen:
            continue
        seen.add(node_id)
        facts.append(DerivedFact(
            node_id=node_id,
            node_type=sf.kind,
            name=sf.name,
            path=path,
            metadata={"line": sf.line},
        ))
    return facts


class FileAnalyzer:
    """Turns one file's source into a FileInsight plus derived facts."""

    def __init__(
        self,
        llm: LLMClient,
        parser: Optional[Parser] = None,
        max_file_chars: int = 10000,
        token_counter: Optional[TokenCounter] = None,
    ):
        self._llm = llm
        self._parser = parser
        self.max_file_chars = max_file_chars
        self._tc = token_counter or get_token_counter()
        self._researcher = DeepResearcher(llm, max_file_chars, self._tc)

    async def analyze(
        self,
        pf: PrioritizedFile,
        source: str,
        profile_context: str = "",
        child_contexts: Sequence[ChildContext] = (),
        language: Optional[str] = None,
    ) -> Tuple[FileInsight, List[DerivedFact]]:
        """Analyze one file.

        Raises:
            NoSynthesisError: Deep Research ended without purpose/content.
            FileAnalysisError: the single-pass answer was empty.
            LLMError: the model call failed.
        """
        structural: List[StructuralFact] = []
        relations: List[Relation] = []
        if self._parser is not None:
            structural, relations = self._parser.parse(pf.path, source)
        structural_context = format_structural_context(structural, relations)
        imports = [r.target for r in relations]

        if pf.tier.uses_deep_research:
            insight = await self._research(pf, source, profile_context, child_contexts,
                                           structural_context)
        else:
            insight = await self._single_pass(pf, source, profile_context, child_contexts,
                                              structural_context)

        line_count = len(source.splitlines())
        insight.language = language
        insight.line_count = line_count
        insight.complexity = complexity_label(line_count)
        insight.importance = pf.tier.importance
        self._link_children(insight, child_contexts)

        await self.post_process(insight)
        return insight, build_facts(insight, structural, imports)

    async def _single_pass(self, pf, source, profile_context, child_contexts,
                           structural_context) -> FileInsight:
        prompt = build_analysis_prompt(
            pf.path, source, pf.tier, profile_context, self.max_file_chars,
            child_contexts, structural_context,
        )
        response = await self._llm.generate(prompt, ANALYSIS_SCHEMA)
        purpose = str(response.get("purpose") or "").strip()
        content = str(response.get("content") or "").strip()
        if not purpose and not content:
            raise FileAnalysisError(pf.path, "model returned neither purpose nor content")

        related = [
            rf for rf in (RelatedFile.from_dict(d) for d in response.get("related_files") or [])
            if rf is not None and rf.path != pf.path
        ]
        diagram = response.get("diagram") or None
        return FileInsight(
            file_path=pf.path,
            purpose=purpose,
            tier=pf.tier,
            content=content,
            diagram=str(diagram) if diagram else None,
            related_files=related,
        )

    async def _research(self, pf, source, profile_context, child_contexts,
                        structural_context) -> FileInsight:
        context = await self._researcher.research(
            pf.path,
            source,
            pf.tier,
            profile_context=profile_context,
            child_contexts=child_contexts,
            structural_context=structural_context,
        )
        synthesis = context.get_synthesis()
        serialized = context.serialize()
        return FileInsight(
            file_path=pf.path,
            purpose=(synthesis.purpose or "").strip(),
            tier=pf.tier,
            content=(synthesis.content or "").strip(),
            diagram=synthesis.diagram,
            related_files=[rf for rf in synthesis.related_files if rf.path != pf.path],
            research_iterations=serialized["iterations"],
            research_aspects=serialized["aspects"],
        )

    @staticmethod
    def _link_children(insight: FileInsight, child_contexts: Sequence[ChildContext]) -> None:
        """Child files the analysis was given become 'contains' links."""
        known = insight.related_paths()
        for child in child_contexts:
            if child.path not in known and child.path != insight.file_path:
                insight.related_files.append(RelatedFile(child.path, "contains"))
                known.add(child.path)

    # ── Post-processing ─────────────────────────────────────────────────

    async def post_process(self, insight: FileInsight) -> None:
        for issue in quality_issues(insight):
            logger.warning(f"Quality gate: {insight.file_path}: {issue}")

        if insight.diagram:
            insight.diagram = await self.validate_and_fix_diagram(insight.diagram)

        tier = insight.tier
        insight.token_count = self._tc.count(insight.content)
        if insight.token_count > tier.max_content_tokens:
            logger.info(
                f"Truncating {insight.file_path}: {insight.token_count} tokens "
                f"> {tier.max_content_tokens}"
            )
            insight.content = self._tc.truncate(insight.content, tier.max_content_tokens)
            insight.token_count = self._tc.count(insight.content)

    async def validate_and_fix_diagram(self, diagram: str) -> Optional[str]:
        """Return a valid diagram, or the original after failed repairs."""
        body = strip_fence(diagram)
        if not body:
            return None
        errors = validate_mermaid(body)
        if not errors:
            return body

        for attempt in range(1, MAX_DIAGRAM_FIX_ATTEMPTS + 1):
            logger.debug(f"Diagram invalid ({errors[0]}), fix attempt {attempt}/{MAX_DIAGRAM_FIX_ATTEMPTS}")
            try:
                response = await self._llm.generate(
                    build_diagram_fix_prompt(body, errors), DIAGRAM_FIX_SCHEMA
                )
            except LLMError as e:
                logger.warning(f"Diagram fix attempt {attempt} failed: {e}")
                continue
            fixed = strip_fence(str(response.get("diagram") or ""))
            if fixed and not validate_mermaid(fixed):
                return fixed

        logger.warning(f"Could not fix diagram after {MAX_DIAGRAM_FIX_ATTEMPTS} attempts")
        return body
