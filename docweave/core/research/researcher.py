"""Deep Research iterator for Important/Core files.

Iterations for one file are strictly sequential: each prompt is built
from the context accumulated by the previous iterations. The final
Synthesizing iteration must yield purpose and content; otherwise the
file fails with NoSynthesisError instead of publishing partial research.
"""

import logging
from typing import Optional, Sequence

from ..errors import NoSynthesisError
from ..llm import LLMClient
from ..models import ChildContext, ProcessingTier
from ..utils.token_counter import TokenCounter, get_token_counter
from .models import ResearchContext, ResearchPhase
from .prompts import build_research_prompt, parse_research_output, research_output_schema

logger = logging.getLogger(__name__)


class DeepResearcher:
    """Runs the Planning -> Investigating -> Synthesizing loop for one file."""

    def __init__(
        self,
        llm: LLMClient,
        max_file_chars: int = 10000,
        token_counter: Optional[TokenCounter] = None,
    ):
        self._llm = llm
        self.max_file_chars = max_file_chars
        self._counter = token_counter or get_token_counter()

    async def research(
        self,
        file_path: str,
        source: str,
        tier: ProcessingTier,
        profile_context: str = "",
        child_contexts: Sequence[ChildContext] = (),
        structural_context: str = "",
    ) -> ResearchContext:
        """Run all iterations for the tier and return the filled context.

        Raises:
            NoSynthesisError: the Synthesizing iteration had no purpose/content.
            LLMError: a model call failed (fatal to this file).
        """
        total = tier.research_iterations
        context = ResearchContext(topic=file_path)
        children = list(child_contexts)

        logger.info(f"Deep Research: {file_path} ({total} iterations, tier={tier.name})")

        for current in range(1, total + 1):
            phase = ResearchPhase.from_iteration(current, total)
            logger.debug(f"Deep Research: {file_path} - {phase.kind.value} ({current}/{total})")

            prompt = build_research_prompt(
                phase,
                file_path,
                context,
                source,
                profile_context,
                self.max_file_chars,
                children,
                structural_context,
            )
            response = await self._llm.generate(prompt, research_output_schema(phase))
            iteration = parse_research_output(phase, response)

            # Each iteration respects its own budget
            iteration.findings = self._counter.truncate(
                iteration.findings, tier.tokens_per_iteration
            )
            accepted = context.add_iteration(iteration)
            if not phase.is_synthesizing:
                logger.debug(f"Deep Research: {file_path} +{len(accepted)} aspects")

        synthesis = context.get_synthesis()
        if synthesis is None or not synthesis.has_synthesis():
            raise NoSynthesisError(file_path)
        return context
