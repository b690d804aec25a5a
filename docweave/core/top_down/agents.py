"""Top-down agents: project-wide views built from every file insight.

Selection depends on the profile: architecture always runs, risk for
anything bigger than a small project, flow when technical traits are
known, domain when domain traits are known.
"""

import logging
from collections import Counter, defaultdict
from typing import Any, Dict, List, Sequence

from ..config import ProjectScale
from ..llm import LLMClient
from ..models import AgentInsight, FileInsight, ProcessingTier
from ..pipeline.orchestrator import Agent, TurnContext

logger = logging.getLogger(__name__)

LLM_CONFIDENCE = 0.8
FALLBACK_CONFIDENCE = 0.3
MAX_INSIGHTS_IN_PROMPT = 80

_STRING_LIST = {"type": "array", "items": {"type": "string"}}


def _module_of(path: str) -> str:
    parts = path.split("/")
    if parts[0] == "src" and len(parts) > 2:
        return parts[1]
    return parts[0] if len(parts) > 1 else "root"


class TopDownAgent(Agent):
    """Reads a snapshot of all file insights; never mutates it."""

    schema: Dict[str, Any] = {}
    focus: str = ""

    def __init__(self, llm: LLMClient, insights: Sequence[FileInsight], profile):
        self._llm = llm
        self.insights = list(insights)
        self.profile = profile

    def insight_digest(self) -> str:
        ranked = sorted(self.insights, key=lambda i: (-int(i.tier), i.file_path))
        lines = []
        for insight in ranked[:MAX_INSIGHTS_IN_PROMPT]:
            related = ", ".join(sorted(insight.related_paths())[:5])
            lines.append(
                f"- {insight.file_path} [{insight.tier.name}, {insight.complexity}]: "
                f"{insight.purpose}" + (f" (related: {related})" if related else "")
            )
        if len(ranked) > MAX_INSIGHTS_IN_PROMPT:
            lines.append(f"... {len(ranked) - MAX_INSIGHTS_IN_PROMPT} more files")
        return "\n".join(lines)

    def build_prompt(self, context: TurnContext) -> str:
        return (
            f"{self.profile.prompt_context()}\n\n"
            f"{self.focus}\n\n"
            "Include a one-paragraph 'summary'.\n\n"
            f"File documentation:\n{self.insight_digest()}"
        )

    def heuristic(self) -> Dict[str, Any]:
        raise NotImplementedError

    async def analyze(self, context: TurnContext) -> AgentInsight:
        payload = await self._llm.generate_with_retry(self.build_prompt(context), self.schema)
        logger.debug(f"Top-Down: {self.name} returned {sorted(payload)}")
        return AgentInsight(self.name, context.turn, payload, confidence=LLM_CONFIDENCE)

    def fallback(self, context: TurnContext) -> AgentInsight:
        return AgentInsight(
            self.name, context.turn, self.heuristic(),
            confidence=FALLBACK_CONFIDENCE, is_fallback=True,
        )

    def inbound_counts(self) -> Counter:
        counts: Counter = Counter()
        for insight in self.insights:
            for path in insight.related_paths():
                counts[path] += 1
        return counts


class ArchitectureAgent(TopDownAgent):
    name = "architecture"
    focus = (
        "Identify the architecture pattern, its layers (name, files, which "
        "layers each depends on), any boundary violations, and a mermaid "
        "diagram of the layers."
    )
    schema = {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
            "architecture_pattern": {"type": "string"},
            "layers": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "files": _STRING_LIST,
                        "dependencies": _STRING_LIST,
                    },
                },
            },
            "boundary_violations": _STRING_LIST,
            "diagram": {"type": "string"},
        },
        "required": ["summary", "layers"],
    }

    def heuristic(self) -> Dict[str, Any]:
        files_by_module: Dict[str, List[str]] = defaultdict(list)
        deps: Dict[str, set] = defaultdict(set)
        for insight in self.insights:
            module = _module_of(insight.file_path)
            files_by_module[module].append(insight.file_path)
            for path in insight.related_paths():
                other = _module_of(path)
                if other != module:
                    deps[module].add(other)
        layers = [
            {"name": m, "files": sorted(files), "dependencies": sorted(deps[m])}
            for m, files in sorted(files_by_module.items())
        ]
        return {
            "summary": f"{len(layers)} modules inferred from the directory layout.",
            "architecture_pattern": self.profile.organization_style.value,
            "layers": layers,
            "boundary_violations": [],
            "diagram": None,
        }


class RiskAgent(TopDownAgent):
    name = "risk"
    focus = (
        "Map project-wide risk: risk areas (area, risk_level, files, "
        "evidence), modification hotspots (file, reason, dependents) and "
        "cross-cutting risks."
    )
    schema = {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
            "risk_areas": {"type": "array", "items": {"type": "object"}},
            "hotspots": {"type": "array", "items": {"type": "object"}},
            "cross_cutting": _STRING_LIST,
        },
        "required": ["summary", "risk_areas"],
    }

    def heuristic(self) -> Dict[str, Any]:
        inbound = self.inbound_counts()
        hotspots = [
            {"file": path, "reason": f"referenced by {count} files", "dependents": count}
            for path, count in inbound.most_common(10) if count >= 2
        ]
        complex_files = [
            i.file_path for i in self.insights if i.complexity in ("high", "critical")
        ]
        risk_areas = []
        if complex_files:
            risk_areas.append({
                "area": "complex files",
                "risk_level": "high",
                "files": complex_files,
                "evidence": ["line count above 300"],
            })
        return {
            "summary": f"{len(hotspots)} hotspots, {len(complex_files)} complex files.",
            "risk_areas": risk_areas,
            "hotspots": hotspots,
            "cross_cutting": [],
        }


class FlowAgent(TopDownAgent):
    name = "flow"
    focus = (
        "Describe the main flows through the system (business flows, event "
        "flows, data pipelines), each as ordered steps naming the files involved."
    )
    schema = {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
            "flows": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "steps": _STRING_LIST,
                        "diagram": {"type": "string"},
                    },
                },
            },
        },
        "required": ["summary", "flows"],
    }

    def heuristic(self) -> Dict[str, Any]:
        flows = []
        for insight in self.insights:
            if insight.tier != ProcessingTier.CORE:
                continue
            steps = [insight.file_path] + sorted(insight.related_paths())
            flows.append({"name": f"from {insight.file_path}", "steps": steps, "diagram": None})
        return {"summary": f"{len(flows)} flows starting at core files.", "flows": flows}


class DomainAgent(TopDownAgent):
    name = "domain"
    focus = (
        "Explain the problem domain as it appears in the code: domain terms "
        "with definitions, recurring domain patterns and recommendations."
    )
    schema = {
        "type": "object",
        "properties": {
            "summary": {"type": "string"},
            "terms": {"type": "array", "items": {"type": "object"}},
            "patterns": _STRING_LIST,
            "recommendations": _STRING_LIST,
        },
        "required": ["summary", "terms"],
    }

    def heuristic(self) -> Dict[str, Any]:
        terms = [
            {"term": t.term, "definition": t.definition} for t in self.profile.terminology
        ]
        return {
            "summary": ", ".join(self.profile.domain_traits),
            "terms": terms,
            "patterns": [],
            "recommendations": [],
        }


AGENT_CLASSES = {
    cls.name: cls for cls in (ArchitectureAgent, RiskAgent, FlowAgent, DomainAgent)
}


def select_agents(profile, max_agents: int) -> List[str]:
    """Agent names for this profile, in priority order, capped at max_agents."""
    selected = ["architecture"]
    if profile.scale != ProjectScale.SMALL:
        selected.append("risk")
    if profile.technical_traits:
        selected.append("flow")
    if profile.domain_traits:
        selected.append("domain")
    return selected[:max(max_agents, 1)]
