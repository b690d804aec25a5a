"""Merge characterization agent outputs into a ProjectProfile."""

import logging
from typing import Any, Dict, List, Mapping

from ..config import AnalysisMode, ProjectScale
from ..models import AgentInsight, Importance
from ..utils.text_utils import dedupe
from .profile import (
    DomainTerm,
    DynamicSection,
    EntryPointRef,
    KeyArea,
    OrganizationStyle,
    ProjectProfile,
)

logger = logging.getLogger(__name__)


def _strings(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if isinstance(v, (str, int, float)) and str(v).strip()]


def _dicts(value: Any) -> List[Dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, dict)]


class ProfileSynthesis:
    """Deterministic merge of agent payloads into one profile."""

    def __init__(self, project_name: str, scale: ProjectScale, mode: AnalysisMode):
        self.project_name = project_name
        self.scale = scale
        self.mode = mode

    def synthesize(self, insights: Mapping[str, AgentInsight], turns: int) -> ProjectProfile:
        profile = ProjectProfile(name=self.project_name, scale=self.scale, mode=self.mode)
        profile.characterization_turns = turns

        def payload(name: str) -> Dict[str, Any]:
            insight = insights.get(name)
            return insight.payload if insight else {}

        structure = payload("structure")
        profile.organization_style = OrganizationStyle.parse(structure.get("organization_style"))
        profile.key_areas = self._key_areas(structure.get("key_areas"))
        profile.architecture_hints = _strings(structure.get("directory_patterns"))

        profile.entry_points = [
            EntryPointRef(
                entry_type=str(e.get("entry_type") or "main"),
                file=str(e["file"]),
                symbol=e.get("symbol"),
            )
            for e in _dicts(payload("entry_point").get("entry_points")) if e.get("file")
        ]

        dependency = payload("dependency")
        profile.technical_traits = _strings(dependency.get("frameworks"))

        purpose = payload("purpose")
        purposes = _strings(purpose.get("purposes"))
        if purposes:
            known = [p for p in purposes if p != "Unknown"]
            profile.purposes = known or ["Unknown"]
        profile.target_users = _strings(purpose.get("target_users"))

        technical = payload("technical")
        profile.technical_traits = dedupe(
            profile.technical_traits + _strings(technical.get("technical_traits"))
        )
        profile.architecture_hints = dedupe(
            profile.architecture_hints + _strings(technical.get("architecture_hints"))
        )

        terminology = payload("terminology")
        profile.domain_traits = _strings(terminology.get("domain_traits"))
        seen = set()
        for t in _dicts(terminology.get("terms")):
            term = str(t.get("term") or "").strip()
            if not term or term in seen:
                continue
            seen.add(term)
            profile.terminology.append(DomainTerm(
                term=term,
                definition=str(t.get("definition") or ""),
                context=t.get("context"),
            ))

        profile.dynamic_sections = [
            DynamicSection(
                name=str(s["name"]),
                description=str(s.get("description") or ""),
                extraction_hints=_strings(s.get("extraction_hints")),
            )
            for s in _dicts(payload("section_discovery").get("sections")) if s.get("name")
        ]

        errors = profile.validate()
        if errors:
            logger.warning(f"Synthesized profile has problems: {errors}")
        logger.info(f"Characterization: {profile.summary()}")
        return profile

    @staticmethod
    def _key_areas(raw: Any) -> List[KeyArea]:
        areas = []
        seen = set()
        for item in _dicts(raw):
            path = str(item.get("path") or "").strip().strip("/")
            if not path or path in seen:
                continue
            seen.add(path)
            areas.append(KeyArea(
                path=path,
                importance=Importance.parse(item.get("importance")),
                focus_reasons=_strings(item.get("focus_reasons")),
            ))
        return areas


def merge_insights(previous: AgentInsight, current: AgentInsight) -> AgentInsight:
    """Combine a refinement round's output with the stored one.

    List fields are concatenated without duplicates, scalar fields take
    the newer value when it is set, confidences are averaged. The result
    is a model answer only if either side was.
    """
    merged: Dict[str, Any] = dict(previous.payload)
    for key, value in current.payload.items():
        old = merged.get(key)
        if isinstance(old, list) and isinstance(value, list):
            combined = list(old)
            for item in value:
                if item not in combined:
                    combined.append(item)
            merged[key] = combined
        elif value not in (None, "", [], {}):
            merged[key] = value
    return AgentInsight(
        agent_name=current.agent_name,
        turn=current.turn,
        payload=merged,
        confidence=(previous.confidence + current.confidence) / 2,
        is_fallback=previous.is_fallback and current.is_fallback,
    )
