"""ProjectProfile: the synthesized result of characterization.

Serialized into the session checkpoint blob so later phases (and resumed
runs) read the same profile without re-running agents.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config import AnalysisMode, ProjectScale
from ..models import Importance
from ..utils.text_utils import utc_now


class OrganizationStyle(str, Enum):
    DOMAIN_DRIVEN = "domain-driven"
    LAYER_BASED = "layer-based"
    FEATURE_BASED = "feature-based"
    FLAT = "flat"
    HYBRID = "hybrid"

    @classmethod
    def parse(cls, value: Optional[str]) -> "OrganizationStyle":
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.HYBRID


@dataclass
class KeyArea:
    path: str
    importance: Importance = Importance.MEDIUM
    focus_reasons: List[str] = field(default_factory=list)


@dataclass
class EntryPointRef:
    entry_type: str
    file: str
    symbol: Optional[str] = None


@dataclass
class DomainTerm:
    term: str
    definition: str = ""
    context: Optional[str] = None


@dataclass
class DynamicSection:
    """A project-specific documentation section discovered in Turn 3."""
    name: str
    description: str = ""
    extraction_hints: List[str] = field(default_factory=list)


@dataclass
class ProjectProfile:
    name: str
    scale: ProjectScale = ProjectScale.MEDIUM
    mode: AnalysisMode = AnalysisMode.STANDARD
    purposes: List[str] = field(default_factory=lambda: ["Unknown"])
    target_users: List[str] = field(default_factory=list)
    technical_traits: List[str] = field(default_factory=list)
    architecture_hints: List[str] = field(default_factory=list)
    organization_style: OrganizationStyle = OrganizationStyle.HYBRID
    domain_traits: List[str] = field(default_factory=list)
    terminology: List[DomainTerm] = field(default_factory=list)
    dynamic_sections: List[DynamicSection] = field(default_factory=list)
    key_areas: List[KeyArea] = field(default_factory=list)
    entry_points: List[EntryPointRef] = field(default_factory=list)
    characterized_at: str = field(default_factory=utc_now)
    characterization_turns: int = 0

    def validate(self) -> List[str]:
        """Structural problems; empty when the profile is usable."""
        errors = []
        if not self.purposes:
            errors.append("purposes must have at least 1 entry")
        seen = set()
        for term in self.terminology:
            if term.term in seen:
                errors.append(f"Duplicate terminology term: {term.term}")
            seen.add(term.term)
        return errors

    def is_complete(self) -> bool:
        return (
            bool(self.purposes)
            and not all(p == "Unknown" for p in self.purposes)
            and self.characterization_turns > 0
        )

    def summary(self) -> str:
        return (
            f"ProjectProfile(name={self.name}, scale={self.scale.value}, "
            f"purposes={self.purposes}, traits={len(self.technical_traits)} technical, "
            f"{len(self.domain_traits)} domain)"
        )

    def prompt_context(self) -> str:
        """Short profile block reused by every downstream prompt."""
        lines = [
            f"Project: {self.name} ({self.scale.value})",
            f"Purposes: {', '.join(self.purposes)}",
        ]
        if self.technical_traits:
            lines.append(f"Technical traits: {', '.join(self.technical_traits)}")
        if self.domain_traits:
            lines.append(f"Domain: {', '.join(self.domain_traits)}")
        if self.terminology:
            terms = "; ".join(f"{t.term}: {t.definition}" for t in self.terminology[:10])
            lines.append(f"Terminology: {terms}")
        return "\n".join(lines)

    # ── Serialization ───────────────────────────────────────────────────

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["scale"] = self.scale.value
        data["mode"] = self.mode.value
        data["organization_style"] = self.organization_style.value
        data["key_areas"] = [
            {"path": k.path, "importance": k.importance.value, "focus_reasons": k.focus_reasons}
            for k in self.key_areas
        ]
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectProfile":
        return cls(
            name=data.get("name", "project"),
            scale=ProjectScale(data.get("scale", ProjectScale.MEDIUM.value)),
            mode=AnalysisMode(data.get("mode", AnalysisMode.STANDARD.value)),
            purposes=list(data.get("purposes") or ["Unknown"]),
            target_users=list(data.get("target_users") or []),
            technical_traits=list(data.get("technical_traits") or []),
            architecture_hints=list(data.get("architecture_hints") or []),
            organization_style=OrganizationStyle.parse(data.get("organization_style")),
            domain_traits=list(data.get("domain_traits") or []),
            terminology=[DomainTerm(**t) for t in data.get("terminology") or []],
            dynamic_sections=[DynamicSection(**s) for s in data.get("dynamic_sections") or []],
            key_areas=[
                KeyArea(
                    path=k["path"],
                    importance=Importance.parse(k.get("importance")),
                    focus_reasons=list(k.get("focus_reasons") or []),
                )
                for k in data.get("key_areas") or []
            ],
            entry_points=[EntryPointRef(**e) for e in data.get("entry_points") or []],
            characterized_at=data.get("characterized_at") or utc_now(),
            characterization_turns=int(data.get("characterization_turns") or 0),
        )
