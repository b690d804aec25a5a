"""Phase 1: project characterization.

Exports:
    CharacterizationRunner: runs the agent turns and synthesizes the profile
    ProjectProfile: the synthesized profile consumed by later phases
    ProjectSnapshot: file listing + manifests + README handed to agents
    ProfileSynthesis: agent outputs -> ProjectProfile
"""

from .profile import (
    DomainTerm,
    DynamicSection,
    EntryPointRef,
    KeyArea,
    OrganizationStyle,
    ProjectProfile,
)
from .runner import CharacterizationRunner
from .snapshot import ProjectSnapshot
from .synthesis import ProfileSynthesis, merge_insights

__all__ = [
    "CharacterizationRunner",
    "DomainTerm",
    "DynamicSection",
    "EntryPointRef",
    "KeyArea",
    "OrganizationStyle",
    "ProfileSynthesis",
    "ProjectProfile",
    "ProjectSnapshot",
    "merge_insights",
]
