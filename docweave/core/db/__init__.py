"""
Database module for docweave.

Exports:
- DatabaseManager: engine + transactional session management
- get_database_manager: factory that also ensures the schema
- ORM models and Base
"""

from .db import DatabaseManager, get_database_manager
from .models import (
    Base,
    DocSession,
    CharacterizationInsight,
    FileTracking,
    FileAnalysis,
    ModuleSummary,
    DomainSummary,
    Node,
)

__all__ = [
    # Database management
    "DatabaseManager",
    "get_database_manager",

    # ORM models
    "Base",
    "DocSession",
    "CharacterizationInsight",
    "FileTracking",
    "FileAnalysis",
    "ModuleSummary",
    "DomainSummary",
    "Node",
]
