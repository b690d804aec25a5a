"""Checkpoint store and session lifecycle.

Public API:
    CheckpointStore  — transactional checkpoint reads/writes
    SessionManager   — create / complete / fail / clear sessions
"""

from .session import SessionManager, SessionRecord
from .store import CheckpointStore

__all__ = ["CheckpointStore", "SessionManager", "SessionRecord"]
