"""Session lifecycle: create, look up, complete, fail, clear.

A session is one documentation run over one project path. Sessions are
never deleted implicitly; ``clear_session`` is the only removal path and
cascades to every checkpoint row of the session.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants import (
    SESSION_COMPLETED,
    SESSION_FAILED,
    SESSION_RUNNING,
)
from ..db import DatabaseManager
from ..errors import SessionError, StoreError
from ..utils.text_utils import utc_now

logger = logging.getLogger(__name__)

# Child tables cleared explicitly so SQLite without FK enforcement behaves the same
_SESSION_TABLES = (
    "nodes",
    "domain_summaries",
    "module_summaries",
    "file_analysis",
    "file_tracking",
    "characterization_insights",
)


@dataclass
class SessionRecord:
    id: str
    project_path: str
    status: str
    analysis_mode: str
    current_phase: int
    total_files: int
    files_analyzed: int
    quality_score: float
    last_error: Optional[str]
    started_at: Optional[str]
    completed_at: Optional[str]


class SessionManager:
    """CRUD over doc_sessions."""

    def __init__(self, db: DatabaseManager):
        self._db = db

    @contextmanager
    def _transaction(self, what: str) -> Iterator[Session]:
        try:
            with self._db.get_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Session {what} failed (rolled back): {e}")
            raise StoreError(f"{what} failed: {e}") from e

    def create_session(self, project_path: str, mode: str = "standard") -> str:
        """Start a new session for the canonical project path."""
        canonical = str(Path(project_path).expanduser().resolve())
        if not Path(canonical).is_dir():
            raise SessionError(f"Project path is not a directory: {canonical}")

        session_id = str(uuid4())
        now = utc_now()
        with self._transaction("create_session") as session:
            session.execute(
                text("""
                    INSERT INTO doc_sessions (
                        id, project_path, status, analysis_mode, current_phase,
                        completed_phases, characterization_turns, total_files,
                        files_analyzed, refinement_turn, quality_score,
                        checkpoint_data, started_at, last_checkpoint_at
                    ) VALUES (
                        :id, :path, :status, :mode, 1,
                        '[]', 0, 0, 0, 0, 0.0, '{}', :now, :now
                    )
                """),
                {"id": session_id, "path": canonical, "status": SESSION_RUNNING,
                 "mode": mode, "now": now},
            )

        logger.info(f"Created session {session_id} for {canonical} (mode={mode})")
        return session_id

    def get_session(self, session_id: str) -> SessionRecord:
        with self._transaction("get_session") as session:
            row = session.execute(
                text("""
                    SELECT id, project_path, status, analysis_mode, current_phase,
                           total_files, files_analyzed, quality_score, last_error,
                           started_at, completed_at
                    FROM doc_sessions WHERE id = :sid
                """),
                {"sid": session_id},
            ).fetchone()
        if row is None:
            raise SessionError(f"Session not found: {session_id}")
        return SessionRecord(**row._mapping)

    def list_sessions(self, project_path: Optional[str] = None) -> List[SessionRecord]:
        sql = """
            SELECT id, project_path, status, analysis_mode, current_phase,
                   total_files, files_analyzed, quality_score, last_error,
                   started_at, completed_at
            FROM doc_sessions
        """
        params = {}
        if project_path:
            sql += " WHERE project_path = :path"
            params["path"] = str(Path(project_path).expanduser().resolve())
        sql += " ORDER BY started_at DESC"
        with self._transaction("list_sessions") as session:
            rows = session.execute(text(sql), params).fetchall()
        return [SessionRecord(**row._mapping) for row in rows]

    def latest_session(self, project_path: str) -> Optional[SessionRecord]:
        """Most recent session for the path that has not completed."""
        for record in self.list_sessions(project_path):
            if record.status != SESSION_COMPLETED:
                return record
        return None

    def _set_status(self, session_id: str, status: str, error: Optional[str] = None) -> None:
        with self._transaction("set_status") as session:
            result = session.execute(
                text("""
                    UPDATE doc_sessions
                    SET status = :status,
                        last_error = :error,
                        completed_at = CASE WHEN :status = 'completed' THEN :now ELSE completed_at END,
                        last_checkpoint_at = :now
                    WHERE id = :sid
                """),
                {"sid": session_id, "status": status, "error": error, "now": utc_now()},
            )
            if result.rowcount == 0:
                raise SessionError(f"Session not found: {session_id}")

    def mark_running(self, session_id: str) -> None:
        self._set_status(session_id, SESSION_RUNNING)

    def complete_session(self, session_id: str) -> None:
        self._set_status(session_id, SESSION_COMPLETED)
        logger.info(f"Session {session_id} completed")

    def fail_session(self, session_id: str, error: str) -> None:
        self._set_status(session_id, SESSION_FAILED, error=error[:2000])
        logger.error(f"Session {session_id} failed: {error}")

    def clear_session(self, session_id: str) -> None:
        """Delete the session and every row that belongs to it."""
        with self._transaction("clear_session") as session:
            for table in _SESSION_TABLES:
                session.execute(
                    text(f"DELETE FROM {table} WHERE session_id = :sid"),
                    {"sid": session_id},
                )
            result = session.execute(
                text("DELETE FROM doc_sessions WHERE id = :sid"),
                {"sid": session_id},
            )
            if result.rowcount == 0:
                raise SessionError(f"Session not found: {session_id}")
        logger.info(f"Cleared session {session_id}")
