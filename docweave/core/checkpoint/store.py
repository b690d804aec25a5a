"""Checkpoint store: persisted state at three granularities.

- Session / phase: doc_sessions (phase marker, counters, checkpoint blob)
- Agent insight: characterization_insights, keyed by (session, agent)
- File analysis: file_analysis + nodes + file_tracking, keyed by (session, path)

Every public write is one ``db.get_session()`` transaction, so either all
of its statements land or none do. SQLAlchemy failures are re-raised as
StoreError (retryable) after the rollback.

Writes are upserts: replaying a write with the same key and payload
leaves the same rows, so a crash between "computed" and "confirmed" is
fixed by recomputing and rewriting.
"""

import json
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Set
from uuid import uuid4

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants import (
    FILE_ANALYZED,
    FILE_ANALYZING,
    FILE_DISCOVERED,
    FILE_FAILED,
    FILE_UNANALYZED,
    TOP_DOWN_PREFIX,
    TURN1_AGENTS,
    TURN2_AGENTS,
)
from ..db import DatabaseManager
from ..errors import SessionError, StoreError
from ..models import (
    AgentInsight,
    AnalysisProgress,
    CheckpointState,
    DerivedFact,
    DomainInsight,
    FileInsight,
    Importance,
    ProcessingTier,
    RelatedFile,
)
from ..utils.text_utils import utc_now

logger = logging.getLogger(__name__)


def _loads(raw: Optional[str], default: Any) -> Any:
    if not raw:
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning(f"Discarding malformed checkpoint JSON ({len(raw)} chars)")
        return default


class CheckpointStore:
    """Transactional checkpoint operations for one database."""

    def __init__(self, db: DatabaseManager, max_retries: int = 3):
        self._db = db
        self.max_retries = max_retries

    @contextmanager
    def _transaction(self, what: str) -> Iterator[Session]:
        try:
            with self._db.get_session() as session:
                yield session
        except SQLAlchemyError as e:
            logger.error(f"Checkpoint {what} failed (rolled back): {e}")
            raise StoreError(f"{what} failed: {e}") from e

    # ── Session / Phase ─────────────────────────────────────────────────

    def _require_session(self, session: Session, session_id: str):
        row = session.execute(
            text("""
                SELECT id, current_phase, completed_phases, checkpoint_data,
                       total_files, files_analyzed, characterization_turns,
                       refinement_turn
                FROM doc_sessions WHERE id = :sid
            """),
            {"sid": session_id},
        ).fetchone()
        if row is None:
            raise SessionError(f"Session not found: {session_id}")
        return row

    def mark_phase_complete(
        self,
        session_id: str,
        phase: int,
        checkpoint_data: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Record phase completion. Returns the stored last-completed phase.

        The marker only moves forward: completing a phase at or below the
        current marker leaves it unchanged. checkpoint_data is merged into
        the session blob either way.
        """
        with self._transaction("mark_phase_complete") as session:
            row = self._require_session(session, session_id)
            completed: List[int] = _loads(row.completed_phases, [])
            last = max(completed, default=0)
            blob = _loads(row.checkpoint_data, {})
            if checkpoint_data:
                blob.update(checkpoint_data)

            if phase > last:
                completed.append(phase)
                last = phase
            current_phase = max(row.current_phase, min(last + 1, 6))

            session.execute(
                text("""
                    UPDATE doc_sessions
                    SET completed_phases = :completed,
                        current_phase = :current_phase,
                        checkpoint_data = :blob,
                        files_analyzed = (
                            SELECT COUNT(*) FROM file_tracking
                            WHERE session_id = :sid AND status = :analyzed
                        ),
                        last_checkpoint_at = :now
                    WHERE id = :sid
                """),
                {
                    "sid": session_id,
                    "completed": json.dumps(sorted(completed)),
                    "current_phase": current_phase,
                    "blob": json.dumps(blob),
                    "analyzed": FILE_ANALYZED,
                    "now": utc_now(),
                },
            )
        return last

    def update_checkpoint_data(self, session_id: str, data: Dict[str, Any]) -> None:
        """Merge keys into the session's checkpoint blob (no phase change)."""
        with self._transaction("update_checkpoint_data") as session:
            row = self._require_session(session, session_id)
            blob = _loads(row.checkpoint_data, {})
            blob.update(data)
            session.execute(
                text("""
                    UPDATE doc_sessions
                    SET checkpoint_data = :blob, last_checkpoint_at = :now
                    WHERE id = :sid
                """),
                {"sid": session_id, "blob": json.dumps(blob), "now": utc_now()},
            )

    def bump_characterization_turns(self, session_id: str, turns: int = 1) -> int:
        with self._transaction("bump_characterization_turns") as session:
            row = self._require_session(session, session_id)
            new_value = row.characterization_turns + turns
            session.execute(
                text("UPDATE doc_sessions SET characterization_turns = :v WHERE id = :sid"),
                {"v": new_value, "sid": session_id},
            )
        return new_value

    def load_checkpoint_state(self, session_id: str) -> CheckpointState:
        """Snapshot of phase and progress, cross-checked against row signals.

        last_completed_phase = max(explicit per-phase flags,
                                   current_phase - 1,
                                   completion signals)
        Signals:
        - domain summaries exist                         => 5
        - every planned top-down agent has a summary     => 4
        - files tracked and none left discovered/analyzing => 3
        - files tracked                                  => 2
        - project profile stored                         => 1
        """
        with self._transaction("load_checkpoint_state") as session:
            row = self._require_session(session, session_id)
            params = {"sid": session_id}

            blob = _loads(row.checkpoint_data, {})
            completed = _loads(row.completed_phases, [])
            flag_phase = max(completed, default=0)

            domain_count = session.execute(
                text("SELECT COUNT(*) FROM domain_summaries WHERE session_id = :sid"), params,
            ).scalar() or 0
            top_down_done = {
                r.module_path[len(TOP_DOWN_PREFIX):]
                for r in session.execute(
                    text("""
                        SELECT module_path FROM module_summaries
                        WHERE session_id = :sid AND module_path LIKE :prefix
                    """),
                    {"sid": session_id, "prefix": f"{TOP_DOWN_PREFIX}%"},
                )
            }
            counts = session.execute(
                text("""
                    SELECT
                        COUNT(*) AS total,
                        COALESCE(SUM(CASE WHEN status = :analyzed THEN 1 ELSE 0 END), 0) AS analyzed,
                        COALESCE(SUM(CASE WHEN status = :failed THEN 1 ELSE 0 END), 0) AS failed,
                        COALESCE(SUM(CASE WHEN status IN (:discovered, :analyzing)
                                          OR (status = :failed AND retry_count < :max_retries)
                                     THEN 1 ELSE 0 END), 0) AS open
                    FROM file_tracking WHERE session_id = :sid AND status != :unanalyzed
                """),
                {
                    "sid": session_id,
                    "unanalyzed": FILE_UNANALYZED,
                    "analyzed": FILE_ANALYZED,
                    "failed": FILE_FAILED,
                    "discovered": FILE_DISCOVERED,
                    "analyzing": FILE_ANALYZING,
                    "max_retries": self.max_retries,
                },
            ).fetchone()
            agents = {
                r.agent_name
                for r in session.execute(
                    text("SELECT agent_name FROM characterization_insights WHERE session_id = :sid"),
                    params,
                )
            }

        signal_phase = 0
        planned_top_down = blob.get("top_down_agents")
        if domain_count > 0:
            signal_phase = 5
        elif planned_top_down is not None and set(planned_top_down) <= top_down_done:
            signal_phase = 4
        elif counts.total > 0 and counts.open == 0 and "bottom_up_started" in blob:
            signal_phase = 3
        elif counts.total > 0 and blob.get("discovery_complete"):
            signal_phase = 2
        elif blob.get("profile") and set(TURN1_AGENTS + TURN2_AGENTS) <= agents:
            signal_phase = 1

        last_completed = max(flag_phase, row.current_phase - 1, signal_phase)
        if last_completed > flag_phase:
            logger.info(
                f"Session {session_id}: completion signals put phase at {last_completed} "
                f"(explicit marker {flag_phase})"
            )

        return CheckpointState(
            session_id=session_id,
            last_completed_phase=last_completed,
            total_files=counts.total,
            analyzed_files=counts.analyzed,
            failed_files=counts.failed,
            completed_agents=agents | {f"{TOP_DOWN_PREFIX}{a}" for a in top_down_done},
            characterization_turns=row.characterization_turns,
            refinement_turn=row.refinement_turn,
            checkpoint_data=blob,
        )

    # ── Agent Insights ──────────────────────────────────────────────────

    def record_agent_insight(self, session_id: str, insight: AgentInsight) -> None:
        """Upsert one agent's output. A rerun overwrites the previous row."""
        with self._transaction("record_agent_insight") as session:
            session.execute(
                text("""
                    INSERT INTO characterization_insights (
                        id, session_id, agent_name, turn_number,
                        insight_json, confidence, created_at
                    ) VALUES (
                        :id, :sid, :agent, :turn, :payload, :confidence, :now
                    )
                    ON CONFLICT (session_id, agent_name)
                    DO UPDATE SET
                        turn_number = excluded.turn_number,
                        insight_json = excluded.insight_json,
                        confidence = excluded.confidence,
                        created_at = excluded.created_at
                """),
                {
                    "id": str(uuid4()),
                    "sid": session_id,
                    "agent": insight.agent_name,
                    "turn": insight.turn,
                    "payload": json.dumps({
                        "payload": insight.payload,
                        "is_fallback": insight.is_fallback,
                    }),
                    "confidence": insight.confidence,
                    "now": utc_now(),
                },
            )

    def load_agent_insights(self, session_id: str, turn: Optional[int] = None) -> List[AgentInsight]:
        sql = """
            SELECT agent_name, turn_number, insight_json, confidence
            FROM characterization_insights
            WHERE session_id = :sid
        """
        params: Dict[str, Any] = {"sid": session_id}
        if turn is not None:
            sql += " AND turn_number = :turn"
            params["turn"] = turn
        sql += " ORDER BY turn_number, agent_name"

        with self._transaction("load_agent_insights") as session:
            rows = session.execute(text(sql), params).fetchall()

        insights = []
        for row in rows:
            stored = _loads(row.insight_json, {})
            insights.append(AgentInsight(
                agent_name=row.agent_name,
                turn=row.turn_number,
                payload=stored.get("payload", {}),
                confidence=row.confidence,
                is_fallback=bool(stored.get("is_fallback", False)),
            ))
        return insights

    def completed_agent_names(self, session_id: str) -> Set[str]:
        with self._transaction("completed_agent_names") as session:
            rows = session.execute(
                text("SELECT agent_name FROM characterization_insights WHERE session_id = :sid"),
                {"sid": session_id},
            ).fetchall()
        return {row.agent_name for row in rows}

    # ── File Tracking ───────────────────────────────────────────────────

    def track_files(self, session_id: str, files: Sequence[Dict[str, Any]]) -> int:
        """Register discovered files and set the session total, atomically.

        Each item: {path, content_hash, line_count, language, status?}.
        Existing rows keep their status; only file metadata is refreshed.
        """
        now = utc_now()
        with self._transaction("track_files") as session:
            self._require_session(session, session_id)
            for item in files:
                session.execute(
                    text("""
                        INSERT INTO file_tracking (
                            session_id, file_path, content_hash, line_count,
                            language, status, discovered_at, retry_count
                        ) VALUES (
                            :sid, :path, :hash, :lines, :language, :status, :now, 0
                        )
                        ON CONFLICT (session_id, file_path)
                        DO UPDATE SET
                            content_hash = excluded.content_hash,
                            line_count = excluded.line_count,
                            language = excluded.language
                    """),
                    {
                        "sid": session_id,
                        "path": item["path"],
                        "hash": item.get("content_hash", ""),
                        "lines": item.get("line_count", 0),
                        "language": item.get("language"),
                        "status": item.get("status", FILE_DISCOVERED),
                        "now": now,
                    },
                )
            total = session.execute(
                text("""
                    SELECT COUNT(*) FROM file_tracking
                    WHERE session_id = :sid AND status != :unanalyzed
                """),
                {"sid": session_id, "unanalyzed": FILE_UNANALYZED},
            ).scalar() or 0
            session.execute(
                text("UPDATE doc_sessions SET total_files = :total WHERE id = :sid"),
                {"total": total, "sid": session_id},
            )
        return total

    def _set_file_status(self, session_id: str, file_path: str, status: str,
                         error: Optional[str] = None, bump_retry: bool = False) -> None:
        with self._transaction(f"mark_file_{status}") as session:
            session.execute(
                text(f"""
                    UPDATE file_tracking
                    SET status = :status,
                        error_message = :error
                        {", retry_count = retry_count + 1" if bump_retry else ""}
                    WHERE session_id = :sid AND file_path = :path
                """),
                {"sid": session_id, "path": file_path, "status": status, "error": error},
            )

    def mark_file_analyzing(self, session_id: str, file_path: str) -> None:
        self._set_file_status(session_id, file_path, FILE_ANALYZING)

    def mark_file_failed(self, session_id: str, file_path: str, error: str) -> None:
        """status='failed', error_message=error, retry_count + 1."""
        self._set_file_status(session_id, file_path, FILE_FAILED, error=error[:2000], bump_retry=True)

    def pending_files(
        self,
        session_id: str,
        limit: int = 500,
        offset: int = 0,
        include_retryable: bool = True,
    ) -> List[str]:
        """Files still needing analysis, ordered by path, paginated.

        Includes failed files whose retry budget is not exhausted.
        """
        statuses = "(:discovered, :analyzing)"
        retry_clause = ""
        if include_retryable:
            retry_clause = " OR (status = :failed AND retry_count < :max_retries)"
        with self._transaction("pending_files") as session:
            rows = session.execute(
                text(f"""
                    SELECT file_path FROM file_tracking
                    WHERE session_id = :sid
                      AND (status IN {statuses}{retry_clause})
                    ORDER BY file_path
                    LIMIT :limit OFFSET :offset
                """),
                {
                    "sid": session_id,
                    "discovered": FILE_DISCOVERED,
                    "analyzing": FILE_ANALYZING,
                    "failed": FILE_FAILED,
                    "max_retries": self.max_retries,
                    "limit": limit,
                    "offset": offset,
                },
            ).fetchall()
        return [row.file_path for row in rows]

    def iter_pending_files(self, session_id: str, page_size: int = 500,
                           include_retryable: bool = True) -> List[str]:
        """All pending files, fetched page by page."""
        files: List[str] = []
        offset = 0
        while True:
            page = self.pending_files(session_id, limit=page_size, offset=offset,
                                      include_retryable=include_retryable)
            files.extend(page)
            if len(page) < page_size:
                return files
            offset += page_size

    def retryable_failed_files(self, session_id: str) -> List[str]:
        with self._transaction("retryable_failed_files") as session:
            rows = session.execute(
                text("""
                    SELECT file_path FROM file_tracking
                    WHERE session_id = :sid AND status = :failed
                      AND retry_count < :max_retries
                    ORDER BY file_path
                """),
                {"sid": session_id, "failed": FILE_FAILED, "max_retries": self.max_retries},
            ).fetchall()
        return [row.file_path for row in rows]

    def analysis_progress(self, session_id: str) -> AnalysisProgress:
        """(total, analyzed, failed) from file_tracking; skipped files excluded."""
        with self._transaction("analysis_progress") as session:
            row = session.execute(
                text("""
                    SELECT
                        COALESCE(SUM(CASE WHEN status != :unanalyzed THEN 1 ELSE 0 END), 0) AS total,
                        COALESCE(SUM(CASE WHEN status = :analyzed THEN 1 ELSE 0 END), 0) AS analyzed,
                        COALESCE(SUM(CASE WHEN status = :failed THEN 1 ELSE 0 END), 0) AS failed
                    FROM file_tracking WHERE session_id = :sid
                """),
                {
                    "sid": session_id,
                    "unanalyzed": FILE_UNANALYZED,
                    "analyzed": FILE_ANALYZED,
                    "failed": FILE_FAILED,
                },
            ).fetchone()
        return AnalysisProgress(total=row.total, analyzed=row.analyzed, failed=row.failed)

    # ── File Analysis ───────────────────────────────────────────────────

    def record_file_analysis(
        self,
        session_id: str,
        insight: FileInsight,
        facts: Iterable[DerivedFact] = (),
    ) -> None:
        """Atomically persist one completed file analysis.

        One transaction:
        1. upsert the file_analysis row
        2. replace the file's derived facts in nodes
        3. mark file_tracking 'analyzed'
        4. increment doc_sessions.files_analyzed (only on first completion)
        """
        now = utc_now()
        facts = list(facts)
        with self._transaction("record_file_analysis") as session:
            self._require_session(session, session_id)

            session.execute(
                text("""
                    INSERT INTO file_analysis (
                        id, session_id, file_path, language, line_count, complexity,
                        tier, purpose_summary, content, diagram, related_files,
                        token_count, research_iterations, research_aspects, analyzed_at
                    ) VALUES (
                        :id, :sid, :path, :language, :lines, :complexity,
                        :tier, :purpose, :content, :diagram, :related,
                        :tokens, :iterations, :aspects, :now
                    )
                    ON CONFLICT (session_id, file_path)
                    DO UPDATE SET
                        language = excluded.language,
                        line_count = excluded.line_count,
                        complexity = excluded.complexity,
                        tier = excluded.tier,
                        purpose_summary = excluded.purpose_summary,
                        content = excluded.content,
                        diagram = excluded.diagram,
                        related_files = excluded.related_files,
                        token_count = excluded.token_count,
                        research_iterations = excluded.research_iterations,
                        research_aspects = excluded.research_aspects,
                        analyzed_at = excluded.analyzed_at
                """),
                {
                    "id": str(uuid4()),
                    "sid": session_id,
                    "path": insight.file_path,
                    "language": insight.language,
                    "lines": insight.line_count,
                    "complexity": insight.complexity,
                    "tier": insight.tier.name,
                    "purpose": insight.purpose,
                    "content": insight.content,
                    "diagram": insight.diagram,
                    "related": json.dumps([rf.to_dict() for rf in insight.related_files]),
                    "tokens": insight.token_count,
                    "iterations": (json.dumps(insight.research_iterations)
                                   if insight.research_iterations is not None else None),
                    "aspects": (json.dumps(insight.research_aspects)
                                if insight.research_aspects is not None else None),
                    "now": now,
                },
            )

            # Replace rather than accumulate: replaying leaves the same fact set
            session.execute(
                text("DELETE FROM nodes WHERE session_id = :sid AND path = :path"),
                {"sid": session_id, "path": insight.file_path},
            )
            for fact in facts:
                session.execute(
                    text("""
                        INSERT INTO nodes (
                            session_id, node_id, node_type, path, name,
                            metadata_json, tier, confidence, updated_at
                        ) VALUES (
                            :sid, :node_id, :node_type, :path, :name,
                            :metadata, :tier, :confidence, :now
                        )
                        ON CONFLICT (session_id, node_id)
                        DO UPDATE SET
                            node_type = excluded.node_type,
                            path = excluded.path,
                            name = excluded.name,
                            metadata_json = excluded.metadata_json,
                            tier = excluded.tier,
                            confidence = excluded.confidence,
                            updated_at = excluded.updated_at
                    """),
                    {
                        "sid": session_id,
                        "node_id": fact.node_id,
                        "node_type": fact.node_type,
                        "path": fact.path if fact.path is not None else insight.file_path,
                        "name": fact.name,
                        "metadata": json.dumps(fact.metadata),
                        "tier": fact.tier,
                        "confidence": fact.confidence,
                        "now": now,
                    },
                )

            previous = session.execute(
                text("""
                    SELECT status FROM file_tracking
                    WHERE session_id = :sid AND file_path = :path
                """),
                {"sid": session_id, "path": insight.file_path},
            ).scalar()

            session.execute(
                text("""
                    INSERT INTO file_tracking (
                        session_id, file_path, content_hash, line_count, language,
                        status, discovered_at, analyzed_at, retry_count
                    ) VALUES (
                        :sid, :path, '', :lines, :language, :analyzed, :now, :now, 0
                    )
                    ON CONFLICT (session_id, file_path)
                    DO UPDATE SET
                        status = excluded.status,
                        analyzed_at = excluded.analyzed_at,
                        error_message = NULL
                """),
                {
                    "sid": session_id,
                    "path": insight.file_path,
                    "lines": insight.line_count,
                    "language": insight.language,
                    "analyzed": FILE_ANALYZED,
                    "now": now,
                },
            )

            if previous != FILE_ANALYZED:
                session.execute(
                    text("""
                        UPDATE doc_sessions
                        SET files_analyzed = files_analyzed + 1,
                            last_checkpoint_at = :now
                        WHERE id = :sid
                    """),
                    {"sid": session_id, "now": now},
                )

    def load_file_insights(self, session_id: str) -> List[FileInsight]:
        """Every completed file analysis, ordered by path."""
        with self._transaction("load_file_insights") as session:
            rows = session.execute(
                text("""
                    SELECT file_path, language, line_count, complexity, tier,
                           purpose_summary, content, diagram, related_files,
                           token_count, research_iterations, research_aspects
                    FROM file_analysis
                    WHERE session_id = :sid
                    ORDER BY file_path
                """),
                {"sid": session_id},
            ).fetchall()

        insights = []
        for row in rows:
            tier = ProcessingTier.parse(row.tier)
            related = [
                rf for rf in (RelatedFile.from_dict(d) for d in _loads(row.related_files, []))
                if rf is not None
            ]
            insights.append(FileInsight(
                file_path=row.file_path,
                purpose=row.purpose_summary or "",
                tier=tier,
                importance=tier.importance,
                language=row.language,
                line_count=row.line_count or 0,
                complexity=row.complexity or "low",
                content=row.content or "",
                diagram=row.diagram,
                related_files=related,
                token_count=row.token_count or 0,
                research_iterations=_loads(row.research_iterations, None),
                research_aspects=_loads(row.research_aspects, None),
            ))
        return insights

    def load_facts(self, session_id: str, file_path: Optional[str] = None) -> List[DerivedFact]:
        sql = "SELECT node_id, node_type, path, name, metadata_json, tier, confidence FROM nodes WHERE session_id = :sid"
        params: Dict[str, Any] = {"sid": session_id}
        if file_path is not None:
            sql += " AND path = :path"
            params["path"] = file_path
        sql += " ORDER BY node_id"
        with self._transaction("load_facts") as session:
            rows = session.execute(text(sql), params).fetchall()
        return [
            DerivedFact(
                node_id=row.node_id,
                node_type=row.node_type,
                name=row.name,
                path=row.path,
                metadata=_loads(row.metadata_json, {}),
                tier=row.tier,
                confidence=row.confidence,
            )
            for row in rows
        ]

    # ── Top-Down Module Summaries ───────────────────────────────────────

    def record_module_summary(
        self,
        session_id: str,
        module_path: str,
        module_name: str,
        payload: Dict[str, Any],
        confidence: float = 1.0,
        role: Optional[str] = None,
        purpose: Optional[str] = None,
        file_count: int = 0,
    ) -> None:
        with self._transaction("record_module_summary") as session:
            session.execute(
                text("""
                    INSERT INTO module_summaries (
                        id, session_id, module_path, module_name, file_count,
                        role, purpose, sections, confidence, synthesized_at
                    ) VALUES (
                        :id, :sid, :path, :name, :file_count,
                        :role, :purpose, :sections, :confidence, :now
                    )
                    ON CONFLICT (session_id, module_path)
                    DO UPDATE SET
                        module_name = excluded.module_name,
                        file_count = excluded.file_count,
                        role = excluded.role,
                        purpose = excluded.purpose,
                        sections = excluded.sections,
                        confidence = excluded.confidence,
                        synthesized_at = excluded.synthesized_at
                """),
                {
                    "id": str(uuid4()),
                    "sid": session_id,
                    "path": module_path,
                    "name": module_name,
                    "file_count": file_count,
                    "role": role,
                    "purpose": purpose,
                    "sections": json.dumps(payload),
                    "confidence": confidence,
                    "now": utc_now(),
                },
            )

    def load_module_summaries(self, session_id: str, prefix: str = "") -> Dict[str, Dict[str, Any]]:
        """module_path -> {payload, confidence, role, purpose}."""
        with self._transaction("load_module_summaries") as session:
            rows = session.execute(
                text("""
                    SELECT module_path, sections, confidence, role, purpose
                    FROM module_summaries
                    WHERE session_id = :sid AND module_path LIKE :prefix
                    ORDER BY module_path
                """),
                {"sid": session_id, "prefix": f"{prefix}%"},
            ).fetchall()
        return {
            row.module_path: {
                "payload": _loads(row.sections, {}),
                "confidence": row.confidence,
                "role": row.role,
                "purpose": row.purpose,
            }
            for row in rows
        }

    # ── Domain Summaries ────────────────────────────────────────────────

    def record_domain_summaries(self, session_id: str, domains: Sequence[DomainInsight]) -> None:
        """Replace the session's domain summaries in one transaction."""
        now = utc_now()
        with self._transaction("record_domain_summaries") as session:
            session.execute(
                text("DELETE FROM domain_summaries WHERE session_id = :sid"),
                {"sid": session_id},
            )
            for domain in domains:
                session.execute(
                    text("""
                        INSERT INTO domain_summaries (
                            id, session_id, domain_label, domain_description, importance,
                            source_count, source_paths, content, diagram, related_files,
                            gaps, token_count, created_at
                        ) VALUES (
                            :id, :sid, :label, :description, :importance,
                            :count, :paths, :content, :diagram, :related,
                            :gaps, :tokens, :now
                        )
                    """),
                    {
                        "id": str(uuid4()),
                        "sid": session_id,
                        "label": domain.name,
                        "description": domain.description,
                        "importance": domain.importance.value,
                        "count": len(domain.files),
                        "paths": json.dumps(domain.files),
                        "content": domain.content,
                        "diagram": domain.diagram,
                        "related": json.dumps([rf.to_dict() for rf in domain.related_files]),
                        "gaps": json.dumps(domain.gaps),
                        "tokens": domain.token_count,
                        "now": now,
                    },
                )

    def load_domain_summaries(self, session_id: str) -> List[DomainInsight]:
        with self._transaction("load_domain_summaries") as session:
            rows = session.execute(
                text("""
                    SELECT domain_label, domain_description, importance, source_paths,
                           content, diagram, related_files, gaps, token_count
                    FROM domain_summaries
                    WHERE session_id = :sid
                    ORDER BY domain_label
                """),
                {"sid": session_id},
            ).fetchall()
        return [
            DomainInsight(
                name=row.domain_label,
                description=row.domain_description or "",
                importance=Importance.parse(row.importance),
                files=_loads(row.source_paths, []),
                content=row.content or "",
                diagram=row.diagram,
                related_files=[
                    rf for rf in (RelatedFile.from_dict(d) for d in _loads(row.related_files, []))
                    if rf is not None
                ],
                gaps=_loads(row.gaps, []),
                token_count=row.token_count or 0,
            )
            for row in rows
        ]

    # ── Refinement ──────────────────────────────────────────────────────

    def load_refinement_state(self, session_id: str):
        """(refinement_turn, quality score history as list of dicts)."""
        with self._transaction("load_refinement_state") as session:
            row = session.execute(
                text("""
                    SELECT refinement_turn, quality_scores_history
                    FROM doc_sessions WHERE id = :sid
                """),
                {"sid": session_id},
            ).fetchone()
        if row is None:
            raise SessionError(f"Session not found: {session_id}")
        return row.refinement_turn or 0, _loads(row.quality_scores_history, [])

    def store_refinement_turn(self, session_id: str, turn: int, score: float,
                              history: List[Dict[str, Any]]) -> None:
        with self._transaction("store_refinement_turn") as session:
            session.execute(
                text("""
                    UPDATE doc_sessions
                    SET refinement_turn = :turn,
                        quality_score = :score,
                        quality_scores_history = :history,
                        last_checkpoint_at = :now
                    WHERE id = :sid
                """),
                {
                    "sid": session_id,
                    "turn": turn,
                    "score": score,
                    "history": json.dumps(history),
                    "now": utc_now(),
                },
            )
