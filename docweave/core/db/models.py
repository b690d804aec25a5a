"""
SQLAlchemy ORM models for the docweave checkpoint store.

One row-family per checkpoint granularity:
- DocSession: one documentation run (phase marker, counters, blob)
- CharacterizationInsight: one agent's output, keyed by (session, agent)
- FileTracking: discovery + status of each file in a session
- FileAnalysis: completed per-file analysis, keyed by (session, path)
- ModuleSummary: top-down agent output, keyed by (session, module_path)
- DomainSummary: consolidated domain documentation
- Node: derived facts (documentation entities, relations, parser facts)

JSON payloads are stored as TEXT; timestamps as ISO-8601 strings so the
same schema works unchanged on SQLite and PostgreSQL.
"""

from sqlalchemy import (
    Column, String, Integer, Float, Text, ForeignKey, Index, UniqueConstraint,
    PrimaryKeyConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


# =============================================================================
# Sessions
# =============================================================================

class DocSession(Base):
    """One documentation run.

    current_phase is the phase the run is in or will enter next;
    completed_phases (JSON list of ints) is the authoritative per-phase
    completion flag used on resume.
    """
    __tablename__ = "doc_sessions"
    __table_args__ = (
        Index("idx_doc_sessions_project", "project_path", "status"),
    )

    id = Column(String(36), primary_key=True)
    project_path = Column(Text, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending|running|completed|failed
    analysis_mode = Column(String(20), default="standard", nullable=False)

    # Phase tracking
    current_phase = Column(Integer, default=1, nullable=False)
    completed_phases = Column(Text, default="[]", nullable=False)
    characterization_turns = Column(Integer, default=0, nullable=False)

    # Progress
    total_files = Column(Integer, default=0, nullable=False)
    files_analyzed = Column(Integer, default=0, nullable=False)

    # Refinement / quality
    refinement_turn = Column(Integer, default=0, nullable=False)
    quality_score = Column(Float, default=0.0, nullable=False)
    quality_scores_history = Column(Text, nullable=True)

    # Opaque checkpoint blob (profile, phase metadata)
    checkpoint_data = Column(Text, nullable=True)

    last_error = Column(Text, nullable=True)
    started_at = Column(String(40), nullable=True)
    last_checkpoint_at = Column(String(40), nullable=True)
    completed_at = Column(String(40), nullable=True)

    insights = relationship("CharacterizationInsight", back_populates="session",
                            cascade="all, delete-orphan")
    files = relationship("FileTracking", back_populates="session",
                         cascade="all, delete-orphan")

    def __repr__(self):
        return f"<DocSession(id={self.id}, phase={self.current_phase}, status='{self.status}')>"


class CharacterizationInsight(Base):
    """Output of one agent (characterization or top-down) for one turn.

    At most one live row per (session_id, agent_name): re-runs overwrite.
    """
    __tablename__ = "characterization_insights"
    __table_args__ = (
        UniqueConstraint("session_id", "agent_name", name="uq_char_insight_agent"),
        Index("idx_char_insights_session", "session_id"),
    )

    id = Column(String(36), primary_key=True)
    session_id = Column(String(36), ForeignKey("doc_sessions.id", ondelete="CASCADE"), nullable=False)
    agent_name = Column(String(64), nullable=False)
    turn_number = Column(Integer, nullable=False)
    insight_json = Column(Text, nullable=False)
    confidence = Column(Float, default=1.0, nullable=False)
    created_at = Column(String(40), nullable=False)

    session = relationship("DocSession", back_populates="insights")

    def __repr__(self):
        return f"<CharacterizationInsight(agent='{self.agent_name}', turn={self.turn_number})>"


# =============================================================================
# Files
# =============================================================================

class FileTracking(Base):
    """Per-file processing status within a session."""
    __tablename__ = "file_tracking"
    __table_args__ = (
        PrimaryKeyConstraint("session_id", "file_path"),
        Index("idx_tracking_session_status", "session_id", "status"),
    )

    session_id = Column(String(36), ForeignKey("doc_sessions.id", ondelete="CASCADE"), nullable=False)
    file_path = Column(Text, nullable=False)
    content_hash = Column(String(64), nullable=False)
    line_count = Column(Integer, nullable=False, default=0)
    language = Column(String(32), nullable=True)
    status = Column(String(20), default="discovered", nullable=False)  # discovered|analyzing|analyzed|failed|unanalyzed
    discovered_at = Column(String(40), nullable=False)
    analyzed_at = Column(String(40), nullable=True)
    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, default=0, nullable=False)

    session = relationship("DocSession", back_populates="files")

    def __repr__(self):
        return f"<FileTracking(path='{self.file_path}', status='{self.status}')>"


class FileAnalysis(Base):
    """Completed analysis of a single file. Upsert on (session_id, file_path)."""
    __tablename__ = "file_analysis"
    __table_args__ = (
        UniqueConstraint("session_id", "file_path", name="uq_file_analysis_path"),
        Index("idx_file_analysis_session", "session_id"),
    )

    id = Column(String(36), primary_key=True)
    session_id = Column(String(36), ForeignKey("doc_sessions.id", ondelete="CASCADE"), nullable=False)
    file_path = Column(Text, nullable=False)

    language = Column(String(32), nullable=True)
    line_count = Column(Integer, nullable=False, default=0)
    complexity = Column(String(20), nullable=True)   # low|medium|high|critical
    tier = Column(String(20), nullable=False)        # ProcessingTier name
    purpose_summary = Column(Text, nullable=True)

    content = Column(Text, nullable=True)
    diagram = Column(Text, nullable=True)
    related_files = Column(Text, nullable=True)      # JSON [{path, relationship}]
    token_count = Column(Integer, default=0, nullable=False)

    # Deep Research history (Important/Core tiers)
    research_iterations = Column(Text, nullable=True)
    research_aspects = Column(Text, nullable=True)

    analyzed_at = Column(String(40), nullable=False)

    def __repr__(self):
        return f"<FileAnalysis(path='{self.file_path}', tier='{self.tier}')>"


# =============================================================================
# Top-Down / Consolidation
# =============================================================================

class ModuleSummary(Base):
    """Top-down insight rows (module_path = 'top_down:<agent>')."""
    __tablename__ = "module_summaries"
    __table_args__ = (
        UniqueConstraint("session_id", "module_path", name="uq_module_summary_path"),
    )

    id = Column(String(36), primary_key=True)
    session_id = Column(String(36), ForeignKey("doc_sessions.id", ondelete="CASCADE"), nullable=False)
    module_path = Column(Text, nullable=False)
    module_name = Column(String(255), nullable=False)
    file_count = Column(Integer, default=0, nullable=False)
    role = Column(String(64), nullable=True)
    purpose = Column(Text, nullable=True)
    sections = Column(Text, nullable=False)          # JSON payload
    confidence = Column(Float, default=1.0, nullable=False)
    synthesized_at = Column(String(40), nullable=False)

    def __repr__(self):
        return f"<ModuleSummary(path='{self.module_path}')>"


class DomainSummary(Base):
    """Consolidated documentation for one domain (group of files)."""
    __tablename__ = "domain_summaries"
    __table_args__ = (
        UniqueConstraint("session_id", "domain_label", name="uq_domain_summary_label"),
    )

    id = Column(String(36), primary_key=True)
    session_id = Column(String(36), ForeignKey("doc_sessions.id", ondelete="CASCADE"), nullable=False)
    domain_label = Column(String(255), nullable=False)
    domain_description = Column(Text, nullable=True)
    importance = Column(String(20), default="medium", nullable=False)
    source_count = Column(Integer, default=0, nullable=False)
    source_paths = Column(Text, nullable=False)       # JSON list
    content = Column(Text, nullable=True)
    diagram = Column(Text, nullable=True)
    related_files = Column(Text, nullable=True)       # JSON list
    gaps = Column(Text, nullable=True)                # JSON list
    token_count = Column(Integer, default=0, nullable=False)
    created_at = Column(String(40), nullable=False)

    def __repr__(self):
        return f"<DomainSummary(label='{self.domain_label}', files={self.source_count})>"


# =============================================================================
# Derived facts
# =============================================================================

class Node(Base):
    """A derived fact attached to a session.

    node_id conventions:
    - doc:<path>              documentation entity for a file
    - rel:<path>:<other>      relation from a file to a related file
    - fact:<path>:<name>      parser-extracted structural fact
    """
    __tablename__ = "nodes"
    __table_args__ = (
        PrimaryKeyConstraint("session_id", "node_id"),
        Index("idx_nodes_session_path", "session_id", "path"),
    )

    session_id = Column(String(36), ForeignKey("doc_sessions.id", ondelete="CASCADE"), nullable=False)
    node_id = Column(Text, nullable=False)
    node_type = Column(String(32), nullable=False)   # documentation|relation|definition|import
    path = Column(Text, nullable=True)
    name = Column(Text, nullable=False)
    metadata_json = Column(Text, nullable=True)
    tier = Column(String(20), default="fact", nullable=False)  # fact|inference
    confidence = Column(Float, default=1.0, nullable=False)
    updated_at = Column(String(40), nullable=False)

    def __repr__(self):
        return f"<Node(id='{self.node_id}', type='{self.node_type}')>"
