"""Database connection and session management.

DatabaseManager owns a single SQLAlchemy engine and hands out
transactional sessions. Every ``with db.get_session()`` block is one
transaction: it commits when the block exits normally and rolls back
on any exception (including cancellation and KeyboardInterrupt), so a
unit of work is never partially committed.
"""

import logging
import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Engine + session factory for the checkpoint store."""

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self._is_sqlite = database_url.startswith("sqlite")

        engine_kwargs = {"echo": echo, "future": True}
        if self._is_sqlite:
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same in-memory DB
                engine_kwargs["poolclass"] = StaticPool
            else:
                self._ensure_parent_dir(database_url)
        else:
            engine_kwargs["pool_pre_ping"] = True

        self.engine: Engine = create_engine(database_url, **engine_kwargs)
        if self._is_sqlite:
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._lock = threading.RLock()
        logger.debug(f"DatabaseManager initialized for {self._safe_url()}")

    @staticmethod
    def _ensure_parent_dir(database_url: str) -> None:
        db_path = database_url.split("///", 1)[-1]
        if db_path:
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)

    def _safe_url(self) -> str:
        return self.engine.url.render_as_string(hide_password=True)

    def create_tables(self) -> None:
        """Create all tables that do not exist yet."""
        Base.metadata.create_all(self.engine)
        logger.info("Database tables ensured")

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """Transactional session scope.

        Commits on normal exit; rolls back on any exception and re-raises.
        """
        # SQLite has a single writer; serialize in-process sessions so a
        # shared connection never interleaves two transactions.
        lock = self._lock if self._is_sqlite else nullcontext()
        with lock:
            session = self._session_factory()
            try:
                yield session
                session.commit()
            except BaseException:
                session.rollback()
                raise
            finally:
                session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def get_database_manager(database_url: str, create: bool = True) -> DatabaseManager:
    """Factory: build a DatabaseManager and ensure its schema exists."""
    db = DatabaseManager(database_url)
    if create:
        db.create_tables()
    return db
