"""
Database facade: SQLAlchemy engine, session factory and transactional scope.

Uses DATABASE_URL (any SQLAlchemy URL); falls back to a local SQLite file.
Each Database instance owns its engine, so tests and the API server can run
against separate files without module-level state.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from backend_tokensale.config.env import get_database_url
from backend_tokensale.database.models import Base
from backend_tokensale.logging import get_logger

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_SEC = 15.0


def _redact_url(url: str) -> str:
    return url.split("?")[0].split("@")[-1].split("//")[-1]


class Database:
    """Engine + session factory for one database URL."""

    def __init__(self, url: str) -> None:
        self.url = url
        connect_args: dict[str, object] = {}
        if url.startswith("sqlite"):
            # Claims may arrive on FastAPI worker threads; waits on the write lock instead of failing fast
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = SQLITE_BUSY_TIMEOUT_SEC
        self._engine: Engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        self._session_factory = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=self._engine,
        )
        logger.info("database_engine_created", url=_redact_url(url))

    @property
    def engine(self) -> Engine:
        return self._engine

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist. Safe to call on every startup."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except Exception as e:
            logger.exception("database_schema_failed", error=str(e))
            raise
        logger.info("database_schema_ready", url=_redact_url(self.url))

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self._engine.dispose()


def get_database(url: str | None = None) -> Database:
    """
    Return a Database with its schema ensured.

    url: SQLAlchemy URL; defaults to DATABASE_URL / DATABASE_PATH / sqlite:///tokensale.db.
    """
    db = Database(url or get_database_url())
    db.ensure_schema()
    return db
