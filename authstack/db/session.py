from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DBRuntime:
    """Engine plus the session factory bound to it. Owned by whoever connected."""

    engine: Engine
    SessionLocal: sessionmaker

    def dispose(self) -> None:
        self.engine.dispose()


def _is_sqlite(database_url: str) -> bool:
    return database_url.startswith("sqlite")


def _engine_options(database_url: str, echo: bool) -> Dict[str, Any]:
    opts: Dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
    if _is_sqlite(database_url):
        # Sync endpoints run in FastAPI's threadpool; a file DB needs no pooling.
        opts["connect_args"] = {"check_same_thread": False, "timeout": 5}
        opts["poolclass"] = NullPool
    return opts


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    # Sessions and accounts rely on ON DELETE CASCADE from users.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):  # pragma: no cover
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute("PRAGMA foreign_keys=ON")
        finally:
            cursor.close()


def create_engine_and_sessionmaker(database_url: str, *, echo: bool = False) -> DBRuntime:
    """Build the engine and session factory without touching the database."""
    engine = create_engine(database_url, **_engine_options(database_url, echo))
    if _is_sqlite(database_url):
        _enable_sqlite_foreign_keys(engine)

    # Services hand ORM rows back to routes after commit.
    SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return DBRuntime(engine=engine, SessionLocal=SessionLocal)


def check_database(engine: Engine) -> None:
    """Open a connection and run a trivial query. Raises on failure."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def connect_database(database_url: str, *, echo: bool = False) -> Optional[DBRuntime]:
    """Create the runtime and prove the database answers.

    On failure the error is logged, the engine is disposed and None is returned.
    """
    db_rt: Optional[DBRuntime] = None
    try:
        db_rt = create_engine_and_sessionmaker(database_url, echo=echo)
        check_database(db_rt.engine)
    except Exception:
        logger.exception("Failed to connect to database")
        if db_rt is not None:
            db_rt.dispose()
        return None
    logger.info("Database connected (%s)", db_rt.engine.url.render_as_string(hide_password=True))
    return db_rt
