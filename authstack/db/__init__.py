"""Database package.

SQLAlchemy models + engine/session management. Schema changes ship as Alembic
revisions under ``alembic/versions``.
"""

from .base import Base
from .session import DBRuntime, check_database, connect_database, create_engine_and_sessionmaker

__all__ = ["Base", "DBRuntime", "check_database", "connect_database", "create_engine_and_sessionmaker"]
