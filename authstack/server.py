"""Process entry point: connect to the database, then start serving HTTP.

On a failed database connection the error is logged, the engine is disposed
and the process exits with status 1. SIGINT/SIGTERM are handled by uvicorn,
which stops accepting connections and runs the app lifespan shutdown (engine
dispose).
"""

from __future__ import annotations

import logging
import sys
from typing import Callable, Optional

import uvicorn

from authstack.api.app import create_app
from authstack.core.settings import Settings
from authstack.db import session as db_session
from authstack.db.session import DBRuntime

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=LOG_FORMAT)
    # SQL echo is controlled by DB_ECHO, not the app log level.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def connect_database(settings: Settings) -> Optional[DBRuntime]:
    """Connect with the configured URL. Returns None (engine disposed, error logged) on failure."""
    return db_session.connect_database(settings.database_url, echo=settings.db_echo)


def start(settings: Optional[Settings] = None, *, run: Callable[..., None] = uvicorn.run) -> int:
    """Connect, build the app and serve until shutdown. Returns the process exit code."""
    settings = settings or Settings()

    db_rt = connect_database(settings)
    if db_rt is None:
        return 1

    try:
        app = create_app(settings, db=db_rt)
    except Exception:
        logger.exception("Failed to build application")
        db_rt.dispose()
        return 1

    logger.info("Server listening on http://%s:%d (env=%s)", settings.host, settings.port, settings.env)
    run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=settings.effective_log_level.lower(),
        proxy_headers=True,
    )
    logger.info("Server stopped")
    return 0


def main() -> None:
    settings = Settings()
    configure_logging(settings.effective_log_level)
    sys.exit(start(settings))


if __name__ == "__main__":
    main()
