"""authstack command line.

  authstack serve                 connect to the database and start the HTTP server
  authstack migrate [revision]    apply Alembic migrations (default: head)
  authstack create-db             create tables directly from the models (dev only)
  authstack generate-secret       print a random value for AUTH_SECRET
"""

from __future__ import annotations

import argparse
import logging
import secrets
import sys
from pathlib import Path
from typing import List, Optional

from authstack.core.settings import Settings
from authstack.server import configure_logging, connect_database, start

logger = logging.getLogger(__name__)


def generate_secret(nbytes: int = 32) -> str:
    return secrets.token_hex(nbytes)


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    return start(settings)


def _cmd_migrate(args: argparse.Namespace, settings: Settings) -> int:
    from alembic import command
    from alembic.config import Config

    ini = Path(args.config)
    if not ini.is_file():
        logger.error("Alembic config not found: %s", ini)
        return 2
    cfg = Config(str(ini))
    cfg.set_main_option("sqlalchemy.url", settings.database_url)
    logger.info("Upgrading database to %s", args.revision)
    command.upgrade(cfg, args.revision)
    return 0


def _cmd_create_db(args: argparse.Namespace, settings: Settings) -> int:
    from authstack.db.base import Base
    import authstack.db.models  # noqa: F401  (registers tables on Base.metadata)

    db_rt = connect_database(settings)
    if db_rt is None:
        return 1
    try:
        Base.metadata.create_all(bind=db_rt.engine)
        logger.info("Tables created: %s", ", ".join(sorted(Base.metadata.tables)))
    finally:
        db_rt.dispose()
    return 0


def _cmd_generate_secret(args: argparse.Namespace, settings: Settings) -> int:
    print(f"AUTH_SECRET={generate_secret(args.bytes)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="authstack", description="HTTP + ORM + session auth backend")
    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve", help="Connect to the database and start the HTTP server")
    p_serve.set_defaults(func=_cmd_serve)

    p_migrate = sub.add_parser("migrate", help="Apply Alembic migrations")
    p_migrate.add_argument("revision", nargs="?", default="head")
    p_migrate.add_argument("--config", default="alembic.ini", help="Path to alembic.ini")
    p_migrate.set_defaults(func=_cmd_migrate)

    p_create = sub.add_parser("create-db", help="Create tables from the models (dev/test only)")
    p_create.set_defaults(func=_cmd_create_db)

    p_secret = sub.add_parser("generate-secret", help="Print a random AUTH_SECRET")
    p_secret.add_argument("--bytes", type=int, default=32)
    p_secret.set_defaults(func=_cmd_generate_secret)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        args = parser.parse_args(["serve"])

    settings = Settings()
    configure_logging(settings.effective_log_level)
    return int(args.func(args, settings))


if __name__ == "__main__":
    sys.exit(main())
