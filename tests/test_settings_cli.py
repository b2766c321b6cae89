from __future__ import annotations

import dataclasses
import re
from pathlib import Path

from authstack import cli
from authstack.core.settings import Settings, origin_of


def test_settings_read_from_environment(monkeypatch):
    monkeypatch.setenv("ENV", "production")
    monkeypatch.setenv("PORT", "8080")
    monkeypatch.setenv("DATABASE_URL", "postgresql+psycopg://u:p@db:5432/app")
    monkeypatch.setenv("AUTH_SECRET", "s" * 40)
    monkeypatch.setenv("AUTH_BASE_URL", "https://api.example.com/")
    monkeypatch.setenv("CORS_ALLOW_ORIGINS", "https://app.example.com, https://admin.example.com")
    monkeypatch.delenv("COOKIE_SECURE", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.delenv("COOKIE_SAMESITE", raising=False)

    s = Settings()
    assert s.is_production
    assert s.port == 8080
    assert s.database_url.startswith("postgresql")
    assert s.cors_allow_origins == ["https://app.example.com", "https://admin.example.com"]
    assert s.trusted_origins == ["https://app.example.com", "https://admin.example.com", "https://api.example.com"]
    assert s.cookie_secure is True
    assert s.cookie_samesite == "none"
    assert s.effective_log_level == "INFO"


def test_node_env_fallback_and_dev_defaults(monkeypatch):
    monkeypatch.delenv("ENV", raising=False)
    monkeypatch.setenv("NODE_ENV", "development")
    monkeypatch.delenv("COOKIE_SECURE", raising=False)
    monkeypatch.delenv("COOKIE_SAMESITE", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.setenv("PORT", "not-a-number")

    s = Settings()
    assert s.env == "development"
    assert not s.is_production
    assert s.port == 3000
    assert s.cookie_secure is False
    assert s.cookie_samesite == "lax"
    assert s.effective_log_level == "DEBUG"


def test_samesite_none_forces_secure(settings):
    s = dataclasses.replace(settings, cookie_samesite="none", cookie_secure=False)
    assert s.effective_cookie_secure is True


def test_cookie_names_use_prefix(settings):
    s = dataclasses.replace(settings, cookie_prefix="myapp")
    assert s.session_cookie_name == "myapp.session_token"
    assert s.session_data_cookie_name == "myapp.session_data"


def test_origin_of():
    assert origin_of("https://API.example.com/api/auth") == "https://api.example.com"
    assert origin_of("http://localhost:3000/") == "http://localhost:3000"


def test_generate_secret_command(capsys):
    assert cli.main(["generate-secret"]) == 0
    out = capsys.readouterr().out.strip()
    assert re.fullmatch(r"AUTH_SECRET=[0-9a-f]{64}", out)


def test_create_db_command(tmp_path, monkeypatch):
    db_path = tmp_path / "cli.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    assert cli.main(["create-db"]) == 0
    assert db_path.exists()


def test_migrate_requires_alembic_config(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'm.db'}")
    assert cli.main(["migrate", "--config", str(tmp_path / "missing.ini")]) == 2


def test_migrate_creates_auth_tables(tmp_path, monkeypatch):
    from sqlalchemy import create_engine, inspect

    db_path = tmp_path / "migrated.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    ini = Path(__file__).resolve().parents[1] / "alembic.ini"
    assert cli.main(["migrate", "--config", str(ini)]) == 0

    engine = create_engine(f"sqlite:///{db_path}")
    try:
        tables = set(inspect(engine).get_table_names())
    finally:
        engine.dispose()
    assert {"users", "sessions", "accounts", "verifications", "alembic_version"} <= tables
