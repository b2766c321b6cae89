from __future__ import annotations

from pathlib import Path
import sys

# Ensure repo root is importable
REPO_ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(REPO_ROOT))


import pytest
from fastapi.testclient import TestClient

from authstack.api.app import create_app
from authstack.core.settings import Settings

TEST_SECRET = "test_auth_secret_0123456789abcdef0123456789"
FRONTEND_ORIGIN = "http://localhost:5173"
PASSWORD = "CorrectHorse!42"


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    db_path = tmp_path / "test.db"

    return Settings(
        env="test",
        database_url=f"sqlite:///{db_path}",
        auto_create_db=True,
        auth_secret=TEST_SECRET,
        auth_base_url="http://testserver",
        auth_base_path="/api/auth",
        cors_allow_origins=[FRONTEND_ORIGIN],
        cookie_prefix="authstack",
        cookie_secure=False,
        cookie_samesite="lax",
        cookie_domain="",
        session_cookie_cache_enabled=True,
        require_email_verification=False,
        auth_rate_limit_per_minute=50,
    )


@pytest.fixture()
def client(settings: Settings):
    app = create_app(settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def frontend_origin() -> str:
    return FRONTEND_ORIGIN


@pytest.fixture()
def sign_up(client: TestClient):
    def _sign_up(email: str = "ada@example.com", password: str = PASSWORD, name: str = "Ada"):
        r = client.post("/api/auth/sign-up/email", json={"name": name, "email": email, "password": password})
        assert r.status_code == 200, r.text
        return r.json()

    return _sign_up
