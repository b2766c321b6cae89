from __future__ import annotations

import dataclasses

import pytest
from fastapi.testclient import TestClient

from authstack.api.app import create_app
from authstack.db.models import Account, User
from authstack.services.auth_service import AuthError

PASSWORD = "CorrectHorse!42"


def _set_cookie_headers(r) -> list[str]:
    return r.headers.get_list("set-cookie")


def test_ok_endpoint(client: TestClient):
    r = client.get("/api/auth/ok")
    assert r.status_code == 200
    assert r.json() == {"ok": True}


def test_sign_up_creates_user_account_and_session(client: TestClient, sign_up):
    body = sign_up(email="Ada@Example.com")
    assert body["token"]
    assert body["user"]["email"] == "ada@example.com"
    assert body["user"]["emailVerified"] is False
    assert client.cookies.get("authstack.session_token") == body["token"]

    with client.app.state.db_sessionmaker() as db:
        user = db.query(User).filter(User.email == "ada@example.com").one()
        accounts = db.query(Account).filter(Account.user_id == user.id).all()
        assert [a.provider_id for a in accounts] == ["credential"]
        # Stored hash, never the password itself.
        assert accounts[0].password_hash and PASSWORD not in accounts[0].password_hash


def test_session_cookie_attributes(client: TestClient):
    r = client.post("/api/auth/sign-up/email", json={"name": "Ada", "email": "ada@example.com", "password": PASSWORD})
    assert r.status_code == 200
    cookies = _set_cookie_headers(r)
    session_cookie = next(c for c in cookies if c.startswith("authstack.session_token="))
    lowered = session_cookie.lower()
    assert "httponly" in lowered
    assert "path=/" in lowered
    assert "samesite=lax" in lowered
    assert "max-age=604800" in lowered
    assert any(c.startswith("authstack.session_data=") for c in cookies)
    assert r.headers["cache-control"] == "no-store"


def test_get_session_roundtrip_and_sign_out(client: TestClient, sign_up):
    sign_up()
    r = client.get("/api/auth/get-session")
    assert r.status_code == 200
    data = r.json()
    assert data["user"]["email"] == "ada@example.com"
    assert data["session"]["userId"] == data["user"]["id"]

    out = client.post("/api/auth/sign-out")
    assert out.status_code == 200
    assert out.json() == {"success": True}
    assert client.cookies.get("authstack.session_token") is None

    r2 = client.get("/api/auth/get-session")
    assert r2.status_code == 200
    assert r2.json() is None


def test_sign_in_with_correct_and_wrong_password(client: TestClient, sign_up):
    sign_up()
    client.cookies.clear()

    bad = client.post("/api/auth/sign-in/email", json={"email": "ada@example.com", "password": "nope-nope-nope"})
    assert bad.status_code == 401
    assert bad.json()["code"] == "INVALID_EMAIL_OR_PASSWORD"

    unknown = client.post("/api/auth/sign-in/email", json={"email": "who@example.com", "password": PASSWORD})
    assert unknown.status_code == 401
    assert unknown.json()["code"] == "INVALID_EMAIL_OR_PASSWORD"

    good = client.post("/api/auth/sign-in/email", json={"email": "ADA@example.com", "password": PASSWORD})
    assert good.status_code == 200
    body = good.json()
    assert body["redirect"] is False
    assert body["token"]
    assert body["user"]["name"] == "Ada"


def test_remember_me_false_issues_browser_session_cookie(client: TestClient, sign_up):
    sign_up()
    client.cookies.clear()
    r = client.post(
        "/api/auth/sign-in/email",
        json={"email": "ada@example.com", "password": PASSWORD, "rememberMe": False},
    )
    assert r.status_code == 200
    session_cookie = next(c for c in _set_cookie_headers(r) if c.startswith("authstack.session_token="))
    assert "max-age" not in session_cookie.lower()


def test_bearer_token_is_accepted(client: TestClient, sign_up):
    token = sign_up()["token"]
    client.cookies.clear()

    r = client.get("/api/auth/get-session", headers={"Authorization": f"Bearer {token}"})
    assert r.status_code == 200
    assert r.json()["user"]["email"] == "ada@example.com"

    r2 = client.get("/api/auth/list-sessions", headers={"Authorization": "Bearer bogus"})
    assert r2.status_code == 401
    assert r2.json()["code"] == "UNAUTHORIZED"


def test_duplicate_email_rejected(client: TestClient, sign_up):
    sign_up()
    r = client.post("/api/auth/sign-up/email", json={"name": "Ada2", "email": "ADA@example.com", "password": PASSWORD})
    assert r.status_code == 422
    assert r.json()["code"] == "USER_ALREADY_EXISTS"


def test_password_policy(client: TestClient):
    short = client.post("/api/auth/sign-up/email", json={"name": "A", "email": "a@example.com", "password": "short"})
    assert short.status_code == 400
    assert short.json()["code"] == "PASSWORD_TOO_SHORT"

    long_ = client.post("/api/auth/sign-up/email", json={"name": "A", "email": "a@example.com", "password": "x" * 129})
    assert long_.status_code == 400
    assert long_.json()["code"] == "PASSWORD_TOO_LONG"


def test_request_validation_errors(client: TestClient):
    r = client.post("/api/auth/sign-up/email", json={"name": "A", "email": "not-an-email", "password": PASSWORD})
    assert r.status_code == 422
    assert r.json()["error"]["type"] == "validation"


def test_sign_in_rate_limited(settings):
    app = create_app(dataclasses.replace(settings, auth_rate_limit_per_minute=2))
    with TestClient(app) as c:
        payload = {"email": "ada@example.com", "password": PASSWORD}
        assert c.post("/api/auth/sign-in/email", json=payload).status_code == 401
        assert c.post("/api/auth/sign-in/email", json=payload).status_code == 401
        r = c.post("/api/auth/sign-in/email", json=payload)
        assert r.status_code == 429
        assert "retry-after" in r.headers


def test_update_user(client: TestClient, sign_up):
    sign_up()
    r = client.post("/api/auth/update-user", json={"name": "Ada Lovelace", "image": "https://img.example.com/a.png"})
    assert r.status_code == 200
    assert r.json() == {"status": True}

    data = client.get("/api/auth/get-session").json()
    assert data["user"]["name"] == "Ada Lovelace"
    assert data["user"]["image"] == "https://img.example.com/a.png"


def test_blank_names_are_rejected(client: TestClient, sign_up):
    r = client.post("/api/auth/sign-up/email", json={"name": "   ", "email": "blank@example.com", "password": PASSWORD})
    assert r.status_code == 422
    with client.app.state.db_sessionmaker() as db:
        assert db.query(User).count() == 0

    sign_up(name="  Ada  ")
    assert client.get("/api/auth/get-session").json()["user"]["name"] == "Ada"

    blank = client.post("/api/auth/update-user", json={"name": " \t "})
    assert blank.status_code == 422
    with client.app.state.db_sessionmaker() as db:
        assert db.query(User).one().name == "Ada"


def test_service_rejects_blank_name(client: TestClient):
    auth = client.app.state.auth_service
    with client.app.state.db_sessionmaker() as db:
        with pytest.raises(AuthError) as exc:
            auth.sign_up_email(db, name=" ", email="svc@example.com", password=PASSWORD)
    assert exc.value.code == "INVALID_NAME"
