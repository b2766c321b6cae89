from __future__ import annotations

from fastapi.testclient import TestClient


def test_health_is_static_success_payload(client: TestClient):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/json")
    assert r.json() == {"success": True, "message": "Server is running"}


def test_health_does_not_need_a_session(client: TestClient):
    client.cookies.clear()
    r = client.get("/health", headers={"Authorization": "Bearer not-a-real-token"})
    assert r.status_code == 200
    assert r.json()["success"] is True


def test_security_headers_present(client: TestClient):
    r = client.get("/health")
    assert r.headers["x-content-type-options"] == "nosniff"
    assert r.headers["x-frame-options"] == "DENY"
