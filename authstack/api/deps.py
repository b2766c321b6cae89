from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request, Response
from sqlalchemy.orm import Session

from authstack.api.cookies import refresh_session_cookies
from authstack.core.settings import Settings
from authstack.services.auth_service import AuthService, SessionContext, SessionNotFound
from authstack.services.rate_limiter import RateLimiter


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request):
    SessionLocal = request.app.state.db_sessionmaker
    db: Session = SessionLocal()  # type: ignore
    try:
        yield db
    finally:
        db.close()


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def session_token_from_request(request: Request, settings: Settings) -> Optional[str]:
    """Cookie first (browsers), then Authorization: Bearer (API clients)."""
    token = (request.cookies.get(settings.session_cookie_name) or "").strip()
    if token:
        return token
    raw = (request.headers.get("authorization") or "").strip()
    if raw.lower().startswith("bearer "):
        return raw.split(" ", 1)[1].strip() or None
    return None


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def get_optional_session(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
) -> Optional[SessionContext]:
    ctx = auth.get_session(db, session_token_from_request(request, settings))
    if ctx is not None:
        refresh_session_cookies(request, response, settings, auth, ctx)
    return ctx


def require_session(ctx: Optional[SessionContext] = Depends(get_optional_session)) -> SessionContext:
    if ctx is None:
        raise SessionNotFound("Unauthorized")
    return ctx
