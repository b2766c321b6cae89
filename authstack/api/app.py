from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from authstack.api.cors import OriginAllowListMiddleware
from authstack.api.errors import register_error_handlers
from authstack.api.middleware import RequestSizeLimitMiddleware, SecurityHeadersMiddleware
from authstack.api.routers import auth, health
from authstack.core.settings import Settings
from authstack.db.base import Base
from authstack.db.session import DBRuntime, create_engine_and_sessionmaker
from authstack.services.auth_service import AuthService, VerificationSender
from authstack.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

_MIN_SECRET_LENGTH = 32


def build_auth_service(settings: Settings, send_verification: VerificationSender | None = None) -> AuthService:
    if not settings.auth_secret:
        raise RuntimeError("AUTH_SECRET is required")
    if len(settings.auth_secret) < _MIN_SECRET_LENGTH:
        if settings.is_production:
            raise RuntimeError(f"AUTH_SECRET must be at least {_MIN_SECRET_LENGTH} characters in production")
        logger.warning("AUTH_SECRET is shorter than %d characters; generate one with `authstack generate-secret`", _MIN_SECRET_LENGTH)

    return AuthService(
        secret=settings.auth_secret,
        session_expires_in_s=settings.session_expires_in_s,
        session_update_age_s=settings.session_update_age_s,
        cookie_cache_max_age_s=settings.session_cookie_cache_max_age_s,
        password_min_length=settings.password_min_length,
        password_max_length=settings.password_max_length,
        require_email_verification=settings.require_email_verification,
        verification_ttl_s=settings.verification_ttl_s,
        send_verification=send_verification,
    )


def create_app(
    settings: Settings | None = None,
    *,
    db: DBRuntime | None = None,
    send_verification: VerificationSender | None = None,
) -> FastAPI:
    """Build the HTTP application.

    `db` lets the process entry point hand over the engine it already
    connected with; otherwise one is created when the lifespan starts.
    The engine is disposed on shutdown either way.
    """
    settings = settings or Settings()
    # Fail before serving anything when the secret is missing.
    auth_service = build_auth_service(settings, send_verification)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting authstack app (env=%s)...", settings.env)

        app.state.settings = settings

        # --- DB ---
        db_rt = db or create_engine_and_sessionmaker(settings.database_url, echo=settings.db_echo)
        app.state.db_engine = db_rt.engine
        app.state.db_sessionmaker = db_rt.SessionLocal
        if settings.auto_create_db:
            Base.metadata.create_all(bind=db_rt.engine)

        # --- Auth ---
        app.state.auth_service = auth_service
        app.state.rate_limiter = RateLimiter()

        try:
            yield
        finally:
            logger.info("Shutting down authstack app...")
            logger.info("Disposing database...")
            db_rt.dispose()
            logger.info("authstack app shutdown complete.")

    is_dev = not settings.is_production
    app = FastAPI(
        title="authstack",
        lifespan=lifespan,
        docs_url="/docs" if is_dev else None,
        redoc_url="/redoc" if is_dev else None,
        openapi_url="/openapi.json" if is_dev else None,
    )
    app.state.settings = settings

    # Middleware (last added runs first)
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=settings.max_request_size_bytes)
    app.add_middleware(SecurityHeadersMiddleware)

    origins = settings.trusted_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )
    app.add_middleware(OriginAllowListMiddleware, allow_origins=origins)

    register_error_handlers(app)

    # Routers
    app.include_router(health.router)
    app.include_router(auth.router, prefix=settings.auth_base_path.rstrip("/"))

    return app
