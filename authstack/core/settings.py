from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import List
from urllib.parse import urlsplit

from dotenv import load_dotenv

# Values already present in the process environment take precedence over .env.
load_dotenv(override=False)


def _env_bool(key: str, default: str = "1") -> bool:
    return os.getenv(key, default).strip().lower() not in ("0", "false", "no", "off")


def _env_int(key: str, default: str) -> int:
    raw = os.getenv(key, default)
    try:
        return int(str(raw).strip())
    except Exception:
        return int(default)


def _env_list(key: str, default: str = "") -> List[str]:
    raw = os.getenv(key, default).strip()
    if not raw:
        return []
    if raw == "*":
        return ["*"]
    if raw.startswith("["):
        try:
            v = json.loads(raw)
            if isinstance(v, list):
                return [str(x) for x in v if str(x).strip()]
        except Exception:
            pass
    return [x.strip() for x in raw.split(",") if x.strip()]


def _env_name() -> str:
    return (os.getenv("ENV") or os.getenv("NODE_ENV") or "development").strip().lower()


def _is_production(env: str) -> bool:
    return env.strip().lower() in ("production", "prod")


def _default_cors_origins() -> List[str]:
    if os.getenv("CORS_ALLOW_ORIGINS") is not None:
        return _env_list("CORS_ALLOW_ORIGINS")
    return _env_list("TRUSTED_ORIGINS", "http://localhost:5173")


def _default_cookie_samesite() -> str:
    raw = os.getenv("COOKIE_SAMESITE", "").strip().lower()
    if raw in ("lax", "strict", "none"):
        return raw
    return "none" if _is_production(_env_name()) else "lax"


def origin_of(url: str) -> str:
    """Return the scheme://host[:port] part of `url` (lower-cased, no trailing slash)."""
    parts = urlsplit((url or "").strip())
    if not parts.scheme or not parts.netloc:
        return (url or "").strip().rstrip("/").lower()
    return f"{parts.scheme}://{parts.netloc}".lower()


@dataclass(frozen=True, slots=True)
class Settings:
    # Process
    env: str = field(default_factory=_env_name)
    host: str = field(default_factory=lambda: os.getenv("HOST", "0.0.0.0").strip())
    port: int = field(default_factory=lambda: _env_int("PORT", "3000"))
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "").strip().upper())

    # Database
    database_url: str = field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./authstack.db"))
    db_echo: bool = field(default_factory=lambda: _env_bool("DB_ECHO", "0"))
    # NOTE: In production, use Alembic migrations (alembic upgrade head). AUTO_CREATE_DB is a dev/test escape hatch.
    auto_create_db: bool = field(default_factory=lambda: _env_bool("AUTO_CREATE_DB", "0"))

    # Auth
    auth_secret: str = field(default_factory=lambda: os.getenv("AUTH_SECRET", "").strip())
    auth_base_url: str = field(default_factory=lambda: os.getenv("AUTH_BASE_URL", "http://localhost:3000").strip())
    auth_base_path: str = field(default_factory=lambda: os.getenv("AUTH_BASE_PATH", "/api/auth").strip())

    session_expires_in_s: int = field(default_factory=lambda: _env_int("SESSION_EXPIRES_IN_S", str(60 * 60 * 24 * 7)))
    session_update_age_s: int = field(default_factory=lambda: _env_int("SESSION_UPDATE_AGE_S", str(60 * 60 * 24)))
    session_cookie_cache_enabled: bool = field(default_factory=lambda: _env_bool("SESSION_COOKIE_CACHE", "1"))
    session_cookie_cache_max_age_s: int = field(default_factory=lambda: _env_int("SESSION_COOKIE_CACHE_MAX_AGE_S", "300"))

    password_min_length: int = field(default_factory=lambda: _env_int("PASSWORD_MIN_LENGTH", "8"))
    password_max_length: int = field(default_factory=lambda: _env_int("PASSWORD_MAX_LENGTH", "128"))
    require_email_verification: bool = field(default_factory=lambda: _env_bool("REQUIRE_EMAIL_VERIFICATION", "0"))
    verification_ttl_s: int = field(default_factory=lambda: _env_int("VERIFICATION_TTL_S", "3600"))
    auth_rate_limit_per_minute: int = field(default_factory=lambda: _env_int("AUTH_RATE_LIMIT_PER_MIN", "20"))

    # Cookies
    cookie_prefix: str = field(default_factory=lambda: os.getenv("COOKIE_PREFIX", "authstack").strip())
    cookie_secure: bool = field(
        default_factory=lambda: _env_bool("COOKIE_SECURE", "1" if _is_production(_env_name()) else "0")
    )
    cookie_samesite: str = field(default_factory=_default_cookie_samesite)
    cookie_domain: str = field(default_factory=lambda: os.getenv("COOKIE_DOMAIN", "").strip())

    # CORS. Requests from origins outside this list are rejected, not just left without headers.
    cors_allow_origins: List[str] = field(default_factory=_default_cors_origins)
    cors_allow_methods: List[str] = field(default_factory=lambda: _env_list("CORS_ALLOW_METHODS", "GET,POST,PUT,PATCH,DELETE,OPTIONS"))
    cors_allow_headers: List[str] = field(default_factory=lambda: _env_list("CORS_ALLOW_HEADERS", "Authorization,Content-Type"))

    # Request limits / hardening
    max_request_size_bytes: int = field(default_factory=lambda: _env_int("MAX_REQUEST_SIZE_BYTES", str(1024 * 1024)))

    @property
    def is_production(self) -> bool:
        return _is_production(self.env)

    @property
    def effective_log_level(self) -> str:
        if self.log_level:
            return self.log_level
        return "INFO" if self.is_production else "DEBUG"

    @property
    def trusted_origins(self) -> List[str]:
        """CORS allow-list plus the origin the auth layer itself is served from."""
        origins = [origin_of(o) if o != "*" else o for o in self.cors_allow_origins]
        base = origin_of(self.auth_base_url)
        if base and base not in origins:
            origins.append(base)
        return origins

    @property
    def session_cookie_name(self) -> str:
        return f"{self.cookie_prefix}.session_token"

    @property
    def session_data_cookie_name(self) -> str:
        return f"{self.cookie_prefix}.session_data"

    @property
    def dont_remember_cookie_name(self) -> str:
        return f"{self.cookie_prefix}.dont_remember"

    @property
    def effective_cookie_secure(self) -> bool:
        # Browsers drop SameSite=None cookies that are not Secure.
        return self.cookie_secure or self.cookie_samesite == "none"
