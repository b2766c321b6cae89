from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy.orm import Session

from authstack.api.cookies import (
    clear_session_cookies,
    cookie_attrs,
    refresh_session_cookies,
    set_session_cache_cookie,
    set_session_cookies,
)
from authstack.api.deps import (
    client_ip,
    get_auth_service,
    get_db,
    get_rate_limiter,
    get_settings,
    require_session,
    session_token_from_request,
)
from authstack.core.settings import Settings
from authstack.services.auth_service import (
    AuthService,
    SessionContext,
    session_to_dict,
    user_to_dict,
)
from authstack.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

# Mounted under Settings.auth_base_path by create_app.
router = APIRouter(tags=["auth"])

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


def _non_blank_name(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("name must not be blank")
    return v


class SignUpRequest(_CamelModel):
    name: str = Field(min_length=1, max_length=200)
    email: str = Field(min_length=3, max_length=320, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=1000)
    image: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        return _non_blank_name(v)


class SignInRequest(_CamelModel):
    email: str = Field(min_length=3, max_length=320, pattern=_EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=1000)
    remember_me: bool = Field(default=True, alias="rememberMe")


class RevokeSessionRequest(_CamelModel):
    token: Optional[str] = None
    id: Optional[str] = None


class ChangePasswordRequest(_CamelModel):
    current_password: str = Field(min_length=1, max_length=1000, alias="currentPassword")
    new_password: str = Field(min_length=1, max_length=1000, alias="newPassword")
    revoke_other_sessions: bool = Field(default=False, alias="revokeOtherSessions")


class UpdateUserRequest(_CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    image: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: Optional[str]) -> Optional[str]:
        return _non_blank_name(v)


class SendVerificationRequest(_CamelModel):
    email: str = Field(min_length=3, max_length=320, pattern=_EMAIL_PATTERN)


def _throttle(limiter: RateLimiter, settings: Settings, key: str) -> None:
    lim = limiter.allow(key, limit=settings.auth_rate_limit_per_minute, window_s=60)
    if not lim.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(int(lim.reset_after_s) + 1)},
        )


# -----------------
# Endpoints
# -----------------


@router.get("/ok")
def ok():
    return {"ok": True}


@router.post("/sign-up/email")
def sign_up_email(
    req: SignUpRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    ip = client_ip(request)
    _throttle(limiter, settings, f"sign-up:{ip}")
    user, ctx = auth.sign_up_email(
        db,
        name=req.name,
        email=req.email,
        password=req.password,
        image=req.image,
        ip_address=ip,
        user_agent=request.headers.get("user-agent"),
    )
    if ctx is not None:
        set_session_cookies(response, settings, auth, ctx)
    return {"token": ctx.token if ctx else None, "user": user_to_dict(user)}


@router.post("/sign-in/email")
def sign_in_email(
    req: SignInRequest,
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    ip = client_ip(request)
    _throttle(limiter, settings, f"sign-in:{ip}")
    ctx = auth.sign_in_email(
        db,
        email=req.email,
        password=req.password,
        ip_address=ip,
        user_agent=request.headers.get("user-agent"),
    )
    set_session_cookies(response, settings, auth, ctx, remember=req.remember_me)
    return {"redirect": False, "token": ctx.token, "user": user_to_dict(ctx.user)}


@router.post("/sign-out")
def sign_out(
    request: Request,
    response: Response,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    auth.sign_out(db, session_token_from_request(request, settings))
    clear_session_cookies(response, settings)
    return {"success": True}


@router.get("/get-session")
def get_session(
    request: Request,
    response: Response,
    disable_cookie_cache: bool = Query(default=False, alias="disableCookieCache"),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    token = session_token_from_request(request, settings)
    if not token:
        return None

    if settings.session_cookie_cache_enabled and not disable_cookie_cache:
        cached = auth.decode_session_cache(request.cookies.get(settings.session_data_cookie_name), token)
        if cached is not None:
            return cached

    ctx = auth.get_session(db, token)
    if ctx is None:
        if request.cookies.get(settings.session_cookie_name):
            clear_session_cookies(response, settings)
        return None

    # Bearer clients have no cookie jar to cache into.
    if ctx.refreshed:
        refresh_session_cookies(request, response, settings, auth, ctx)
    elif request.cookies.get(settings.session_cookie_name):
        set_session_cache_cookie(response, settings, auth, ctx)
    return {"session": session_to_dict(ctx.session), "user": user_to_dict(ctx.user)}


@router.get("/list-sessions")
def list_sessions(
    ctx: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    return [session_to_dict(s) for s in auth.list_sessions(db, ctx.user)]


@router.post("/revoke-session")
def revoke_session(
    req: RevokeSessionRequest,
    ctx: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    if not req.token and not req.id:
        raise HTTPException(status_code=400, detail="token or id is required")
    revoked = auth.revoke_session(db, ctx.user, token=req.token, session_id=req.id)
    return {"status": revoked}


@router.post("/revoke-other-sessions")
def revoke_other_sessions(
    ctx: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    auth.revoke_other_sessions(db, ctx.user, keep_session_id=ctx.session.id)
    return {"status": True}


@router.post("/revoke-sessions")
def revoke_sessions(
    response: Response,
    ctx: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    auth.revoke_sessions(db, ctx.user)
    clear_session_cookies(response, settings)
    return {"status": True}


@router.post("/change-password")
def change_password(
    req: ChangePasswordRequest,
    ctx: SessionContext = Depends(require_session),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    auth.change_password(
        db,
        ctx.user,
        current_password=req.current_password,
        new_password=req.new_password,
        revoke_other_sessions=req.revoke_other_sessions,
        keep_session_id=ctx.session.id,
    )
    logger.info("Password changed for user %s", ctx.user.id)
    return {"status": True}


@router.post("/update-user")
def update_user(
    req: UpdateUserRequest,
    response: Response,
    ctx: SessionContext = Depends(require_session),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    auth.update_user(db, ctx.user, name=req.name, image=req.image)
    # Cached user data is stale now.
    response.delete_cookie(settings.session_data_cookie_name, **cookie_attrs(settings))
    return {"status": True}


@router.get("/verify-email")
def verify_email(
    token: str,
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
):
    user = auth.verify_email(db, token=token)
    return {"status": True, "user": user_to_dict(user)}


@router.post("/send-verification-email")
def send_verification_email(
    req: SendVerificationRequest,
    request: Request,
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
    auth: AuthService = Depends(get_auth_service),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    _throttle(limiter, settings, f"send-verification:{client_ip(request)}")
    # Same answer whether or not a mail went out, so addresses cannot be probed.
    auth.resend_verification(db, email=req.email)
    return {"status": True}
