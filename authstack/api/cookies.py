from __future__ import annotations

from fastapi import Request, Response

from authstack.core.settings import Settings
from authstack.services.auth_service import AuthService, SessionContext


def cookie_attrs(settings: Settings) -> dict:
    return dict(
        path="/",
        domain=settings.cookie_domain or None,
        secure=settings.effective_cookie_secure,
        httponly=True,
        samesite=settings.cookie_samesite,
    )


def set_session_cache_cookie(response: Response, settings: Settings, auth: AuthService, ctx: SessionContext) -> None:
    if not settings.session_cookie_cache_enabled:
        return
    response.set_cookie(
        settings.session_data_cookie_name,
        auth.encode_session_cache(ctx),
        max_age=auth.cookie_cache_max_age_s,
        **cookie_attrs(settings),
    )


def set_session_cookies(
    response: Response,
    settings: Settings,
    auth: AuthService,
    ctx: SessionContext,
    *,
    remember: bool = True,
) -> None:
    # remember=False leaves out Max-Age so the browser drops the cookie on close.
    response.set_cookie(
        settings.session_cookie_name,
        ctx.token or "",
        max_age=auth.session_expires_in_s if remember else None,
        **cookie_attrs(settings),
    )
    if remember:
        response.delete_cookie(settings.dont_remember_cookie_name, **cookie_attrs(settings))
    else:
        response.set_cookie(settings.dont_remember_cookie_name, "true", **cookie_attrs(settings))
    set_session_cache_cookie(response, settings, auth, ctx)


def refresh_session_cookies(
    request: Request,
    response: Response,
    settings: Settings,
    auth: AuthService,
    ctx: SessionContext,
) -> None:
    """Re-issue the token cookie after the session expiry slid forward.

    Only for cookie clients; Bearer clients hold the token themselves.
    """
    if not ctx.refreshed or not request.cookies.get(settings.session_cookie_name):
        return
    remember = not request.cookies.get(settings.dont_remember_cookie_name)
    set_session_cookies(response, settings, auth, ctx, remember=remember)


def clear_session_cookies(response: Response, settings: Settings) -> None:
    for name in (
        settings.session_cookie_name,
        settings.session_data_cookie_name,
        settings.dont_remember_cookie_name,
    ):
        response.delete_cookie(name, **cookie_attrs(settings))
