from __future__ import annotations

import logging
from typing import Iterable, Optional

from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from authstack.api.middleware import apply_security_headers
from authstack.core.settings import origin_of

logger = logging.getLogger(__name__)

CORS_ERROR_DETAIL = "Not allowed by CORS"


def origin_allowed(origin: Optional[str], allowed: Iterable[str]) -> bool:
    """Decide whether a request carrying `origin` may proceed.

    Requests without an Origin header (same-origin navigation, curl,
    server-to-server) are allowed.
    """
    if not origin:
        return True
    allowed = list(allowed or [])
    if "*" in allowed:
        return True
    candidate = origin_of(origin)
    return any(candidate == origin_of(a) for a in allowed)


class OriginAllowListMiddleware:
    """Reject cross-origin requests from origins outside the allow-list.

    Starlette's CORSMiddleware only withholds the CORS headers for unknown
    origins and still runs the endpoint; this rejects the request outright.
    Must sit outside CORSMiddleware so preflights are rejected too.
    """

    def __init__(self, app: ASGIApp, *, allow_origins: Iterable[str]) -> None:
        self.app = app
        self.allow_origins = list(allow_origins or [])

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        origin = None
        for name, value in scope.get("headers") or []:
            if name == b"origin":
                origin = value.decode("latin-1")
                break

        if origin_allowed(origin, self.allow_origins):
            await self.app(scope, receive, send)
            return

        logger.warning("Blocked request from disallowed origin %s to %s", origin, scope.get("path"))
        response = JSONResponse(
            {
                "success": False,
                "detail": CORS_ERROR_DETAIL,
                "error": {"type": "cors", "status": 403, "detail": CORS_ERROR_DETAIL},
            },
            status_code=403,
        )
        apply_security_headers(response.headers)
        await response(scope, receive, send)
