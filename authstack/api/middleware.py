from __future__ import annotations

from starlette.datastructures import MutableHeaders
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

BASE_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
}


def apply_security_headers(headers: MutableHeaders) -> None:
    """Add the headers every response carries, keeping any already set."""
    for name, value in BASE_SECURITY_HEADERS.items():
        headers.setdefault(name, value)


def is_auth_path(path: str, auth_base_path: str) -> bool:
    base = auth_base_path.rstrip("/")
    return path == base or path.startswith(base + "/")


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        apply_security_headers(response.headers)

        settings = getattr(request.app.state, "settings", None)
        if settings is not None:
            if settings.is_production and request.url.scheme == "https":
                response.headers.setdefault("Strict-Transport-Security", "max-age=31536000")
            # Session payloads must never be cached by intermediaries.
            if is_auth_path(request.url.path, settings.auth_base_path):
                response.headers.setdefault("Cache-Control", "no-store")
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, max_bytes: int) -> None:
        super().__init__(app)
        self.max_bytes = max(1, int(max_bytes))

    async def dispatch(self, request: Request, call_next):
        cl = request.headers.get("content-length")
        if cl:
            try:
                too_large = int(cl) > self.max_bytes
            except ValueError:
                return JSONResponse({"detail": "Invalid Content-Length"}, status_code=400)
            if too_large:
                return JSONResponse({"detail": "Request too large"}, status_code=413)
        return await call_next(request)
