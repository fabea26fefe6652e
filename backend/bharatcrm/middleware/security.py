# backend/bharatcrm/middleware/security.py
"""
Security headers for a JSON-only API.

Nothing served here is rendered by a browser, so the CSP denies everything and
authenticated responses are never cached. Webhook deliveries from Meta get the
same headers; Meta ignores them.
"""

from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from bharatcrm.config import settings

API_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
}

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, private",
    "Pragma": "no-cache",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        for name, value in API_HEADERS.items():
            response.headers.setdefault(name, value)

        # lead and recording payloads carry customer PII
        if request.url.path.startswith("/api/"):
            response.headers.update(NO_STORE_HEADERS)

        # HSTS only behind TLS in production
        if settings.ENVIRONMENT == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response
