"""
Security Headers Middleware
JSON-only API: no framing, no sniffing, no caching of responses that may
carry account data (OAuth callback, analysis results)
"""
import logging
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.config import settings

logger = logging.getLogger(__name__)

API_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cache-Control": "no-store",
}


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds API_HEADERS to every response; HSTS in production only."""

    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)

        for name, value in API_HEADERS.items():
            response.headers.setdefault(name, value)

        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if "server" in response.headers:
            del response.headers["server"]

        return response
