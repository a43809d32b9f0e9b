"""Security middleware for the web API.

This module provides security headers and rate limiting. CSRF protection
for mutating endpoints is the double-submit check in SessionManager.
"""

from typing import Callable

from fastapi import FastAPI, Request, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from switchboard.core.config import Settings


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers to all responses."""

    def __init__(self, app, hsts: bool = False):
        super().__init__(app)
        self.hsts = hsts

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        """Add security headers to the response."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = (
            "geolocation=(), microphone=(), camera=()"
        )

        # HSTS only when served over TLS
        if self.hsts:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )

        # JSON API plus attachment downloads: nothing here should render active content
        csp_directives = [
            "default-src 'none'",
            "frame-ancestors 'none'",
            "base-uri 'none'",
            "form-action 'self'",
        ]
        response.headers["Content-Security-Policy"] = "; ".join(csp_directives)

        if request.url.path.startswith("/api/"):
            response.headers.setdefault("Cache-Control", "no-store")

        return response


def configure_rate_limiting(app: FastAPI, settings: Settings) -> Limiter:
    """
    Configure rate limiting middleware.

    Args:
        app: The FastAPI application instance
        settings: Application settings (limit and storage backend)

    Returns:
        The configured Limiter instance for use in route decorators
    """
    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[settings.RATE_LIMIT_DEFAULT],
        storage_uri=settings.RATE_LIMIT_STORAGE_URI,
        strategy="fixed-window",
        headers_enabled=True,  # Send rate limit info in headers
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    return limiter


def add_security_headers(app: FastAPI, settings: Settings) -> None:
    """
    Add security headers middleware to the application.

    Args:
        app: The FastAPI application instance
        settings: Application settings (HSTS follows cookie_secure)
    """
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.cookie_secure)
