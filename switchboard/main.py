"""
Switchboard - Main FastAPI Application

Entry point for the application. Mounts all module routers.

Run with:
    uvicorn switchboard.main:create_app --factory
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from switchboard import __version__
from switchboard.core.config import Settings, load_settings
from switchboard.core.context import build_context
from switchboard.core.middleware import add_security_headers, configure_rate_limiting
from switchboard.core.sentry import init_sentry
from switchboard.modules.auth.routes import router as auth_router
from switchboard.modules.gmail.routes import router as gmail_router

logger = logging.getLogger(__name__)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "invalid value")
    return f"Invalid request: {location}: {message}" if location else f"Invalid request: {message}"


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query params are client errors (400)."""
    logger.warning("Request validation failed", extra={"path": request.url.path})
    return JSONResponse(status_code=400, content={"detail": _describe_validation_error(exc)})


def create_app(settings: Optional[Settings] = None, http: Optional[httpx.AsyncClient] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Validated settings (loaded from the environment when omitted)
        http: Outbound HTTP client (tests pass one backed by httpx.MockTransport)

    Raises:
        ConfigurationError: If a required environment variable is missing
    """
    settings = settings or load_settings()

    logging.basicConfig(level=logging.DEBUG if settings.DEBUG else logging.INFO)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Application lifespan events.

        Runs on startup and shutdown.
        """
        # Startup
        logger.info(f"Starting {settings.APP_NAME}...")
        logger.info(f"Environment: {settings.ENVIRONMENT}")

        init_sentry(settings)

        context = build_context(settings, http=http)
        app.state.context = context

        yield

        # Shutdown
        logger.info("Shutting down...")
        await context.aclose()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Gmail triage client - panels, batch metadata and bulk actions over a stateless session",
        version=__version__,
        docs_url="/docs" if settings.DEBUG else None,  # Disable docs in production
        redoc_url="/redoc" if settings.DEBUG else None,
        lifespan=lifespan,
    )

    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    # 1. Rate Limiting - protect endpoints from abuse
    configure_rate_limiting(app, settings)

    # 2. Security Headers - last, applied to all responses
    add_security_headers(app, settings)

    # Mount routers
    app.include_router(auth_router)
    app.include_router(gmail_router)

    @app.get("/health")
    async def health_check():
        """Health check endpoint for monitoring and load balancers."""
        return {
            "service": settings.APP_NAME,
            "version": __version__,
            "environment": settings.ENVIRONMENT,
            "status": "healthy",
        }

    return app


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "switchboard.main:create_app",
        factory=True,
        host="0.0.0.0",
        port=8000,
    )
