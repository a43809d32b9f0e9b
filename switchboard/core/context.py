"""
Application context: the long-lived objects shared by every request.

Built once by the FastAPI lifespan (or directly by tests) and stored on
app.state.context. Route handlers reach it through the dependencies below;
nothing in the package keeps module-level singletons.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request

from switchboard.core.config import Settings
from switchboard.core.session import CookieJar
from switchboard.modules.auth.session_manager import SessionManager
from switchboard.modules.auth.token_cache import TokenCache
from switchboard.modules.gmail.client import GmailClient

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    settings: Settings
    http: httpx.AsyncClient
    token_cache: TokenCache
    sessions: SessionManager
    gmail: GmailClient

    async def aclose(self) -> None:
        self.token_cache.clear()
        await self.http.aclose()


def build_context(settings: Settings, http: Optional[httpx.AsyncClient] = None) -> AppContext:
    """
    Wire up the shared HTTP client, token cache, session manager and Gmail client.

    Args:
        settings: Validated settings
        http: Pre-built client (tests pass one with an httpx.MockTransport)

    Raises:
        InvalidKeyLength: If COOKIE_SECRET does not decode to 32 bytes
    """
    http = http or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
    token_cache = TokenCache()

    context = AppContext(
        settings=settings,
        http=http,
        token_cache=token_cache,
        sessions=SessionManager(settings, http, token_cache),
        gmail=GmailClient(http, timeout=settings.HTTP_TIMEOUT_SECONDS),
    )
    logger.info("Application context ready", extra={"environment": settings.ENVIRONMENT})
    return context


def get_context(request: Request) -> AppContext:
    """FastAPI dependency for the application context."""
    return request.app.state.context


def get_cookie_jar(request: Request) -> CookieJar:
    """FastAPI dependency: the request's cookies plus staged writes."""
    return CookieJar.from_request(request)
