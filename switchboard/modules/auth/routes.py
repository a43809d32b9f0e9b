"""
Authentication routes - OAuth sign-in, callback and logout.

Endpoints:
- GET /auth/google - Initiate OAuth flow (redirect to Google)
- GET /auth/callback - Handle OAuth callback
- GET /logout - Clear session cookies
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from switchboard.core.context import AppContext, get_context, get_cookie_jar
from switchboard.core.session import CookieJar
from switchboard.modules.auth.session_manager import CallbackError

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])


@router.get("/auth/google")
async def login_with_google(
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """
    Initiate Gmail OAuth flow.

    Sets the PKCE verifier and state cookies, then redirects to the Google
    consent screen.
    """
    flow = context.sessions.initiate(jar)
    return jar.apply(RedirectResponse(url=flow.auth_url, status_code=302))


@router.get("/auth/callback")
async def google_oauth_callback(
    request: Request,
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """
    Handle OAuth callback from Google.

    This endpoint:
    1. Verifies the state token (CSRF protection)
    2. Exchanges the authorization code (with the PKCE verifier) for tokens
    3. Stores the encrypted refresh token and a CSRF token in cookies
    4. Redirects to the app root

    A denied consent redirects to /login?error=<code>. Failures return an
    error status and write no cookies.
    """
    result = await context.sessions.complete_callback(str(request.url), jar)

    if isinstance(result, CallbackError):
        raise HTTPException(status_code=result.status, detail=result.message)

    return jar.apply(RedirectResponse(url=result.location, status_code=302))


@router.get("/logout")
async def logout(
    context: AppContext = Depends(get_context),
    jar: CookieJar = Depends(get_cookie_jar),
):
    """
    Log out the current user.

    Clears the session cookies and redirects to the login page.
    """
    context.sessions.logout(jar)
    return jar.apply(RedirectResponse(url="/login", status_code=302))
