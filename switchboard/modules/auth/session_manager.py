"""
Gmail OAuth flow and cookie session management.

Handles:
- OAuth authorization URL generation (PKCE S256 + state)
- Callback validation and code-for-token exchange
- Encrypted refresh-token cookie (AES-256-GCM)
- Access-token minting with an in-memory cache
- CSRF double-submit token issuance and validation
- Logout

Session lifecycle:
    Unauthenticated -> AwaitingCallback (ephemeral PKCE/state cookies)
    -> Authenticated (sb_refresh + sb_csrf cookies)
    -> access token Valid/Expired (TokenCache) -> LoggedOut

CRITICAL SECURITY:
- NEVER log tokens (access_token, refresh_token, verifier, CSRF token)
- The refresh token only exists decrypted while talking to Google
- State parameter is compared before anything else in the callback
"""

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Union
from urllib.parse import parse_qs, quote, urlsplit

import httpx
from authlib.oauth2.rfc6749.parameters import prepare_grant_uri

from switchboard.core.config import Settings
from switchboard.core.crypto import CryptoError, decrypt, derive_key, encrypt
from switchboard.core.http import TransportFailure, request_with_timeout
from switchboard.core.security import (
    constant_time_equals,
    generate_csrf_token,
    generate_pkce,
    generate_state_token,
)
from switchboard.core.session import CookieJar
from switchboard.modules.auth.token_cache import TokenCache

logger = logging.getLogger(__name__)


# Google OAuth endpoints
GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

# gmail.modify covers list/read/trash/label; openid + email for the profile
GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.modify",
    "openid",
    "email",
]

# Cookie names
REFRESH_COOKIE = "sb_refresh"
CSRF_COOKIE = "sb_csrf"
PKCE_COOKIE = "sb_pkce_verifier"
STATE_COOKIE = "sb_oauth_state"

CSRF_HEADER = "x-csrf-token"

REFRESH_MAX_AGE = 180 * 24 * 60 * 60  # 180 days
EPHEMERAL_MAX_AGE = 10 * 60  # 10 minutes


class AuthError(Exception):
    """Base exception for authentication failures (user must sign in again)."""
    pass


class NotAuthenticated(AuthError):
    """No session, or the session cookie cannot be decrypted."""

    def __init__(self, reason: str):
        super().__init__(f"Not authenticated: {reason}")


class TokenRefreshFailed(AuthError):
    """Google rejected the refresh-token grant (revoked, expired, or server error)."""

    def __init__(self, status: int, error_code: Optional[str] = None):
        self.status = status
        self.error_code = error_code
        detail = f": {error_code}" if error_code else ""
        super().__init__(f"Token refresh failed ({status}){detail}")


@dataclass(frozen=True)
class OAuthFlowInit:
    auth_url: str


@dataclass(frozen=True)
class CallbackRedirect:
    location: str


@dataclass(frozen=True)
class CallbackError:
    status: int
    message: str


CallbackResult = Union[CallbackRedirect, CallbackError]


class SessionManager:
    """
    Owns the OAuth dance and every cookie that carries session state.

    Usage:
        sessions = SessionManager(settings, http_client, TokenCache())
        init = sessions.initiate(jar)                 # redirect to init.auth_url
        result = await sessions.complete_callback(str(request.url), jar)
        token = await sessions.get_access_token(jar)  # for GmailClient calls
    """

    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        token_cache: TokenCache,
        encryption_key: Optional[bytes] = None,
    ):
        self.client_id = settings.GOOGLE_CLIENT_ID
        self.client_secret = settings.GOOGLE_CLIENT_SECRET
        self.redirect_uri = settings.redirect_uri
        self.cookie_secure = settings.cookie_secure
        self.timeout = settings.HTTP_TIMEOUT_SECONDS
        self._http = http
        self._token_cache = token_cache
        self._key = encryption_key or derive_key(settings.COOKIE_SECRET)

    def _set_cookie(self, jar: CookieJar, name: str, value: str, max_age: int, http_only: bool = True) -> None:
        jar.set(
            name,
            value,
            max_age=max_age,
            http_only=http_only,
            secure=self.cookie_secure,
            same_site="lax",
            path="/",
        )

    # ------------------------------------------------------------------
    # Step 1: initiate
    # ------------------------------------------------------------------

    def initiate(self, jar: CookieJar) -> OAuthFlowInit:
        """
        Start the Authorization Code flow with PKCE.

        Stores the verifier and state in 10-minute HttpOnly cookies and
        returns the Google consent URL.
        """
        pkce = generate_pkce()
        state = generate_state_token()

        self._set_cookie(jar, PKCE_COOKIE, pkce.verifier, EPHEMERAL_MAX_AGE)
        self._set_cookie(jar, STATE_COOKIE, state, EPHEMERAL_MAX_AGE)

        auth_url = prepare_grant_uri(
            GOOGLE_AUTHORIZE_URL,
            client_id=self.client_id,
            response_type="code",
            redirect_uri=self.redirect_uri,
            scope=GMAIL_SCOPES,
            state=state,
            code_challenge=pkce.challenge,
            code_challenge_method="S256",
            access_type="offline",  # Request refresh token
            prompt="consent",  # Force consent screen (ensures refresh token)
        )

        logger.info("OAuth flow initiated")
        return OAuthFlowInit(auth_url=auth_url)

    # ------------------------------------------------------------------
    # Step 2: callback
    # ------------------------------------------------------------------

    async def complete_callback(self, callback_url: str, jar: CookieJar) -> CallbackResult:
        """
        Validate the OAuth callback and store the encrypted refresh token.

        Args:
            callback_url: Full callback URL including the query string
            jar: Cookie jar for the current request

        Returns:
            CallbackRedirect on success (or user-denied consent),
            CallbackError with an HTTP status otherwise
        """
        params = parse_qs(urlsplit(callback_url).query)

        def param(name: str) -> Optional[str]:
            values = params.get(name)
            return values[0] if values and values[0] else None

        # CSRF protection for the OAuth dance itself
        returned_state = param("state")
        saved_state = jar.get(STATE_COOKIE)
        if not constant_time_equals(returned_state, saved_state):
            logger.warning("OAuth callback rejected: state mismatch")
            return CallbackError(403, "OAuth state mismatch. Please try signing in again.")

        # User denied consent (or Google reported another authorization error)
        oauth_error = param("error")
        if oauth_error:
            logger.info("OAuth authorization declined", extra={"oauth_error": oauth_error})
            return CallbackRedirect(f"/login?error={quote(oauth_error, safe='')}")

        code = param("code")
        if not code:
            return CallbackError(400, "Missing authorization code in callback.")

        verifier = jar.get(PKCE_COOKIE)
        if not verifier:
            return CallbackError(400, "Missing PKCE verifier. Please try signing in again.")

        try:
            response = await request_with_timeout(
                self._http,
                "POST",
                GOOGLE_TOKEN_URL,
                timeout=self.timeout,
                data={
                    "code": code,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "redirect_uri": self.redirect_uri,
                    "grant_type": "authorization_code",
                    "code_verifier": verifier,
                },
            )
        except TransportFailure as e:
            logger.error("Token exchange request failed", extra={"error": str(e)})
            return CallbackError(500, f"Token exchange failed: {e}")

        if not response.is_success:
            logger.error(
                "Token exchange rejected by Google",
                extra={"status": response.status_code}
            )
            return CallbackError(
                500, f"Token exchange failed ({response.status_code}): {response.text[:200]}"
            )

        try:
            token_data = response.json()
        except ValueError:
            return CallbackError(500, "Token exchange failed: response was not JSON")

        refresh_token = token_data.get("refresh_token") if isinstance(token_data, dict) else None
        if not refresh_token:
            logger.error("Token exchange succeeded without a refresh token")
            return CallbackError(
                500,
                "No refresh token received. Please revoke app access in your "
                "Google Account settings and try again.",
            )

        self._set_cookie(jar, REFRESH_COOKIE, encrypt(refresh_token, self._key), REFRESH_MAX_AGE)
        logger.info("Refresh token cookie set successfully")

        # Readable by client script for the double-submit header
        self._set_cookie(jar, CSRF_COOKIE, generate_csrf_token(), REFRESH_MAX_AGE, http_only=False)

        jar.delete(PKCE_COOKIE)
        jar.delete(STATE_COOKIE)

        return CallbackRedirect("/")

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    async def get_access_token(self, jar: CookieJar) -> str:
        """
        Mint (or reuse) an access token for the session in the cookie jar.

        Raises:
            NotAuthenticated: No refresh cookie, or it cannot be decrypted
            TokenRefreshFailed: Google answered the refresh with non-2xx
            RequestTimeout / NetworkError: The refresh never got an answer
        """
        encrypted_refresh = jar.get(REFRESH_COOKIE)
        if not encrypted_refresh:
            raise NotAuthenticated("no refresh token cookie.")

        cached = self._token_cache.get(encrypted_refresh)
        if cached:
            return cached

        async with self._token_cache.lock_for(encrypted_refresh):
            # Another request may have refreshed while we waited
            cached = self._token_cache.get(encrypted_refresh)
            if cached:
                return cached

            try:
                refresh_token = decrypt(encrypted_refresh, self._key)
            except CryptoError as e:
                logger.error(
                    "Refresh token cookie could not be decrypted",
                    extra={"error_type": type(e).__name__}
                )
                raise NotAuthenticated("refresh token cookie is corrupted.") from e

            response = await request_with_timeout(
                self._http,
                "POST",
                GOOGLE_TOKEN_URL,
                timeout=self.timeout,
                data={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )

            if not response.is_success:
                error_code = None
                try:
                    body = response.json()
                    if isinstance(body, dict):
                        error_code = body.get("error")
                except ValueError:
                    pass
                logger.error(
                    "Token refresh rejected by Google",
                    extra={"status": response.status_code, "error_code": error_code}
                )
                raise TokenRefreshFailed(response.status_code, error_code)

            try:
                token_data = response.json()
                access_token = token_data["access_token"]
                expires_in = float(token_data.get("expires_in", 3600))
            except (ValueError, TypeError, KeyError, AttributeError) as e:
                logger.error(
                    "Token refresh response was malformed",
                    extra={"status": response.status_code, "error_type": type(e).__name__}
                )
                raise TokenRefreshFailed(response.status_code, "invalid_response") from e
            if not isinstance(access_token, str) or not access_token:
                logger.error("Token refresh response had no usable access token")
                raise TokenRefreshFailed(response.status_code, "invalid_response")

            self._token_cache.put(encrypted_refresh, access_token, expires_in)
            logger.info("Access token refreshed", extra={"expires_in": expires_in})

            return access_token

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def has_session(self, jar: CookieJar) -> bool:
        """True if a refresh cookie exists (not validated)."""
        return jar.get(REFRESH_COOKIE) is not None

    def get_csrf_token(self, jar: CookieJar) -> Optional[str]:
        return jar.get(CSRF_COOKIE)

    def validate_csrf(self, jar: CookieJar, headers: Mapping[str, str]) -> bool:
        """
        Double-submit check: x-csrf-token header must equal the sb_csrf cookie.

        Never raises; any missing or empty side is a failure.
        """
        header_token = headers.get(CSRF_HEADER)
        if header_token is None:
            for name, value in headers.items():
                if name.lower() == CSRF_HEADER:
                    header_token = value
                    break
        return constant_time_equals(header_token, jar.get(CSRF_COOKIE))

    def logout(self, jar: CookieJar) -> None:
        """
        Clear auth cookies and drop the cached access token.

        The Google refresh token is not revoked; users can revoke access
        from their Google Account settings.
        """
        encrypted_refresh = jar.get(REFRESH_COOKIE)
        if encrypted_refresh:
            self._token_cache.invalidate(encrypted_refresh)

        jar.delete(REFRESH_COOKIE)
        jar.delete(CSRF_COOKIE)
        logger.info("Session cookies cleared")
