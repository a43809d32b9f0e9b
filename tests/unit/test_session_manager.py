"""
Unit tests for SessionManager.

Tests the OAuth dance and cookie session with a mocked Google:
- Authorization URL (PKCE S256, state, offline access)
- Callback validation order (state first) and token exchange
- Access-token minting, caching and refresh failures
- Logout

Run tests:
    pytest tests/unit/test_session_manager.py -v
"""

import asyncio
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from switchboard.core.crypto import decrypt, encrypt
from switchboard.core.http import NetworkError, RequestTimeout
from switchboard.core.session import CookieJar
from switchboard.modules.auth.session_manager import (
    CSRF_COOKIE,
    EPHEMERAL_MAX_AGE,
    PKCE_COOKIE,
    REFRESH_COOKIE,
    REFRESH_MAX_AGE,
    STATE_COOKIE,
    CallbackError,
    CallbackRedirect,
    NotAuthenticated,
    SessionManager,
    TokenRefreshFailed,
)
from switchboard.modules.auth.token_cache import TokenCache

CALLBACK = "http://localhost:8000/auth/callback"


@pytest.fixture
def token_cache():
    return TokenCache()


@pytest.fixture
def sessions(settings, key, google, token_cache):
    return SessionManager(settings, google.client(), token_cache, encryption_key=key)


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


def _pending(jar: CookieJar) -> dict:
    return {write.name: write for write in jar.pending}


# Initiate

class TestInitiate:

    def test_auth_url_parameters(self, sessions, settings):
        jar = CookieJar()

        flow = sessions.initiate(jar)
        query = {k: v[0] for k, v in parse_qs(urlsplit(flow.auth_url).query).items()}

        assert flow.auth_url.startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        assert query["client_id"] == settings.GOOGLE_CLIENT_ID
        assert query["redirect_uri"] == "http://localhost:8000/auth/callback"
        assert query["response_type"] == "code"
        assert query["code_challenge_method"] == "S256"
        assert query["access_type"] == "offline"
        assert query["prompt"] == "consent"
        assert "https://www.googleapis.com/auth/gmail.modify" in query["scope"].split(" ")

    def test_state_and_verifier_cookies(self, sessions):
        jar = CookieJar()

        flow = sessions.initiate(jar)
        query = parse_qs(urlsplit(flow.auth_url).query)
        writes = _pending(jar)

        assert writes[STATE_COOKIE].value == query["state"][0]
        assert writes[PKCE_COOKIE].value
        assert writes[PKCE_COOKIE].value not in flow.auth_url
        for name in (STATE_COOKIE, PKCE_COOKIE):
            assert writes[name].http_only is True
            assert writes[name].max_age == EPHEMERAL_MAX_AGE
            assert writes[name].same_site == "lax"


# Callback

class TestCompleteCallback:

    @pytest.fixture
    def jar(self):
        return CookieJar({STATE_COOKIE: "state-abc", PKCE_COOKIE: "verifier-xyz"})

    @pytest.mark.asyncio
    async def test_success_sets_session_cookies(self, sessions, google, jar, key):
        google.add("POST", "oauth2.googleapis.com/token", status_code=200, json={
            "access_token": "ya29.fresh",
            "refresh_token": "1//refresh",
            "expires_in": 3599,
        })

        result = await sessions.complete_callback(f"{CALLBACK}?code=auth-code&state=state-abc", jar)

        assert result == CallbackRedirect("/")
        form = _form(google.requests[0])
        assert form["code"] == "auth-code"
        assert form["code_verifier"] == "verifier-xyz"
        assert form["grant_type"] == "authorization_code"

        writes = _pending(jar)
        assert decrypt(writes[REFRESH_COOKIE].value, key) == "1//refresh"
        assert writes[REFRESH_COOKIE].http_only is True
        assert writes[REFRESH_COOKIE].max_age == REFRESH_MAX_AGE
        assert writes[CSRF_COOKIE].http_only is False
        assert writes[CSRF_COOKIE].value
        assert writes[PKCE_COOKIE].is_deletion
        assert writes[STATE_COOKIE].is_deletion

    @pytest.mark.asyncio
    async def test_state_mismatch_checked_first(self, sessions, google, jar):
        result = await sessions.complete_callback(f"{CALLBACK}?code=auth-code&state=forged", jar)

        assert isinstance(result, CallbackError)
        assert result.status == 403
        assert jar.pending == []
        assert google.requests == []

    @pytest.mark.asyncio
    async def test_missing_state_cookie_is_mismatch(self, sessions):
        jar = CookieJar({PKCE_COOKIE: "verifier-xyz"})

        result = await sessions.complete_callback(f"{CALLBACK}?code=auth-code&state=state-abc", jar)

        assert result.status == 403

    @pytest.mark.asyncio
    async def test_provider_error_redirects_to_login(self, sessions, jar):
        result = await sessions.complete_callback(f"{CALLBACK}?error=access_denied&state=state-abc", jar)

        assert result == CallbackRedirect("/login?error=access_denied")
        assert jar.pending == []

    @pytest.mark.asyncio
    async def test_missing_code(self, sessions, jar):
        result = await sessions.complete_callback(f"{CALLBACK}?state=state-abc", jar)

        assert result.status == 400

    @pytest.mark.asyncio
    async def test_missing_verifier(self, sessions):
        jar = CookieJar({STATE_COOKIE: "state-abc"})

        result = await sessions.complete_callback(f"{CALLBACK}?code=auth-code&state=state-abc", jar)

        assert result.status == 400
        assert "PKCE" in result.message

    @pytest.mark.asyncio
    async def test_exchange_rejected(self, sessions, google, jar):
        google.add("POST", "oauth2.googleapis.com/token", status_code=400, json={"error": "invalid_grant"})

        result = await sessions.complete_callback(f"{CALLBACK}?code=auth-code&state=state-abc", jar)

        assert result.status == 500
        assert result.message.startswith("Token exchange failed")
        assert jar.pending == []

    @pytest.mark.asyncio
    async def test_no_refresh_token(self, sessions, google, jar):
        google.add("POST", "oauth2.googleapis.com/token", status_code=200, json={"access_token": "ya29.x"})

        result = await sessions.complete_callback(f"{CALLBACK}?code=auth-code&state=state-abc", jar)

        assert result.status == 500
        assert result.message.startswith("No refresh token received")
        assert jar.pending == []


# Access tokens

class TestGetAccessToken:

    @pytest.fixture
    def jar(self, key):
        return CookieJar({REFRESH_COOKIE: encrypt("1//refresh", key)})

    @pytest.mark.asyncio
    async def test_no_cookie(self, sessions, google):
        with pytest.raises(NotAuthenticated, match="^Not authenticated"):
            await sessions.get_access_token(CookieJar())
        assert google.requests == []

    @pytest.mark.asyncio
    async def test_corrupted_cookie(self, sessions, google):
        with pytest.raises(NotAuthenticated, match="corrupted"):
            await sessions.get_access_token(CookieJar({REFRESH_COOKIE: "not.an.envelope"}))
        assert google.requests == []

    @pytest.mark.asyncio
    async def test_refresh_then_cache_hit(self, sessions, google, jar):
        google.add("POST", "oauth2.googleapis.com/token", status_code=200, json={
            "access_token": "ya29.minted",
            "expires_in": 3599,
        })

        first = await sessions.get_access_token(jar)
        second = await sessions.get_access_token(jar)

        assert first == second == "ya29.minted"
        assert len(google.requests) == 1
        form = _form(google.requests[0])
        assert form["grant_type"] == "refresh_token"
        assert form["refresh_token"] == "1//refresh"

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_refresh(self, sessions, google, jar):
        google.add("POST", "oauth2.googleapis.com/token", status_code=200, json={
            "access_token": "ya29.minted",
            "expires_in": 3599,
        })

        tokens = await asyncio.gather(*(sessions.get_access_token(jar) for _ in range(5)))

        assert set(tokens) == {"ya29.minted"}
        assert len(google.requests) == 1

    @pytest.mark.asyncio
    async def test_refresh_rejected(self, sessions, google, jar):
        google.add("POST", "oauth2.googleapis.com/token", status_code=400, json={"error": "invalid_grant"})

        with pytest.raises(TokenRefreshFailed) as exc_info:
            await sessions.get_access_token(jar)

        assert exc_info.value.status == 400
        assert exc_info.value.error_code == "invalid_grant"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response_kwargs", [
        {"json": {"error": "weird"}},
        {"json": {"access_token": ""}},
        {"json": ["ya29.minted"]},
        {"text": "<html>proxy</html>"},
    ])
    async def test_malformed_success_response(self, sessions, google, jar, token_cache, response_kwargs):
        google.add("POST", "oauth2.googleapis.com/token", status_code=200, **response_kwargs)

        with pytest.raises(TokenRefreshFailed) as exc_info:
            await sessions.get_access_token(jar)

        assert exc_info.value.status == 200
        assert exc_info.value.error_code == "invalid_response"
        assert len(token_cache) == 0

    @pytest.mark.asyncio
    async def test_refresh_timeout(self, sessions, google, jar):
        def hang(request):
            raise httpx.ReadTimeout("timed out", request=request)

        google.add("POST", "oauth2.googleapis.com/token", hang)

        with pytest.raises(RequestTimeout, match="aborted"):
            await sessions.get_access_token(jar)

    @pytest.mark.asyncio
    async def test_refresh_network_error(self, sessions, google, jar):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        google.add("POST", "oauth2.googleapis.com/token", refuse)

        with pytest.raises(NetworkError):
            await sessions.get_access_token(jar)


# Logout

class TestLogout:

    @pytest.mark.asyncio
    async def test_logout_clears_cookies_and_cache(self, sessions, google, key, token_cache):
        envelope = encrypt("1//refresh", key)
        jar = CookieJar({REFRESH_COOKIE: envelope, CSRF_COOKIE: "csrf"})
        token_cache.put(envelope, "ya29.cached", expires_in=3600)

        assert sessions.has_session(jar) is True
        sessions.logout(jar)

        writes = _pending(jar)
        assert writes[REFRESH_COOKIE].is_deletion
        assert writes[CSRF_COOKIE].is_deletion
        assert token_cache.get(envelope) is None
        assert sessions.has_session(jar) is False
