"""
API route tests.

The full application runs under TestClient; Google is an httpx.MockTransport.

Run tests:
    pytest tests/api/test_routes.py -v
"""

import base64

import httpx
import pytest
from fastapi.testclient import TestClient

from switchboard.core.crypto import encrypt
from switchboard.main import create_app
from switchboard.modules.auth.session_manager import CSRF_COOKIE, PKCE_COOKIE, REFRESH_COOKIE, STATE_COOKIE

TOKEN_URL = "oauth2.googleapis.com/token"
BATCH_URL = "www.googleapis.com/batch/gmail/v1"


@pytest.fixture
def client(settings, google):
    app = create_app(settings, http=google.client())
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def signed_in(client, google, key):
    """Client carrying a valid session; Google mints access tokens."""
    google.add("POST", TOKEN_URL, status_code=200, json={"access_token": "ya29.route", "expires_in": 3599})
    client.cookies.set(REFRESH_COOKIE, encrypt("1//refresh", key))
    client.cookies.set(CSRF_COOKIE, "csrf-token-1")
    return client


def gmail_calls(google):
    return [r for r in google.requests if TOKEN_URL not in str(r.url)]


class TestAuthRoutes:

    def test_login_redirects_to_google(self, client):
        response = client.get("/auth/google", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"].startswith("https://accounts.google.com/o/oauth2/v2/auth?")
        set_cookies = response.headers.get_list("set-cookie")
        assert any(c.startswith(f"{PKCE_COOKIE}=") and "HttpOnly" in c for c in set_cookies)
        assert any(c.startswith(f"{STATE_COOKIE}=") for c in set_cookies)

    def test_callback_state_mismatch(self, client, google):
        client.cookies.set(STATE_COOKIE, "real-state")
        client.cookies.set(PKCE_COOKIE, "verifier")

        response = client.get("/auth/callback?code=abc&state=forged", follow_redirects=False)

        assert response.status_code == 403
        assert response.headers.get_list("set-cookie") == []
        assert google.requests == []

    def test_callback_success(self, client, google):
        google.add("POST", TOKEN_URL, status_code=200, json={
            "access_token": "ya29.x", "refresh_token": "1//r", "expires_in": 3599,
        })
        client.cookies.set(STATE_COOKIE, "real-state")
        client.cookies.set(PKCE_COOKIE, "verifier")

        response = client.get("/auth/callback?code=abc&state=real-state", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/"
        names = [c.split("=", 1)[0] for c in response.headers.get_list("set-cookie")]
        assert {REFRESH_COOKIE, CSRF_COOKIE, PKCE_COOKIE, STATE_COOKIE} <= set(names)

    def test_callback_consent_denied(self, client):
        client.cookies.set(STATE_COOKIE, "real-state")

        response = client.get("/auth/callback?error=access_denied&state=real-state", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/login?error=access_denied"

    def test_logout(self, signed_in):
        response = signed_in.get("/logout", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/login"
        deleted = [c for c in response.headers.get_list("set-cookie") if "Max-Age=0" in c]
        assert len(deleted) == 2


class TestAuthentication:

    def test_no_session_is_401(self, client, google):
        response = client.get("/api/me")

        assert response.status_code == 401
        assert response.json() == {"detail": "Not authenticated"}
        assert google.requests == []

    def test_revoked_refresh_token_is_401(self, client, google, key):
        google.add("POST", TOKEN_URL, status_code=400, json={"error": "invalid_grant"})
        client.cookies.set(REFRESH_COOKIE, encrypt("1//revoked", key))

        response = client.get("/api/me")

        assert response.status_code == 401
        assert response.json()["detail"].startswith("Session expired")

    def test_token_timeout_is_504(self, client, google, key):
        def hang(request):
            raise httpx.ReadTimeout("timed out", request=request)

        google.add("POST", TOKEN_URL, hang)
        client.cookies.set(REFRESH_COOKIE, encrypt("1//refresh", key))

        response = client.get("/api/me")

        assert response.status_code == 504

    def test_me(self, signed_in, google):
        google.add("GET", "/users/me/profile", status_code=200, json={"emailAddress": "me@example.com"})

        response = signed_in.get("/api/me")

        assert response.status_code == 200
        assert response.json() == {"email": "me@example.com"}
        assert response.headers["cache-control"] == "no-store"

    def test_access_token_reused_across_requests(self, signed_in, google):
        google.add("GET", "/users/me/profile", status_code=200, json={"emailAddress": "me@example.com"})

        signed_in.get("/api/me")
        signed_in.get("/api/me")

        assert len(google.calls_to(TOKEN_URL)) == 1


class TestThreads:

    def test_list(self, signed_in, google):
        google.add("GET", "/users/me/threads", status_code=200, json={
            "threads": [{"id": "t1", "snippet": "hi"}], "nextPageToken": "p2", "resultSizeEstimate": 1,
        })

        response = signed_in.get("/api/threads", params={"pageToken": "p1", "q": "is:starred"})

        assert response.status_code == 200
        assert response.json() == {
            "threads": [{"id": "t1", "snippet": "hi"}],
            "nextPageToken": "p2",
            "resultSizeEstimate": 1,
        }
        call = gmail_calls(google)[0]
        assert call.url.params["pageToken"] == "p1"
        assert call.url.params["q"] == "is:starred"

    def test_metadata(self, signed_in, google, batch_response, thread_resource):
        google.add("POST", BATCH_URL, status_code=200, text=batch_response([(200, thread_resource("t1"))]),
                   headers={"Content-Type": "multipart/mixed; boundary=batch_response_boundary"})

        response = signed_in.post("/api/threads/metadata", json={"ids": ["t1"]})

        assert response.status_code == 200
        thread = response.json()["threads"][0]
        assert thread["id"] == "t1"
        assert thread["from"] == {"name": "Alice", "email": "alice@example.com"}
        assert thread["labelIds"] == ["INBOX"]

    @pytest.mark.parametrize("body", [
        {"ids": []},
        {"ids": [f"t{i}" for i in range(101)]},
        {"ids": ["   "]},
        {"ids": "t1"},
        {},
    ])
    def test_metadata_validation_before_network(self, signed_in, google, body):
        response = signed_in.post("/api/threads/metadata", json=body)

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Invalid request")
        assert google.requests == []

    def test_counts(self, signed_in, google):
        google.add("GET", "/users/me/threads", status_code=200, json={"resultSizeEstimate": 7})

        response = signed_in.post("/api/threads/counts", json={"panels": [
            {"name": "Work", "rules": [{"field": "from", "addresses": ["@company.com"], "action": "accept"}]},
            {"name": "Other", "rules": []},
        ]})

        assert response.status_code == 200
        assert response.json() == {"counts": [{"total": 7, "unread": 7}, {"total": 7, "unread": 7}]}
        queries = sorted(r.url.params["q"] for r in gmail_calls(google))
        assert queries == [
            "-(from:(@company.com))",
            "-(from:(@company.com)) is:unread",
            "from:(@company.com)",
            "from:(@company.com) is:unread",
        ]

    def test_counts_requires_panels(self, signed_in, google):
        response = signed_in.post("/api/threads/counts", json={"panels": []})

        assert response.status_code == 400
        assert google.requests == []

    def test_thread_detail(self, signed_in, google):
        google.add("GET", "/users/me/threads/t1", status_code=200, json={"id": "t1", "messages": []})

        response = signed_in.get("/api/thread/t1")

        assert response.status_code == 200
        assert response.json()["thread"]["id"] == "t1"

    def test_thread_not_found(self, signed_in, google):
        google.add("GET", "/users/me/threads/gone", status_code=404, json={"error": {"code": 404}})

        response = signed_in.get("/api/thread/gone")

        assert response.status_code == 404
        assert response.json() == {"detail": "Thread not found"}

    def test_gmail_rejects_token(self, signed_in, google):
        google.add("GET", "/users/me/threads/t1", status_code=401, json={"error": {"code": 401}})

        response = signed_in.get("/api/thread/t1")

        assert response.status_code == 401
        assert response.json() == {"detail": "Session expired. Please sign in again."}

    def test_gmail_server_error(self, signed_in, google):
        google.add("GET", "/users/me/threads/t1", status_code=503, text="unavailable")

        response = signed_in.get("/api/thread/t1")

        assert response.status_code == 500
        assert response.json()["detail"].startswith("Gmail API error")


class TestMutations:

    def test_mark_single_read(self, signed_in, google):
        google.add("POST", "/users/me/threads/t1/modify", status_code=200, json={})

        response = signed_in.post("/api/threads/read", json={"threadIds": ["t1"]})

        assert response.status_code == 200
        assert response.json() == {"results": [{"threadId": "t1", "success": True, "error": None}]}

    def test_mark_single_read_failure_is_response_failure(self, signed_in, google):
        google.add("POST", "/users/me/threads/t1/modify", status_code=404, json={})

        response = signed_in.post("/api/threads/read", json={"threadIds": ["t1"]})

        assert response.status_code == 404

    def test_mark_many_read_reports_per_thread(self, signed_in, google):
        google.add("POST", "/users/me/threads/bad/modify", status_code=500, text="boom")
        google.add("POST", "/modify", status_code=200, json={})

        response = signed_in.post("/api/threads/read", json={"threadIds": ["t1", "bad"]})

        assert response.status_code == 200
        results = response.json()["results"]
        assert [(r["threadId"], r["success"]) for r in results] == [("t1", True), ("bad", False)]

    def test_trash_requires_csrf(self, signed_in, google):
        response = signed_in.post("/api/threads/trash", json={"threadIds": ["t1"]})

        assert response.status_code == 403
        assert "CSRF" in response.json()["detail"]
        assert google.requests == []

    def test_trash_csrf_checked_before_body(self, signed_in, google):
        response = signed_in.post("/api/threads/trash", json={"threadIds": []})

        assert response.status_code == 403

    def test_trash(self, signed_in, google, batch_response):
        google.add("POST", BATCH_URL, status_code=200,
                   text=batch_response([(200, {"id": "t1"}), (200, {"id": "t2"})]),
                   headers={"Content-Type": "multipart/mixed; boundary=batch_response_boundary"})

        response = signed_in.post(
            "/api/threads/trash",
            json={"threadIds": ["t1", "t2"]},
            headers={"X-CSRF-Token": "csrf-token-1"},
        )

        assert response.status_code == 200
        assert response.json() == {"results": [
            {"threadId": "t1", "success": True, "error": None},
            {"threadId": "t2", "success": True, "error": None},
        ]}


class TestAttachments:

    def test_download(self, signed_in, google):
        data = base64.urlsafe_b64encode(b"%PDF-1.4 test").rstrip(b"=").decode()
        google.add("GET", "/users/me/messages/m1/attachments/att-1", status_code=200, json={"data": data})

        response = signed_in.get("/api/thread/t1/attachment", params={
            "messageId": "m1", "attachmentId": "att-1", "filename": "Résumé \"final\".pdf",
            "mimeType": "application/pdf",
        })

        assert response.status_code == 200
        assert response.content == b"%PDF-1.4 test"
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["cache-control"] == "no-store"
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="R_sum_ _final_.pdf"')
        assert "filename*=UTF-8''R%C3%A9sum%C3%A9%20_final_.pdf" in disposition

    @pytest.mark.parametrize("missing", ["messageId", "attachmentId", "filename"])
    def test_missing_parameters(self, signed_in, google, missing):
        params = {"messageId": "m1", "attachmentId": "att-1", "filename": "a.pdf"}
        params.pop(missing)

        response = signed_in.get("/api/thread/t1/attachment", params=params)

        assert response.status_code == 400
        assert missing in response.json()["detail"]
        assert google.requests == []

    def test_attachment_gone(self, signed_in, google):
        google.add("GET", "/attachments/", status_code=404, json={})

        response = signed_in.get("/api/thread/t1/attachment", params={
            "messageId": "m1", "attachmentId": "att-1", "filename": "a.pdf",
        })

        assert response.status_code == 404
        assert response.json() == {"detail": "Attachment not found"}


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
