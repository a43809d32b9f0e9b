"""
Shared fixtures.

Provider traffic is never real: tests build an httpx.AsyncClient on an
httpx.MockTransport whose handler plays Google.
"""

import base64
import json

import httpx
import pytest

from switchboard.core.config import load_settings
from switchboard.core.crypto import derive_key

TEST_COOKIE_SECRET = base64.b64encode(bytes(range(32))).decode()


@pytest.fixture
def settings():
    """Valid settings that ignore any local .env file."""
    return load_settings(
        GOOGLE_CLIENT_ID="test-client-id.apps.googleusercontent.com",
        GOOGLE_CLIENT_SECRET="test-client-secret",
        APP_BASE_URL="http://localhost:8000",
        COOKIE_SECRET=TEST_COOKIE_SECRET,
        _env_file=None,
    )


@pytest.fixture
def key():
    return derive_key(TEST_COOKIE_SECRET)


class RecordingTransport:
    """
    Route table for httpx.MockTransport that records every request.

    Usage:
        google = RecordingTransport()
        google.add("POST", "oauth2.googleapis.com/token", json={...})
        http = google.client()
    """

    def __init__(self):
        self.requests = []
        self._routes = []

    def add(self, method, url_fragment, responder=None, **response_kwargs):
        """Register a response (or a callable taking the request) for matching URLs."""
        self._routes.append((method, url_fragment, responder, response_kwargs))

    def calls_to(self, url_fragment):
        return [r for r in self.requests if url_fragment in str(r.url)]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for method, fragment, responder, kwargs in self._routes:
            if request.method == method and fragment in str(request.url):
                if responder is not None:
                    return responder(request)
                return httpx.Response(**kwargs)
        return httpx.Response(500, json={"error": f"unrouted {request.method} {request.url}"})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def google():
    return RecordingTransport()


def build_batch_response(parts, boundary="batch_response_boundary"):
    """
    Build a multipart/mixed batch response body.

    Each part is (status, body): body is a dict (JSON-encoded) or a raw string.
    """
    sections = []
    for index, (status, body) in enumerate(parts, start=1):
        payload = json.dumps(body) if isinstance(body, (dict, list)) else body
        sections.append(
            f"--{boundary}\r\n"
            f"Content-Type: application/http\r\n"
            f"Content-ID: <response-{index}>\r\n"
            f"\r\n"
            f"HTTP/1.1 {status} {'OK' if status == 200 else 'Error'}\r\n"
            f"Content-Type: application/json; charset=UTF-8\r\n"
            f"\r\n"
            f"{payload}\r\n"
        )
    return "".join(sections) + f"--{boundary}--\r\n"


@pytest.fixture
def batch_response():
    return build_batch_response


def gmail_thread(thread_id, subject="Hello", sender="Alice <alice@example.com>",
                 date="Mon, 15 Jan 2024 10:30:00 +0000", labels=("INBOX",)):
    """Minimal format=metadata thread resource."""
    return {
        "id": thread_id,
        "messages": [
            {
                "id": f"{thread_id}-m1",
                "snippet": f"snippet for {thread_id}",
                "labelIds": list(labels),
                "payload": {
                    "headers": [
                        {"name": "Subject", "value": subject},
                        {"name": "From", "value": sender},
                        {"name": "To", "value": "me@example.com"},
                        {"name": "Date", "value": date},
                    ]
                },
            }
        ],
    }


@pytest.fixture
def thread_resource():
    return gmail_thread
