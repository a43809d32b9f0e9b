"""
Security utilities for the OAuth dance and CSRF protection.

CRITICAL SECURITY REQUIREMENTS:
1. NEVER log tokens (access_token, refresh_token, PKCE verifier, CSRF token)
2. ALWAYS compare secrets in constant time
"""

import secrets
from typing import NamedTuple, Optional

from authlib.oauth2.rfc7636 import create_s256_code_challenge

PKCE_VERIFIER_BYTES = 32
CSRF_TOKEN_BYTES = 32
STATE_TOKEN_BYTES = 16


class PkcePair(NamedTuple):
    """PKCE verifier (kept secret) and its S256 challenge (sent to Google)."""

    verifier: str
    challenge: str


def generate_pkce() -> PkcePair:
    """
    Generate a PKCE code verifier and S256 challenge (RFC 7636).

    The verifier is 32 random bytes base64url-encoded (43 characters),
    within the 43-128 character range the RFC requires.

    Usage:
        pair = generate_pkce()
        # pair.challenge -> authorization URL
        # pair.verifier  -> token exchange
    """
    verifier = secrets.token_urlsafe(PKCE_VERIFIER_BYTES)
    return PkcePair(verifier=verifier, challenge=create_s256_code_challenge(verifier))


def generate_state_token() -> str:
    """
    Generate secure random state token for OAuth flow (CSRF protection).

    Returns:
        URL-safe random string
    """
    return secrets.token_urlsafe(STATE_TOKEN_BYTES)


def generate_csrf_token() -> str:
    """Generate the double-submit CSRF token stored in the sb_csrf cookie."""
    return secrets.token_urlsafe(CSRF_TOKEN_BYTES)


def constant_time_equals(a: Optional[str], b: Optional[str]) -> bool:
    """
    Compare two secrets without leaking timing information.

    Missing, empty, or different-length values never match.
    """
    if not a or not b:
        return False
    if len(a) != len(b):
        return False
    return secrets.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
