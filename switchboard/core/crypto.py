"""
AES-256-GCM encryption for cookie payloads.

The Google refresh token is encrypted before it is stored in an HttpOnly
cookie, so a leaked raw cookie value is useless without COOKIE_SECRET.

Envelope format (each field base64url without padding, dot-separated):
    <nonce>.<tag>.<ciphertext>

- nonce: 12 random bytes, fresh for every encryption
- tag: 16-byte GCM authentication tag
- ciphertext: encrypted UTF-8 payload

CRITICAL SECURITY:
- NEVER log plaintext or keys
- Decryption fails closed: tampering raises, it never returns garbage
"""

import base64
import binascii
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

KEY_LENGTH = 32
NONCE_LENGTH = 12
TAG_LENGTH = 16
SEPARATOR = "."


class CryptoError(Exception):
    """Base exception for envelope encryption failures."""
    pass


class MalformedEnvelope(CryptoError):
    """Envelope does not have the expected structure or field sizes."""
    pass


class IntegrityError(CryptoError):
    """Authentication tag check failed (tampering or wrong key)."""
    pass


class InvalidKeyLength(CryptoError):
    """Secret does not decode to exactly 32 bytes."""
    pass


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(field: str) -> bytes:
    padded = field + "=" * (-len(field) % 4)
    try:
        return base64.b64decode(padded, altchars=b"-_", validate=True)
    except (binascii.Error, ValueError) as e:
        raise MalformedEnvelope(f"Invalid base64url field: {e}") from e


def derive_key(encoded_secret: str) -> bytes:
    """
    Decode the base64 COOKIE_SECRET into a 32-byte AES key.

    Args:
        encoded_secret: Standard or URL-safe base64 string

    Returns:
        32-byte key

    Raises:
        InvalidKeyLength: If the secret is not valid base64 or not 32 bytes

    Usage:
        key = derive_key(settings.COOKIE_SECRET)
    """
    secret = (encoded_secret or "").strip()
    try:
        key = base64.b64decode(secret.replace("-", "+").replace("_", "/") + "=" * (-len(secret) % 4))
    except (binascii.Error, ValueError) as e:
        raise InvalidKeyLength(f"COOKIE_SECRET is not valid base64: {e}") from e

    if len(key) != KEY_LENGTH:
        raise InvalidKeyLength(
            f"COOKIE_SECRET must decode to exactly {KEY_LENGTH} bytes. "
            f"Got {len(key)} bytes. Generate with: "
            f"python -c \"import os, base64; print(base64.b64encode(os.urandom(32)).decode())\""
        )
    return key


def encrypt(plaintext: str, key: bytes) -> str:
    """
    Encrypt a string with AES-256-GCM.

    Identical plaintexts produce different envelopes because every call
    draws a fresh nonce.

    Args:
        plaintext: Secret to protect (e.g. a refresh token)
        key: 32-byte key from derive_key()

    Returns:
        Envelope string "<nonce>.<tag>.<ciphertext>"
    """
    if len(key) != KEY_LENGTH:
        raise InvalidKeyLength(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")

    nonce = os.urandom(NONCE_LENGTH)
    sealed = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)

    # AESGCM appends the tag to the ciphertext
    ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return SEPARATOR.join(
        [_b64url_encode(nonce), _b64url_encode(tag), _b64url_encode(ciphertext)]
    )


def decrypt(envelope: str, key: bytes) -> str:
    """
    Decrypt an envelope produced by encrypt().

    Args:
        envelope: "<nonce>.<tag>.<ciphertext>"
        key: The same 32-byte key used for encryption

    Returns:
        Original plaintext

    Raises:
        MalformedEnvelope: Wrong field count or field sizes
        IntegrityError: Tag mismatch (tampered envelope or wrong key)
        InvalidKeyLength: Key is not 32 bytes
    """
    if len(key) != KEY_LENGTH:
        raise InvalidKeyLength(f"Key must be {KEY_LENGTH} bytes, got {len(key)}")

    parts = envelope.split(SEPARATOR)
    if len(parts) != 3:
        raise MalformedEnvelope(
            f"Malformed encrypted payload: expected 3 dot-separated parts, got {len(parts)}."
        )

    nonce, tag, ciphertext = (_b64url_decode(p) for p in parts)

    if len(nonce) != NONCE_LENGTH:
        raise MalformedEnvelope(f"Invalid nonce length: expected {NONCE_LENGTH}, got {len(nonce)}.")
    if len(tag) != TAG_LENGTH:
        raise MalformedEnvelope(f"Invalid auth tag length: expected {TAG_LENGTH}, got {len(tag)}.")

    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as e:
        raise IntegrityError("Authentication tag mismatch: envelope was tampered with or key is wrong.") from e

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as e:
        raise IntegrityError("Decrypted payload is not valid UTF-8.") from e
