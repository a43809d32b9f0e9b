"""
Process-wide access-token cache.

Keyed by the encrypted refresh-token cookie value, which is unique per
browser session, so the cache never needs to decrypt anything to look up a
hit. Entries are stored with Google's expiry minus a 5-minute safety buffer.

One TokenCache is created at startup and injected into the SessionManager.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

TOKEN_EXPIRY_BUFFER_SECONDS = 5 * 60


@dataclass
class CachedAccessToken:
    access_token: str
    expires_at: float


class TokenCache:
    """
    In-memory access-token cache with expiry buffering.

    Usage:
        cache = TokenCache()
        cache.put(encrypted_cookie, "ya29...", expires_in=3599)
        token = cache.get(encrypted_cookie)  # None once within 5 min of expiry
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.time,
        expiry_buffer: float = TOKEN_EXPIRY_BUFFER_SECONDS,
    ):
        self._clock = clock
        self._expiry_buffer = expiry_buffer
        self._entries: Dict[str, CachedAccessToken] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() >= entry.expires_at:
            self._discard(key)
            return None
        return entry.access_token

    def put(self, key: str, access_token: str, expires_in: float) -> CachedAccessToken:
        self._prune()
        entry = CachedAccessToken(
            access_token=access_token,
            expires_at=self._clock() + expires_in - self._expiry_buffer,
        )
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)
        self._locks.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()
        self._locks.clear()

    def lock_for(self, key: str) -> asyncio.Lock:
        """Per-session lock so concurrent misses share a single refresh."""
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _discard(self, key: str) -> None:
        # A held lock stays so waiters and newcomers still share it
        self._entries.pop(key, None)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def _prune(self) -> None:
        """Drop expired entries and idle locks of sessions with no entry."""
        now = self._clock()
        for key in [k for k, entry in self._entries.items() if now >= entry.expires_at]:
            self._discard(key)
        for key in [k for k, lock in self._locks.items() if k not in self._entries and not lock.locked()]:
            del self._locks[key]

    def __len__(self) -> int:
        return len(self._entries)
