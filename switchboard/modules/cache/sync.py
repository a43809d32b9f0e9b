"""
Stale-while-revalidate inbox synchronisation.

InboxSync keeps the thread list a client shows. Cached data is served first;
fetches from Gmail are merged in with merge_threads() and written back to
the LocalCache. When a fetch fails for transient reasons (timeout, network,
Gmail 5xx/429) the cached list stays as it is and a notice is returned
instead of an exception. Authentication failures still raise so the caller
can send the user back to sign-in.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from switchboard.core.http import RequestTimeout, TransportFailure
from switchboard.models.thread import ThreadActionResult, ThreadDetail, ThreadMetadata
from switchboard.modules.cache.local_cache import LocalCache
from switchboard.modules.cache.reconcile import merge_threads
from switchboard.modules.gmail.client import (
    DEFAULT_PAGE_SIZE,
    GmailAPIError,
    GmailAuthError,
    GmailClient,
    GmailNotFound,
)

logger = logging.getLogger(__name__)

OFFLINE_NOTICE = "You're offline. Showing cached emails."
TIMEOUT_NOTICE = "Gmail is taking too long to respond. Showing cached emails."
PROVIDER_NOTICE = "Couldn't refresh from Gmail. Showing cached emails."


@dataclass
class InboxState:
    threads: List[ThreadMetadata] = field(default_factory=list)
    next_page_token: Optional[str] = None
    from_cache: bool = False
    notice: Optional[str] = None


@dataclass
class ThreadView:
    detail: ThreadDetail
    from_cache: bool = False
    notice: Optional[str] = None


def _notice_for(error: Exception) -> str:
    if isinstance(error, RequestTimeout):
        return TIMEOUT_NOTICE
    if isinstance(error, TransportFailure):
        return OFFLINE_NOTICE
    return PROVIDER_NOTICE


def _is_recoverable(error: Exception) -> bool:
    if isinstance(error, (GmailAuthError, GmailNotFound)):
        return False
    return isinstance(error, (TransportFailure, GmailAPIError))


class InboxSync:
    """
    Inbox list + reading view backed by LocalCache.

    Usage:
        sync = InboxSync(gmail, cache)
        state = await sync.load_cached()       # render immediately
        state = await sync.refresh(token)      # then revalidate
        state = await sync.load_more(token)    # infinite scroll
    """

    def __init__(self, gmail: GmailClient, cache: LocalCache, page_size: int = DEFAULT_PAGE_SIZE):
        self.gmail = gmail
        self.cache = cache
        self.page_size = page_size
        self.threads: List[ThreadMetadata] = []
        self.next_page_token: Optional[str] = None

    def _state(self, from_cache: bool = False, notice: Optional[str] = None) -> InboxState:
        return InboxState(
            threads=self.threads,
            next_page_token=self.next_page_token,
            from_cache=from_cache,
            notice=notice,
        )

    async def load_cached(self) -> InboxState:
        """Load every cached thread, newest first."""
        cached = await self.cache.get_all_metadata()
        self.threads = sorted((item.data for item in cached), key=lambda t: t.date, reverse=True)
        return self._state(from_cache=True)

    async def _fetch_page(self, access_token: str, page_token: Optional[str]):
        page = await self.gmail.list_threads(access_token, page_token=page_token, page_size=self.page_size)
        metadata = await self.gmail.batch_get_metadata(access_token, [t.id for t in page.threads])
        return page, metadata

    async def refresh(self, access_token: str) -> InboxState:
        """
        Revalidate the first page against Gmail.

        Raises:
            GmailAuthError: Access token rejected (sign in again)
        """
        try:
            page, metadata = await self._fetch_page(access_token, None)
        except Exception as e:
            if not _is_recoverable(e):
                raise
            logger.warning(
                "Inbox refresh failed, keeping cached threads",
                extra={"error_type": type(e).__name__, "cached": len(self.threads)}
            )
            return self._state(from_cache=True, notice=_notice_for(e))

        merged = merge_threads(self.threads, metadata, "refresh")
        if merged is not self.threads:
            await self.cache.put_metadata_batch(metadata)
            self.threads = merged

        # Keep the cursor of pages already loaded with load_more
        if self.next_page_token is None:
            self.next_page_token = page.next_page_token

        return self._state()

    async def load_more(self, access_token: str) -> InboxState:
        """Fetch the next page and append threads not already shown."""
        if not self.next_page_token:
            return self._state()

        try:
            page, metadata = await self._fetch_page(access_token, self.next_page_token)
        except Exception as e:
            if not _is_recoverable(e):
                raise
            logger.warning(
                "Loading more threads failed",
                extra={"error_type": type(e).__name__}
            )
            return self._state(notice=_notice_for(e))

        merged = merge_threads(self.threads, metadata, "append")
        if merged is not self.threads:
            appended = merged[len(self.threads):]
            await self.cache.put_metadata_batch(appended)
            self.threads = merged

        self.next_page_token = page.next_page_token
        return self._state()

    async def open_thread(self, access_token: str, thread_id: str) -> ThreadView:
        """
        Fetch a thread for reading, falling back to the cached copy.

        Raises:
            GmailAuthError: Access token rejected
            GmailNotFound: Thread no longer exists
            TransportFailure: Fetch failed and nothing is cached
        """
        try:
            detail = await self.gmail.get_thread_detail(access_token, thread_id)
        except Exception as e:
            if not _is_recoverable(e):
                raise
            cached = await self.cache.get_detail(thread_id)
            if cached is None:
                raise
            logger.info(
                "Serving cached thread detail",
                extra={"thread_id": thread_id, "error_type": type(e).__name__}
            )
            return ThreadView(detail=cached.data, from_cache=True, notice=_notice_for(e))

        await self.cache.put_detail(detail)
        return ThreadView(detail=detail)

    async def forget(self, thread_ids: Sequence[str]) -> None:
        """Drop threads from the list and the metadata cache (after trash)."""
        gone = set(thread_ids)
        if not gone:
            return
        self.threads = [t for t in self.threads if t.id not in gone]
        for thread_id in gone:
            await self.cache.remove_metadata(thread_id)

    async def apply_trash_results(self, results: Sequence[ThreadActionResult]) -> None:
        await self.forget([r.thread_id for r in results if r.success])
