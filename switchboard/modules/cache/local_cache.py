"""
Persistent offline cache for thread metadata and thread detail.

Backed by SQLite through SQLAlchemy async (aiosqlite). Each row stores the
domain object as JSON plus the epoch-ms instant it was written. Entries
never expire; deciding what is stale is up to the caller.

Usage:
    engine = create_cache_engine(settings.CACHE_DATABASE_URL)
    await init_cache_schema(engine)
    cache = LocalCache(create_session_factory(engine))
    await cache.put_metadata_batch(threads)
"""

import logging
import time
from typing import Callable, Dict, List, NamedTuple, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from switchboard.models.cache_db import ThreadDetailRow, ThreadMetadataRow
from switchboard.models.thread import AttachmentInfo, CachedItem, ThreadDetail, ThreadMetadata

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CacheStats(NamedTuple):
    metadata_count: int
    detail_count: int


class LocalCache:
    """Thread cache over two tables: thread_metadata and thread_detail."""

    def __init__(self, session_factory: async_sessionmaker, clock: Callable[[], int] = _now_ms):
        self._session_factory = session_factory
        self._clock = clock

    # ------------------------------------------------------------------
    # Metadata (inbox list)
    # ------------------------------------------------------------------

    async def put_metadata_batch(self, threads: Sequence[ThreadMetadata]) -> None:
        """Upsert all threads in one transaction (all-or-nothing)."""
        if not threads:
            return

        cached_at = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                for thread in threads:
                    await session.merge(ThreadMetadataRow(
                        id=thread.id,
                        data=thread.model_dump(mode="json", by_alias=True),
                        cached_at=cached_at,
                    ))

        logger.debug("Cached thread metadata", extra={"count": len(threads)})

    async def get_all_metadata(self) -> List[CachedItem[ThreadMetadata]]:
        async with self._session_factory() as session:
            result = await session.execute(select(ThreadMetadataRow).order_by(ThreadMetadataRow.id))
            rows = result.scalars().all()

        return [
            CachedItem[ThreadMetadata](
                id=row.id,
                data=ThreadMetadata.model_validate(row.data),
                cached_at=row.cached_at,
            )
            for row in rows
        ]

    async def remove_metadata(self, thread_id: str) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(ThreadMetadataRow).where(ThreadMetadataRow.id == thread_id))

    # ------------------------------------------------------------------
    # Detail (reading view)
    # ------------------------------------------------------------------

    async def put_detail(self, detail: ThreadDetail) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.merge(ThreadDetailRow(
                    id=detail.id,
                    data=detail.model_dump(mode="json", by_alias=True),
                    cached_at=self._clock(),
                ))

    async def get_detail(self, thread_id: str) -> Optional[CachedItem[ThreadDetail]]:
        async with self._session_factory() as session:
            row = await session.get(ThreadDetailRow, thread_id)

        if row is None:
            return None
        return CachedItem[ThreadDetail](
            id=row.id,
            data=ThreadDetail.model_validate(row.data),
            cached_at=row.cached_at,
        )

    async def get_attachment_index(self) -> Dict[str, List[AttachmentInfo]]:
        """
        Map thread id -> every attachment across its cached messages.

        Threads without attachments are left out.
        """
        index: Dict[str, List[AttachmentInfo]] = {}

        async with self._session_factory() as session:
            result = await session.scalars(select(ThreadDetailRow))
            for row in result:
                attachments = [
                    AttachmentInfo.model_validate(attachment)
                    for message in (row.data or {}).get("messages") or []
                    for attachment in message.get("attachments") or []
                ]
                if attachments:
                    index[row.id] = attachments

        return index

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def clear_all(self) -> None:
        async with self._session_factory() as session:
            async with session.begin():
                await session.execute(delete(ThreadMetadataRow))
                await session.execute(delete(ThreadDetailRow))

        logger.info("Local thread cache cleared")

    async def stats(self) -> CacheStats:
        async with self._session_factory() as session:
            metadata_count = await session.scalar(select(func.count()).select_from(ThreadMetadataRow))
            detail_count = await session.scalar(select(func.count()).select_from(ThreadDetailRow))

        return CacheStats(metadata_count=metadata_count or 0, detail_count=detail_count or 0)
