"""
Local cache database connection and session management.

Uses SQLAlchemy with async support (aiosqlite driver). The database only
holds the offline thread cache; it is never a source of truth.
"""

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

# Base class for all cache tables
Base = declarative_base()


def create_cache_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine for the local cache.

    Args:
        url: SQLAlchemy URL, e.g. "sqlite+aiosqlite:///./switchboard-cache.db"
        echo: Log emitted SQL (DEBUG only)

    Returns:
        AsyncEngine
    """
    engine = create_async_engine(url, echo=echo)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_wal(dbapi_connection, connection_record):
            # Concurrent readers while a batch upsert is in flight
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Async session factory bound to the cache engine."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_cache_schema(engine: AsyncEngine) -> None:
    """
    Create cache tables if they don't exist.

    The cache schema is disposable, so there are no migrations: a schema
    change ships with a clear_all() on first run instead.
    """
    # Import models so they register with Base.metadata
    from switchboard.models import cache_db  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
