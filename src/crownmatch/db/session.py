# src/crownmatch/db/session.py

"""Engine and session factory shared by the API and migrations."""

import logging
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from crownmatch.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits for another writer before giving up
SQLITE_BUSY_TIMEOUT = 15.0


def create_engine_from_settings(settings: Settings) -> AsyncEngine:
    """Build the async engine for `settings.database_url`.

    Concurrent pairings contend for the SQLite write lock, so SQLite
    connections wait for it instead of failing at once. Pool options only
    apply to server databases.
    """
    options: dict = {"echo": settings.db_echo}
    if settings.database_url.startswith("sqlite"):
        options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT}
    else:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
            pool_recycle=settings.db_pool_recycle,
        )
    return create_async_engine(settings.database_url, **options)


engine = create_engine_from_settings(get_settings())

# Services commit explicitly; instances stay readable after commit
AsyncSessionLocal = async_sessionmaker(
    bind=engine, autocommit=False, autoflush=False, expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request.

    Anything left uncommitted when the request fails is rolled back.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception as e:
            logger.warning(
                "Rolling back request session", extra={"error": type(e).__name__}
            )
            await session.rollback()
            raise
