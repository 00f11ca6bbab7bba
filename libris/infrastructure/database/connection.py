"""Engines and session factories.

Two engines share one URL: the pooled one serves API requests, the
``NullPool`` one serves Celery workers.  Every ``asyncio.run()`` in a
worker starts a new event loop, and pooled asyncpg connections stay bound
to the loop that opened them.
"""

import logging
from typing import Any, AsyncGenerator

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from libris.core.config import settings
from libris.infrastructure.database.models import Base

logger = logging.getLogger(__name__)


def _pool_options(url: str) -> dict[str, Any]:
    # SQLite drivers reject the queue-pool sizing arguments.
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
        "pool_pre_ping": True,
    }


engine = create_async_engine(
    settings.database_url, echo=settings.db_echo, **_pool_options(settings.database_url)
)
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

worker_engine = create_async_engine(settings.database_url, echo=settings.db_echo, poolclass=NullPool)
worker_session_maker = async_sessionmaker(
    worker_engine, class_=AsyncSession, expire_on_commit=False
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session; rolled back if the handler leaves it mid-transaction."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                await session.rollback()


async def init_db() -> None:
    """Create any missing tables."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Schema ready on %s", make_url(settings.database_url).render_as_string(hide_password=True))
