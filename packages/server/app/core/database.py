"""
Database engine and session management.

Request handlers share one session per request, committed when the handler
returns and rolled back when it raises. Work that runs outside a request
(push sends, webhook lookups, ARQ jobs) opens its own short-lived session via
``get_session_context`` so concurrent sends never share one.

Role cache invalidations recorded on a session are flushed after its commit.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from app.core import cache
from app.core.config import get_settings

settings = get_settings()


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool options for PostgreSQL; SQLite (local runs) takes none of them."""
    if make_url(database_url).get_backend_name() == "sqlite":
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_max_overflow,
    }


engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    **engine_options(settings.database_url),
)

async_session_factory = sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one transaction per request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            await cache.flush_invalidations(session)
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_session_context():
    """Same transaction handling as ``get_session`` for code outside a request."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
            await cache.flush_invalidations(session)
        except Exception:
            await session.rollback()
            raise
