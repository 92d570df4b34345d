"""
Database Session Management

Async SQLAlchemy engine and session factory shared by the sync workers and
scripts.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from backend.config import get_settings

settings = get_settings()


def create_engine(url: str, **kwargs) -> AsyncEngine:
    """Async engine with the pool settings used by the workers."""
    options = {
        "echo": settings.debug,
        "pool_pre_ping": True,
        "pool_size": 10,
        "max_overflow": 20,
        "pool_timeout": 30,
        "pool_recycle": 1800,  # Recycle connections every 30 minutes
    }
    options.update(kwargs)
    return create_async_engine(url, **options)


engine = create_engine(settings.database_url)

# Session factory; objects stay usable after the commits made mid-run
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager for standalone async sessions.

    Repositories commit at their own commit points; anything left uncommitted
    when the block raises is rolled back.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
