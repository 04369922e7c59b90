"""
Async database session management using SQLAlchemy 2.0.

The engine is created once at application start and disposed at shutdown;
callers get sessions through the request dependency or a background scope.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from veritasor.core.config import Settings, get_settings
from veritasor.db.models import Base

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


async def init_db(settings: Settings | None = None, *, create_schema: bool = False) -> None:
    """
    Initialize the database engine and session factory.

    ``create_schema`` issues ``CREATE TABLE`` for missing tables, for local
    development without a migration run.
    """
    global _engine, _session_factory

    settings = settings or get_settings()

    _engine = create_async_engine(
        str(settings.database_url),
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout,
        pool_pre_ping=True,
        echo=settings.debug,
    )
    _session_factory = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    if create_schema:
        async with _engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose the engine and release pooled connections."""
    global _engine, _session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a request-scoped session.

    Commits when the request handler returns, rolls back when it raises.
    """
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def get_background_session() -> AsyncGenerator[AsyncSession, None]:
    """Standalone session for CLI tools and background jobs; caller commits."""
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        yield session

