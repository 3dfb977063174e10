"""
Socius Sync — Database Engines and Sessions
=============================================

What:  Async SQLAlchemy engine construction, the reference server's session
       factory and FastAPI dependency, and the declarative bases.
How:   build_engine() applies pool sizing only where the dialect pools
       connections (not SQLite). The server engine is created at import from
       settings.database_url; the device-side SQL blob backend builds its own
       engine from settings.local_store_url.
Who:   Server routes (via get_db_session), RecordService, SqlBlobBackend,
       Alembic.

Two declarative bases:
    Base        tables of the reference server, managed by Alembic
    DeviceBase  the on-device blob table, created on first use
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from socius_sync.config import settings


def build_engine(url: str) -> AsyncEngine:
    """
    Create an async engine for `url`.

    Pool options are only passed to server databases; SQLite drivers use
    their own pool classes that reject pool_size/max_overflow.
    """
    options = {"echo": settings.log_level == "DEBUG"}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,
        )
    return create_async_engine(url, **options)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: rows stay readable after the commit
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Reference server engine ───────────────────────────────────────────────
engine = build_engine(settings.database_url)
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for the reference server's ORM models."""
    pass


class DeviceBase(DeclarativeBase):
    """Base class for tables that live in the on-device database."""
    pass


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Commits when the handler returns, rolls back and re-raises when it
    raises, and always closes the session.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def dispose_engine() -> None:
    """Closes all pooled connections. Called from the server lifespan."""
    await engine.dispose()
