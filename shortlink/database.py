"""Database configuration and session management for the shortlink service.

This module provides SQLAlchemy async engine setup, the session factory used by
the durable store, and database lifecycle operations. PostgreSQL (asyncpg) is
the deployment backend; SQLite (aiosqlite) works for local runs and tests.

Flow Diagram — Database Operations
=================================
::
    ┌─────────────┐
    │  LinkStore   │
    │  operation   │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ session_     │
    │ factory()    │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Short-lived  │
    │ AsyncSession │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Commit or    │
    │ rollback     │
    └─────────────┘

Key Behaviours
===============
- The engine is created lazily on first use and reused afterwards.
- Every store operation opens its own session, so background tasks never
  share a session with the request that spawned them.
- Tables are created on application startup by ``init_db()``.
- Engine is disposed on application shutdown by ``close_db()``.

Classes:
    Base:  SQLAlchemy declarative base for all models.

Functions:
    build_engine():  Creates an engine with dialect-appropriate pooling.
    get_session_factory():  Returns the process-wide session factory.
    init_db():  Creates all tables on startup.
    close_db():  Disposes the engine on shutdown.
"""

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from shortlink.config import get_settings

__all__ = ["Base", "build_engine", "build_session_factory", "get_engine", "get_session_factory", "init_db", "close_db"]

settings = get_settings()

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; connection pool sizing only applies to server databases."""
    url = make_url(database_url)
    if url.get_backend_name() == "sqlite":
        return create_async_engine(url, echo=echo)
    return create_async_engine(
        url,
        echo=echo,
        pool_size=20,
        max_overflow=10,
        pool_pre_ping=True,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.DATABASE_URL, echo=(settings.APP_ENV == "development"))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(get_engine())
    return _session_factory


async def init_db() -> None:
    # Importing models registers their tables on Base.metadata.
    import shortlink.models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
