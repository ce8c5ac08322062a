"""Async SQLAlchemy engine and session management.

Production runs on PostgreSQL via asyncpg. A ``sqlite+aiosqlite`` URL is
accepted for local development; it gets no pool sizing and none of the
asyncpg connect arguments.
"""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from meza.config import Settings, get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def engine_options(url: str, settings: Settings) -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` for this backend."""
    if make_url(url).get_backend_name() == "sqlite":
        return {"echo": False}
    return {
        "pool_size": settings.db_pool_size,
        "max_overflow": settings.db_pool_size,
        "pool_pre_ping": True,
        "pool_timeout": settings.db_pool_timeout_seconds,
        "echo": False,
        # Transaction-mode poolers reject prepared statements.
        "connect_args": {"statement_cache_size": 0, "command_timeout": settings.db_command_timeout_seconds},
    }


async def init_db(url: str, settings: Settings | None = None) -> None:
    """Create the engine and the session factory shared by the API, workers and the dispatcher."""
    global _engine, _session_factory  # noqa: PLW0603
    _engine = create_async_engine(url, **engine_options(url, settings or get_settings()))
    _session_factory = async_sessionmaker(
        _engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def close_db() -> None:
    global _engine, _session_factory  # noqa: PLW0603
    if _engine:
        await _engine.dispose()
        _engine = None
        _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Session factory for collaborators that commit on their own (notification dispatcher, workers)."""
    if _session_factory is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    return _session_factory


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session (FastAPI dependency)."""
    async with get_session_factory()() as session:
        yield session
