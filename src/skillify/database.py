"""Async engine and request-scoped sessions.

PostgreSQL (asyncpg) in production. SQLite URLs get a single shared
connection with SQLAlchemy-managed transactions so savepoints and foreign
keys behave as they do on Postgres.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_engine: AsyncEngine | None = None
_sessionmaker: async_sessionmaker[AsyncSession] | None = None

_NOT_READY = "Database not initialized. Call init_db() first."


def _build_sqlite_engine(url: str) -> AsyncEngine:
    engine = create_async_engine(url, poolclass=StaticPool, connect_args={"check_same_thread": False})

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, _record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):  # type: ignore[no-untyped-def]
        conn.exec_driver_sql("BEGIN")

    return engine


async def init_db(url: str) -> None:
    """Create the engine and session factory for ``url``."""
    global _engine, _sessionmaker  # noqa: PLW0603
    if url.startswith("sqlite"):
        _engine = _build_sqlite_engine(url)
    else:
        _engine = create_async_engine(url, pool_size=20, max_overflow=10, pool_pre_ping=True)
    _sessionmaker = async_sessionmaker(_engine, expire_on_commit=False)


async def create_schema() -> None:
    """Create missing tables from the ORM metadata."""
    from skillify.db import models  # noqa: F401
    from skillify.db.base import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    global _engine, _sessionmaker  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError(_NOT_READY)
    return _engine


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """One session per request. Routes commit explicitly; anything uncommitted rolls back."""
    if _sessionmaker is None:
        raise RuntimeError(_NOT_READY)
    async with _sessionmaker() as session:
        yield session
