import os
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, AsyncEngine, create_async_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool, StaticPool


engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[sessionmaker] = None
Base = declarative_base()

# Seconds a SQLite writer waits on a locked database before the driver
# reports "database is locked" (which the ledger then retries).
SQLITE_BUSY_TIMEOUT = 5


def normalize_database_url(database_url: str) -> str:
    """Point plain ``postgresql://`` URLs at the asyncpg driver."""

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def _engine_options(database_url: str) -> dict:
    options: dict = {"echo": False}
    if not database_url.startswith("sqlite+aiosqlite://"):
        options["pool_pre_ping"] = True
        return options
    if ":memory:" in database_url:
        # every session must share the one connection that holds the data
        options["poolclass"] = StaticPool
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["poolclass"] = NullPool
        options["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT}
    return options


def get_engine() -> AsyncEngine:
    """Return the process-wide engine, creating it from ``DATABASE_URL``.

    Nothing is created at import time, so tests and scripts can set the
    environment first. Raises ``RuntimeError`` when ``DATABASE_URL`` is unset.
    """

    global engine, AsyncSessionLocal

    if engine is None:
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise RuntimeError("DATABASE_URL environment variable is required")
        database_url = normalize_database_url(database_url)
        engine = create_async_engine(database_url, **_engine_options(database_url))
        AsyncSessionLocal = sessionmaker(
            engine, class_=AsyncSession, expire_on_commit=False
        )

    return engine


def get_session_factory() -> sessionmaker:
    """Session factory handed to the ledger, aggregation and backfill services."""

    if AsyncSessionLocal is None:
        get_engine()
    if AsyncSessionLocal is None:
        raise RuntimeError("Session factory was not initialised")
    return AsyncSessionLocal


async def get_session() -> AsyncSession:
    """Provide a database session for FastAPI dependencies."""

    async with get_session_factory()() as session:
        yield session


async def create_schema() -> None:
    """Create every table directly; for local SQLite databases and tests."""

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""

    global engine, AsyncSessionLocal

    if engine is not None:
        await engine.dispose()
    engine = None
    AsyncSessionLocal = None
