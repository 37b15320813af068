"""
config/database.py
Async SQLAlchemy engine, session scope, and parameterized query helpers.
Uses the asyncpg driver for PostgreSQL in production; any async SQLAlchemy
URL (e.g. sqlite+aiosqlite) works for local runs and tests.

The engine is created lazily by init_db() exactly once per process.
Every accessor fails fast if called before initialization.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Optional, TypeVar, Union

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.sql import Executable

from config.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Engine / Session Factory (initialized on startup) ─────────
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


# ── Base Model ────────────────────────────────────────────────
class Base(DeclarativeBase):
    """All ORM models inherit from this."""
    pass


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"echo": settings.DEBUG}

    options = {
        "pool_size": settings.DATABASE_POOL_SIZE,
        "max_overflow": settings.DATABASE_MAX_OVERFLOW,
        "pool_timeout": settings.DATABASE_POOL_TIMEOUT,
        "pool_pre_ping": True,                          # Detect stale connections
        "pool_recycle": settings.DATABASE_IDLE_TIMEOUT,
        "echo": settings.DEBUG,
    }
    if "+asyncpg" in url:
        options["connect_args"] = {
            "timeout": settings.DATABASE_CONNECT_TIMEOUT,
            "server_settings": {
                "statement_timeout": str(settings.DATABASE_STATEMENT_TIMEOUT_MS),
            },
        }
    return options


async def init_db(database_url: Optional[str] = None, **engine_kwargs: Any) -> AsyncEngine:
    """
    Create the process-wide engine and session factory, then create tables.
    Calling it again while initialized is a no-op.
    """
    global _engine, _session_factory

    if _engine is not None:
        return _engine

    # Register models on Base.metadata
    import shared.models.models  # noqa: F401

    url = database_url or settings.database_url
    options = _engine_options(url)
    options.update(engine_kwargs)

    engine = create_async_engine(url, **options)
    async with engine.begin() as conn:
        if settings.DATABASE_AUTO_CREATE:
            await conn.run_sync(Base.metadata.create_all)
        else:
            await conn.execute(text("SELECT 1"))

    _engine = engine
    _session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,      # Don't expire after commit (async-safe)
        autoflush=False,
    )
    logger.info("Database connected (%s)", engine.url.render_as_string(hide_password=True))
    return engine


async def close_db() -> None:
    """Dispose engine. Run during app shutdown."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database connection pool closed")
    _engine = None
    _session_factory = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


# ── Transactions ──────────────────────────────────────────────

@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a session bound to one transaction.
    Commits on normal exit, rolls back and re-raises on error.

    Usage:
        async with session_scope() as db:
            rows = await query(db, select(Trip).where(Trip.id == trip_id))
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as exc:
            await session.rollback()
            logger.warning("Transaction rolled back: %s: %s", type(exc).__name__, exc)
            raise


async def transaction(callback: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run callback inside a single transaction and return its result."""
    async with session_scope() as db:
        return await callback(db)


# ── Queries ───────────────────────────────────────────────────

async def query(
    db: AsyncSession,
    statement: Union[str, Executable],
    params: Optional[dict] = None,
) -> list:
    """
    Execute a parameterized statement and return its rows.

    Raw SQL strings use named binds (``:name``) and come back as row
    mappings. SQLAlchemy statements come back as scalars, so
    ``select(Trip)`` or ``update(Trip)...returning(Trip)`` yield Trip objects.
    Parameters are always bound by the driver, never interpolated.
    """
    is_text = isinstance(statement, str)
    start = time.perf_counter()
    try:
        if is_text:
            result = await db.execute(text(statement), params or {})
            rows = list(result.mappings().all())
        else:
            result = await db.execute(statement, params) if params else await db.execute(statement)
            rows = list(result.scalars().all())
    except SQLAlchemyError as exc:
        logger.error("Query failed after %.1fms: %s", (time.perf_counter() - start) * 1000, exc)
        raise

    logger.debug(
        "Executed query in %.1fms, %d row(s)",
        (time.perf_counter() - start) * 1000,
        len(rows),
    )
    return rows


async def query_one(
    db: AsyncSession,
    statement: Union[str, Executable],
    params: Optional[dict] = None,
) -> Optional[Any]:
    rows = await query(db, statement, params)
    return rows[0] if rows else None
