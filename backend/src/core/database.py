"""
Database configuration and async session management for PostgreSQL.

The engine is created on first use so importing the application (and the
test suite, which swaps in an in-memory account store) never opens a
connection pool. The schema itself is managed by the Alembic migrations
in ``backend/alembic``.
"""

from typing import Dict, Optional
from urllib.parse import parse_qs, urlparse, urlunparse

from sqlalchemy import Engine, create_engine, event, pool
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from backend.src.core.config import settings
from backend.src.core.logging import get_logger

logger = get_logger(__name__)

# Base class for ORM models
Base = declarative_base()

_engine: Optional[AsyncEngine] = None
_sync_engine: Optional[Engine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def build_async_url(database_url: str) -> tuple[str, Dict[str, bool]]:
    """
    Convert a ``postgresql://`` URL into an asyncpg URL plus connect args.

    asyncpg does not understand libpq query parameters, so ``sslmode`` is
    translated into the ``ssl`` connect argument and the query is dropped.

    Returns:
        Tuple of (asyncpg URL, connect_args)
    """
    parsed = urlparse(database_url)
    query_params = parse_qs(parsed.query)

    connect_args: Dict[str, bool] = {}
    if "sslmode" in query_params:
        sslmode = query_params["sslmode"][0]
        if sslmode in ("require", "prefer", "allow"):
            connect_args["ssl"] = True
        elif sslmode == "disable":
            connect_args["ssl"] = False

    clean_url = urlunparse(parsed._replace(query=""))
    for prefix in ("postgresql://", "postgres://"):
        if clean_url.startswith(prefix):
            clean_url = "postgresql+asyncpg://" + clean_url[len(prefix):]
            break
    return clean_url, connect_args


def get_engine() -> AsyncEngine:
    """Return the process-wide async engine, creating it on first use."""
    global _engine
    if _engine is None:
        url, connect_args = build_async_url(settings.DATABASE_URL)
        _engine = create_async_engine(
            url,
            poolclass=pool.AsyncAdaptedQueuePool,
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
            pool_recycle=3600,
            echo=settings.DEBUG,
            connect_args=connect_args,
        )
        event.listen(_engine.sync_engine, "connect", _set_statement_timeout)
        logger.info("Database engine created")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            autocommit=False,
            autoflush=False,
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


def get_sync_engine() -> Engine:
    """
    Synchronous psycopg2 engine for migrations.

    libpq understands ``sslmode`` itself, so the URL is passed through
    with only the driver swapped.
    """
    global _sync_engine
    if _sync_engine is None:
        url = settings.DATABASE_URL
        for prefix in ("postgresql://", "postgres://"):
            if url.startswith(prefix):
                url = "postgresql+psycopg2://" + url[len(prefix):]
                break
        _sync_engine = create_engine(
            url,
            poolclass=pool.QueuePool,
            pool_size=2,
            max_overflow=0,
            pool_pre_ping=True,
            echo=settings.DEBUG,
        )
        event.listen(_sync_engine, "connect", _set_statement_timeout)
    return _sync_engine


def _set_statement_timeout(dbapi_conn, connection_record):
    """Bound every statement to 30 seconds."""
    cursor = dbapi_conn.cursor()
    cursor.execute("SET statement_timeout = 30000")
    cursor.close()


async def close_db() -> None:
    """Dispose the engine if it was ever created."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _session_factory = None
