"""
Database connection and session management

Registered prover endpoints live in a relational store:
- SQLite (default): aiosqlite with a StaticPool single connection
- PostgreSQL: asyncpg with a pooled engine
"""

import logging
import os
from datetime import datetime, timezone
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from prover_registry.core.config import settings

logger = logging.getLogger(__name__)


def _is_sqlite() -> bool:
    """Check if using SQLite backend."""
    return settings.DATABASE_URL.startswith("sqlite")


def _sqlite_path() -> str:
    """Filesystem path of the SQLite database."""
    db_url = settings.DATABASE_URL
    if "///" in db_url:
        return db_url.split("///", 1)[1]
    return "./data/prover_registry.db"


def _create_sqlite_engine():
    """Create the SQLite async engine."""
    db_path = _sqlite_path()

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=settings.APP_DEBUG,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    logger.info(f"Database: SQLite ({db_path})")
    return engine


def _create_postgresql_engine():
    """Create the PostgreSQL async engine."""
    engine = create_async_engine(
        settings.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://"),
        echo=settings.APP_DEBUG,
        future=True,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_recycle=3600,  # Recycle connections every hour
        pool_timeout=30,
        connect_args={
            "timeout": 5,
            "command_timeout": 5,
            "server_settings": {"application_name": "prover_registry"},
        },
    )

    logger.info("Database: PostgreSQL")
    return engine


if _is_sqlite():
    engine = _create_sqlite_engine()
else:
    engine = _create_postgresql_engine()

# Create async session factory
async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

# Create base class for models
Base = declarative_base()


def utc_now() -> datetime:
    """
    Return current UTC time as a naive datetime (no timezone info).

    Columns use TIMESTAMP WITHOUT TIME ZONE, which asyncpg refuses to bind
    timezone-aware datetimes to.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


async def init_db():
    """Create tables for all registered models"""
    # Import models so they register with Base.metadata
    from prover_registry.models.prover_endpoint import ProverEndpoint  # noqa: F401

    if _is_sqlite():
        directory = os.path.dirname(_sqlite_path())
        if directory and directory != ":memory:":
            os.makedirs(directory, exist_ok=True)

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db():
    """Dispose of the engine's connections"""
    await engine.dispose()
    logger.info("Database connections closed")
