"""
Database Persistence Layer - Core Engine.

============================================================
DATABASE PERSISTENCE
============================================================

Async SQLAlchemy engine and session factory for the risk guard.

Requirements:
- SQLAlchemy ORM (asyncpg for PostgreSQL, aiosqlite for SQLite)
- Explicit transaction management
- Hard failures on persistence errors

============================================================
"""

import os
import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    async_sessionmaker,
    create_async_engine,
)

from dotenv import load_dotenv

from core.exceptions import DatabaseError
from .models import Base

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./killswitch.db"


# =============================================================
# DATABASE ENGINE
# =============================================================

def get_database_url() -> str:
    """Get async database URL from environment."""
    url = os.getenv("DATABASE_URL")

    if not url:
        logger.warning(f"DATABASE_URL not set, using default: {DEFAULT_DATABASE_URL}")
        return DEFAULT_DATABASE_URL

    return normalize_database_url(url)


def normalize_database_url(url: str) -> str:
    """Point plain PostgreSQL URLs at the asyncpg driver."""
    if url.startswith("postgresql://") or url.startswith("postgres://"):
        return "postgresql+asyncpg://" + url.split("://", 1)[1]
    return url


def create_database_engine(
    database_url: Optional[str] = None,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_recycle: int = 1800,
    echo: bool = False,
) -> AsyncEngine:
    """
    Create async SQLAlchemy engine.

    Args:
        database_url: Override for DATABASE_URL
        pool_size: Number of connections to keep in pool
        max_overflow: Max connections beyond pool_size
        pool_recycle: Recycle connections after N seconds
        echo: Log SQL statements

    Returns:
        AsyncEngine
    """
    database_url = normalize_database_url(database_url) if database_url else get_database_url()

    logger.info(f"Creating database engine for: {database_url.split('@')[-1]}")

    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, echo=echo)

    return create_async_engine(
        database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_recycle=pool_recycle,
        pool_pre_ping=True,
        echo=echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    """Session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )


# =============================================================
# DATABASE INITIALIZATION
# =============================================================

async def verify_database_connection(engine: AsyncEngine) -> bool:
    """
    Verify database connection is working.

    Raises:
        DatabaseError if connection fails
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("Database connection verified successfully")
        return True
    except OperationalError as e:
        logger.error(f"Database connection failed: {e}")
        raise DatabaseError(f"Cannot connect to database: {e}", operation="connect", cause=e) from e


async def create_all_tables(engine: AsyncEngine) -> None:
    """
    Create all tables defined in ORM models.

    Raises:
        DatabaseError if table creation fails
    """
    try:
        logger.info("Creating database tables...")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created successfully")
    except SQLAlchemyError as e:
        logger.error(f"Failed to create database tables: {e}")
        raise DatabaseError(f"Table creation failed: {e}", operation="create_all", cause=e) from e


async def initialize_database(engine: AsyncEngine) -> None:
    """
    Full database initialization sequence.

    1. Verify connection
    2. Create tables if not exist

    This MUST be called at application startup.
    """
    logger.info("Initializing database persistence layer")
    try:
        await verify_database_connection(engine)
        await create_all_tables(engine)
    except Exception as e:
        logger.critical(f"DATABASE INITIALIZATION FAILED: {e}")
        raise
    logger.info("Database initialization complete")


# =============================================================
# EXPORTS
# =============================================================

__all__ = [
    "get_database_url",
    "normalize_database_url",
    "create_database_engine",
    "create_session_factory",
    "verify_database_connection",
    "create_all_tables",
    "initialize_database",
]
