"""
LearnHub Learning Management System
Database connection and session management
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncSession,
    async_sessionmaker,
    AsyncEngine
)
from sqlalchemy.pool import StaticPool

from .models import Base
from ...config import get_settings

# Configure logging
logger = logging.getLogger(__name__)

# Global variables
async_engine: Optional[AsyncEngine] = None
AsyncSessionLocal: Optional[async_sessionmaker] = None


def get_async_database_url(database_url: str) -> str:
    """Convert sync database URL to async version"""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    elif database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    """Let SQLAlchemy issue BEGIN itself so SAVEPOINT nests inside it on SQLite"""

    @event.listens_for(engine.sync_engine, "connect")
    def disable_driver_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def emit_begin(conn):
        conn.exec_driver_sql("BEGIN")


def create_async_engine_instance() -> AsyncEngine:
    """Create asynchronous SQLAlchemy engine"""
    settings = get_settings()
    database_url = get_async_database_url(settings.database_url)

    engine_kwargs = {
        "echo": settings.DB_ECHO,
    }

    if database_url.startswith("sqlite"):
        # SQLite specific configuration
        engine_kwargs.update({
            "poolclass": StaticPool,
            "connect_args": {
                "check_same_thread": False,
                "timeout": 20
            }
        })
    else:
        # PostgreSQL specific configuration
        engine_kwargs.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": 30,
            "pool_recycle": 3600,
            "pool_pre_ping": True
        })

    engine = create_async_engine(database_url, **engine_kwargs)

    if database_url.startswith("sqlite"):
        enable_sqlite_savepoints(engine)

    return engine


async def init_database():
    """Initialize database engine and create tables"""
    global async_engine, AsyncSessionLocal

    if async_engine is not None:
        return

    logger.info("Initializing database connections...")

    try:
        async_engine = create_async_engine_instance()

        AsyncSessionLocal = async_sessionmaker(
            bind=async_engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=True
        )

        await test_async_connection()
        await create_tables()

        logger.info("✅ Database initialized successfully")

    except Exception as e:
        logger.error(f"❌ Database initialization failed: {e}")
        raise


async def test_async_connection():
    """Test async database connection"""
    try:
        async with async_engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        logger.info("✅ Async database connection successful")
    except Exception as e:
        logger.error(f"❌ Async database connection failed: {e}")
        raise


async def create_tables():
    """Create database tables"""
    try:
        async with async_engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("✅ Database tables created successfully")

    except Exception as e:
        logger.error(f"❌ Failed to create database tables: {e}")
        raise


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager yielding a session bound to the async engine"""
    if AsyncSessionLocal is None:
        await init_database()

    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency providing a database session"""
    async with get_async_session() as session:
        yield session


async def check_database_health() -> dict:
    """Run a trivial query and report database health"""
    started = time.perf_counter()
    try:
        async with get_async_session() as session:
            await session.execute(text("SELECT 1"))

        return {
            "status": "healthy",
            "database": "connected",
            "response_time_ms": round((time.perf_counter() - started) * 1000, 2)
        }
    except Exception as e:
        logger.error(f"❌ Database health check failed: {e}")
        return {
            "status": "unhealthy",
            "database": "connection_failed",
            "error": str(e)
        }


async def close_database_connections():
    """Close all database connections"""
    global async_engine, AsyncSessionLocal

    try:
        if async_engine:
            await async_engine.dispose()
            async_engine = None
            AsyncSessionLocal = None
            logger.info("✅ Async database engine disposed")

    except Exception as e:
        logger.error(f"❌ Error closing database connections: {e}")


__all__ = [
    "init_database",
    "get_async_session",
    "get_db",
    "check_database_health",
    "close_database_connections"
]
