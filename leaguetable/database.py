"""Async database connection using SQLAlchemy (supports SQLite and PostgreSQL)."""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from leaguetable.config import AutomationSettings, get_settings

# Register tables on SQLModel.metadata
from leaguetable import models  # noqa: F401

logger = logging.getLogger(__name__)


def get_database_url(url: str) -> str:
    """Convert database URL to async format."""
    # SQLite
    if url.startswith("sqlite+aiosqlite"):
        return url
    if url.startswith("sqlite"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)

    # PostgreSQL
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def create_engine(settings: Optional[AutomationSettings] = None, url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for the configured database."""
    settings = settings or get_settings()
    database_url = get_database_url(url or settings.DATABASE_URL)
    is_sqlite = database_url.startswith("sqlite")

    engine_kwargs = {
        "echo": settings.DATABASE_ECHO,
    }

    if is_sqlite:
        # SQLite-specific settings
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        engine_kwargs["poolclass"] = StaticPool
    else:
        # PostgreSQL-specific settings
        engine_kwargs["pool_pre_ping"] = True  # Verify connection before checkout
        engine_kwargs["pool_size"] = 10
        engine_kwargs["max_overflow"] = 20
        engine_kwargs["pool_recycle"] = 300
        engine_kwargs["pool_timeout"] = 30
        engine_kwargs["pool_reset_on_return"] = "rollback"

    return create_async_engine(database_url, **engine_kwargs)


def create_session_class() -> type:
    """
    A fresh Session subclass.

    ORM event listeners registered on it only see sessions made by factories
    that use it, not every Session in the process.
    """
    return type("AutomationSession", (Session,), {})


def create_session_factory(engine: AsyncEngine, sync_session_class: Optional[type] = None) -> sessionmaker:
    """Session factory bound to the engine; sessions are used as `async with factory() as s`."""
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        sync_session_class=sync_session_class or Session,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """Initialize database tables."""
    logger.info("Initializing database tables...")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    logger.info("Database tables created successfully.")


async def close_db(engine: AsyncEngine) -> None:
    """Close database connections."""
    logger.info("Closing database connections...")
    await engine.dispose()
    logger.info("Database connections closed.")


def get_pool_status(engine: AsyncEngine) -> dict:
    """Get current connection pool statistics for monitoring."""
    if engine.url.get_backend_name() == "sqlite":
        return {"type": "sqlite", "pooled": False}

    pool = engine.pool
    checked_out = pool.checkedout()
    total_capacity = pool.size() + pool.overflow()
    return {
        "type": "postgresql",
        "pool_size": pool.size(),
        "checked_in": pool.checkedin(),
        "checked_out": checked_out,
        "overflow": pool.overflow(),
        "utilization_pct": round(
            (checked_out / total_capacity) * 100, 1
        ) if total_capacity > 0 else 0,
    }
