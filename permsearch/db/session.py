"""
Database Session Management
Engine creation and session handling
"""

from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from permsearch.core.config import settings
from permsearch.core.logging import get_logger
from permsearch.db.base import Base

logger = get_logger(__name__)

# Engine
engine: Optional[AsyncEngine] = None
async_session_maker: Optional[async_sessionmaker] = None


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with pool settings suited to the dialect"""
    kwargs: Dict[str, Any] = {"echo": echo}
    if url.startswith("sqlite"):
        kwargs["poolclass"] = StaticPool
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        kwargs["pool_pre_ping"] = True
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
    return create_async_engine(url, **kwargs)


async def init_db(url: Optional[str] = None, create_tables: Optional[bool] = None) -> async_sessionmaker:
    """Initialize database engine and (in development) create tables"""
    global engine, async_session_maker

    url = url or settings.DATABASE_URL
    logger.info(f"Connecting to database ({url.split('://', 1)[0]})")

    engine = build_engine(url, echo=settings.DEBUG)
    async_session_maker = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    # Register all models with Base
    from permsearch.db import models  # noqa: F401

    if create_tables is None:
        create_tables = settings.ENVIRONMENT in ("development", "test")
    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    return async_session_maker


async def close_db() -> None:
    """Close database connections"""
    global engine, async_session_maker

    if engine:
        await engine.dispose()
        engine = None
        async_session_maker = None
        logger.info("Database connection closed")


def get_session_maker() -> async_sessionmaker:
    """Return the initialized session factory"""
    if async_session_maker is None:
        raise RuntimeError("Database not initialized; call init_db() first")
    return async_session_maker


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session (dependency injection)"""
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
