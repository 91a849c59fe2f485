"""
Database Connection Module
Handles the SQLAlchemy async engine used by the persistence gateway.
"""

from functools import lru_cache
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase
import logging

from backoffice.core.config import get_settings

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create an async engine.

    Pool sizing only applies to server databases; SQLite URLs
    (used by the test-suite) get the default pool.
    """
    settings = get_settings()
    url = database_url or settings.database_url

    options = {"echo": settings.database_echo}
    if not url.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10)

    return create_async_engine(url, **options)


@lru_cache()
def get_engine() -> AsyncEngine:
    """Process-wide engine built from settings."""
    return create_engine()


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory - objects remain accessible after commit."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def init_db(engine: AsyncEngine) -> None:
    """
    Create all tables in database.
    Called once at application startup.
    """
    # Register the mapped tables on Base.metadata
    from backoffice import models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created successfully")
