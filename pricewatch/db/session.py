"""Async database engine and session factory."""

import logging

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from pricewatch.config import settings
from pricewatch.db.models import Base

logger = logging.getLogger(__name__)

engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)


async def create_tables(db_engine: AsyncEngine = engine) -> None:
    """Create missing tables. Schema migrations are handled outside the app."""
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ready")


async def dispose_engine(db_engine: AsyncEngine = engine) -> None:
    await db_engine.dispose()
