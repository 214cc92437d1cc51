"""
Critech database layer: async SQLAlchemy engine, session factory and the
FastAPI session dependency.
"""
from __future__ import annotations

import logging
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from critech.core.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class Base(DeclarativeBase):
    pass


engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(engine, expire_on_commit=False)


def create_session_factory(url: Optional[str] = None, **engine_kwargs) -> async_sessionmaker:
    """Build a standalone session factory (Celery workers, tests).

    Workers drive each job on a fresh event loop, so they need an engine
    whose connections are not pooled across loops (pass ``poolclass=NullPool``).
    """
    standalone = create_async_engine(url or settings.database_url, echo=settings.db_echo, **engine_kwargs)
    return async_sessionmaker(standalone, expire_on_commit=False)


async def get_db() -> AsyncIterator[AsyncSession]:
    """Yield a request-scoped session; commit on success, roll back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create all tables that do not exist yet."""
    from critech.models import models  # noqa: F401  (registers mappers)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured")
