############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# session.py: Async engine, session factory and FastAPI dependency
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Database engine and session management."""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.app.settings import get_settings


def _engine_kwargs(database_url: str, settings) -> dict:
    """Pool options only apply to server databases."""
    kwargs = {"echo": settings.database_echo}
    if not database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
            pool_recycle=3600,
        )
    return kwargs


_settings = get_settings()

engine = create_async_engine(
    _settings.database_url,
    **_engine_kwargs(_settings.database_url, _settings),
)

# expire_on_commit=False keeps ORM attributes readable after the
# pre-processing commit in the tool handler.
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that commits on success."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
