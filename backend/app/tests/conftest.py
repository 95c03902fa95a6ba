############################################################
#
# toolgate - AI Tool Usage Metering and Provider Failover
#
# conftest.py: Pytest configuration and shared test fixtures
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Pytest configuration and shared fixtures for toolgate tests."""

import os

# Settings are cached on first read; pin them before any app import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("USAGE_TIMEZONE", "UTC")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("DEFAULT_GUEST_DAILY_LIMIT", "3")
os.environ.setdefault("DEFAULT_USER_DAILY_LIMIT", "5")

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from backend.app.db.base import Base
from backend.app.db import models  # noqa: F401  registers tables

pytest_plugins = ["pytest_asyncio"]


# --- Database fixtures ---


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite engine with the full schema."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'toolgate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    async with session_maker() as session:
        yield session


# --- Application fixtures ---


@pytest.fixture
def app(session_maker):
    """The FastAPI app with its database dependency bound to the test engine."""
    from backend.app.db.session import get_async_db
    from backend.app.main import create_app

    application = create_app()

    async def _override_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_async_db] = _override_db
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

