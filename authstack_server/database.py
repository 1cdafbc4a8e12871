# Copyright (C) 2024 AuthStack Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Database engine and session management.

The engine and session factory are built by create_app() and kept on app.state;
request handlers receive a session through the get_db dependency.
"""

import asyncio
import logging
from collections.abc import AsyncGenerator

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from authstack_server.config import Settings
from authstack_server.models.base import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine. SQLite URLs skip the pool sizing options."""
    if settings.database_url.startswith("sqlite"):
        return create_async_engine(settings.database_url, echo=False)
    return create_async_engine(
        settings.database_url,
        echo=False,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=settings.db_timeout_seconds,
    )


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Dependency for FastAPI that yields a database session."""
    async with request.app.state.session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db(engine: AsyncEngine) -> None:
    """Create all tables. Call at startup."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def ping(session_maker: async_sessionmaker[AsyncSession], timeout: float) -> bool:
    """Run SELECT 1 within timeout seconds. Returns False if the database is unreachable."""

    async def _select_one() -> None:
        async with session_maker() as session:
            await session.execute(text("SELECT 1"))

    try:
        await asyncio.wait_for(_select_one(), timeout=timeout)
    except Exception as e:
        logger.warning("Database ping failed: %s", e)
        return False
    return True
