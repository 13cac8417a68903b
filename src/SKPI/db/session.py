# src/SKPI/db/session.py
from __future__ import annotations

import os
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from SKPI.core.config import settings

# Batch runs and request sessions must not share one asyncpg connection
# across tasks, so tests (or an explicit flag) switch pooling off.
USE_NULLPOOL = (
    os.getenv("SQLALCHEMY_NULLPOOL", "0") == "1"
    or bool(getattr(settings, "TESTING", False))
)


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """Build the async engine once, on first use (import must not need a driver)."""
    engine_kwargs: dict = {
        "echo": bool(settings.DB_ECHO),
        "pool_pre_ping": True,
    }
    if USE_NULLPOOL:
        engine_kwargs["poolclass"] = NullPool
    return create_async_engine(settings.DATABASE_URL, **engine_kwargs)


@lru_cache(maxsize=1)
def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    """Session factory shared by the API, the scheduler and the CLI."""
    return async_sessionmaker(
        bind=get_engine(),
        expire_on_commit=False,
        class_=AsyncSession,
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request."""
    async with get_sessionmaker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
