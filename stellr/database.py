"""
Stellr Matching — Async Database Engine & Session Factory

Builds an ``asyncpg`` engine from ``DATABASE_URL``.  The engine and session
factory are created lazily on first use so that importing the ORM models
(tests, Alembic, scripts) never opens a connection pool.

``get_db`` is the async generator used for FastAPI dependency injection.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from stellr.config import get_settings

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------ #
# Declarative base for all ORM models
# ------------------------------------------------------------------ #

class Base(DeclarativeBase):
    """Declarative base for the profiles, swipes, blocks and score cache tables."""
    pass


# ------------------------------------------------------------------ #
# Engine construction
# ------------------------------------------------------------------ #

def _database_url() -> str:
    url = get_settings().DATABASE_URL

    # Transparently upgrade a plain ``postgresql://`` scheme so that
    # developers do not need to remember the asyncpg dialect prefix.
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


@lru_cache(maxsize=1)
def get_engine() -> AsyncEngine:
    """The shared asyncpg engine, built on first use."""
    settings = get_settings()

    engine = create_async_engine(
        _database_url(),
        echo=(settings.LOG_LEVEL == "DEBUG"),
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )

    logger.info("Database engine created from DATABASE_URL")
    return engine


@lru_cache(maxsize=1)
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=get_engine(),
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ------------------------------------------------------------------ #
# FastAPI dependency
# ------------------------------------------------------------------ #

async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Request-scoped session: committed on success, rolled back on error.

    The ranker's stores share it; the SQL compatibility cache does not.
    """
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
