"""
Database layer — async SQL via SQLAlchemy 2.0.

Provides:
    • Async engine and session factory builders
    • Base model for ORM entities
    • Table creation hook for the app lifespan

Used only when ``EMERGENCY_STORE=sql``; the default in-memory store needs
no database. Any async driver SQLAlchemy supports works; development and
tests use ``sqlite+aiosqlite``.

Usage:
    from backend.app.core.database import build_engine, build_session_factory, init_db

    engine = build_engine(settings.DATABASE_URL)
    await init_db(engine)
    async with build_session_factory(engine)() as session:
        ...
"""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    engine = create_async_engine(url, echo=echo, future=True)
    logger.info("Database engine created: %s", url.split("@")[-1])
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — use Alembic in production)."""
    # Register ORM tables on Base.metadata
    from backend.app.emergency import sql_repository  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")
