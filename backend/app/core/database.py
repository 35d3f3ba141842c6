"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production, aiosqlite in tests).

Provides:
    • Async engine and session factory builders
    • Dependency injection for FastAPI routes
    • Base model for ORM entities
    • Shared column helpers (string UUID keys, UTC timestamp column type)

Usage:
    from backend.app.core.database import get_db, Base

    @router.get("/contacts")
    async def list_contacts(db: AsyncSession = Depends(get_db)):
        ...
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import AsyncGenerator

from fastapi import Request
from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from backend.app.core.config import settings

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timestamp column that always hands back timezone-aware UTC values.

    SQLite drops the offset on storage, so rows re-read from it come back
    naive while freshly assigned values are aware. Both sides are
    normalised here: naive input is taken as UTC, output is always UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──
def build_engine(url: str | None = None) -> AsyncEngine:
    """Create the async engine; pool options only apply to server databases."""
    url = url or settings.DATABASE_URL
    options = {"echo": settings.DATABASE_ECHO, "future": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DATABASE_POOL_SIZE,
            max_overflow=settings.DATABASE_MAX_OVERFLOW,
            pool_pre_ping=True,
        )
    return create_async_engine(url, **options)


# ── Session Factory ──
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Dependency ──
async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: yields an async database session."""
    session_factory = request.app.state.session_factory
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — use migrations in production)."""
    # Import ORM modules so their tables register on Base.metadata
    from backend.app.alerts import orm as _alerts_orm  # noqa: F401
    from backend.app.contacts import orm as _contacts_orm  # noqa: F401
    from backend.app.users import orm as _users_orm  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")
