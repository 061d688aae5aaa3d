"""
Portfolio API — Database Session Management
============================================

What:  Async SQLAlchemy engine, session factory and schema bootstrap.
How:   A `Database` object owns one engine and one session factory. It is
       constructed by the app factory and handed to the services that need
       it; nothing opens a connection at import time.
Who:   ContactService (sessions), the FastAPI lifespan (create/dispose).

Connection pooling:
    Pool arguments (pool_size, max_overflow, pool_pre_ping, pool_recycle)
    apply to server databases only. SQLite runs with SQLAlchemy's default
    pool for aiosqlite.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from portfolio_api.config import Settings
from portfolio_api.exceptions import DatabaseError


class Base(DeclarativeBase):
    """Base class for all ORM models (shares one metadata object)."""
    pass


def build_engine(settings: Settings) -> AsyncEngine:
    kwargs = {"echo": settings.log_level == "DEBUG"}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=settings.db_pool_pre_ping,
            pool_recycle=3600,  # Recycle after 1 hour to prevent stale connections
        )
    return create_async_engine(settings.database_url, **kwargs)


class Database:
    """Engine + session factory pair with lifecycle helpers."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        # expire_on_commit=False: attributes stay readable after commit
        self.session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(build_engine(settings))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Unit of work: commits on success, rolls back on any error.

        Example:
            async with database.session() as session:
                session.add(message)
        """
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create missing tables for every registered model."""
        # Model modules register their tables on Base.metadata when imported
        from portfolio_api.models import contact  # noqa: F401

        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError(
                message="Database table creation failed",
                context={"db_error": str(e)},
            )

    async def dispose(self) -> None:
        """Close all pooled connections."""
        await self.engine.dispose()
