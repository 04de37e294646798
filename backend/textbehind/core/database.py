"""Async database engine and session management.

Configures the SQLAlchemy async engine for the record store and provides
dependency injection for database sessions. Without DATABASE_URL the
engine points at a single shared in-memory SQLite connection.
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from textbehind.core.config import settings
from textbehind.models.base import Base


def _build_engine() -> AsyncEngine:
    if settings.is_in_memory_database:
        # One connection shared by every session, otherwise each
        # connection would see its own empty database.
        return create_async_engine(
            settings.effective_database_url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(
        settings.effective_database_url,
        echo=settings.database_echo,
        pool_pre_ping=True,
    )


engine = _build_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def create_in_memory_schema() -> None:
    """Create tables when running against the in-memory record store.

    Hosted databases are migrated with Alembic instead.
    """
    if not settings.is_in_memory_database:
        return
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that provides a database session."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency that provides the session factory.

    Background tasks outlive the request session and open their own.
    """
    return async_session_factory
