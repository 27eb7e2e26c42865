"""Async SQLAlchemy engine and session management.

Only the saved filter store lives here; ledger data is read from the
ledger source on every pass and never persisted locally.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from arledger.core.config import settings


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine for the configured database.

    SQLite needs ``check_same_thread`` disabled; anything else gets a
    small connection pool with pre-ping.
    """
    database_url = database_url or settings.database_url

    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=settings.debug,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        database_url,
        echo=settings.debug,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,
    )


engine = create_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


@asynccontextmanager
async def _session_scope() -> AsyncGenerator[AsyncSession, None]:
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a session that commits on success."""
    async with _session_scope() as session:
        yield session


def get_db_context():
    """Session context manager for code running outside a request.

    Usage:
        async with get_db_context() as db:
            result = await db.execute(query)
    """
    return _session_scope()


async def init_db() -> None:
    """Create all tables. Called from the application lifespan."""
    # Register models with the metadata before create_all
    import arledger.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_db() -> None:
    """Dispose of pooled connections on shutdown."""
    await engine.dispose()
