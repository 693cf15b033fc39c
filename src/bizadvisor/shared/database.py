"""
Database session management with async SQLAlchemy.

The device keeps its durable state (sessions, profiles, offline queue, sync
cursors) in a local SQLite file accessed through aiosqlite.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from bizadvisor.config import get_settings


class Base(DeclarativeBase):
    """
    Canonical SQLAlchemy Declarative Base for ORM models.

    Every table module registers on Base.metadata; `DatabaseManager.create_all`
    creates them on startup and in tests.
    """


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self, database_url: str | None = None, echo: bool | None = None) -> None:
        """Initialize database manager.

        Args:
            database_url: Optional database URL override.
            echo: Optional SQL echo override (defaults to settings.debug).
        """
        settings = get_settings()
        self._database_url = database_url or settings.database_url
        self._echo = settings.debug if echo is None else echo
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def database_url(self) -> str:
        return self._database_url

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the database engine."""
        if self._engine is None:
            kwargs: dict[str, Any] = {"echo": self._echo}
            if self._database_url.startswith("sqlite"):
                kwargs["connect_args"] = {"check_same_thread": False}
                if ":memory:" in self._database_url:
                    # One shared connection, otherwise every checkout sees an empty DB.
                    kwargs["poolclass"] = StaticPool
            else:
                kwargs.update(pool_pre_ping=True, pool_size=5, max_overflow=10)
            self._engine = create_async_engine(self._database_url, **kwargs)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Create a new database session context (one transaction)."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all registered tables if they do not exist."""
        # Table modules must be imported so their models register on Base.metadata.
        import bizadvisor.context.orm  # noqa: F401
        import bizadvisor.offline.orm  # noqa: F401
        import bizadvisor.sync.cursor  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close the database engine."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


__all__ = [
    "Base",
    "DatabaseManager",
]
