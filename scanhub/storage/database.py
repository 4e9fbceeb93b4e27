"""
Database Manager
================
Centralized database connection and session management using SQLAlchemy Async.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from ..core.config import get_config, StorageConfig
from ..core.logging_config import get_logger

logger = get_logger(__name__)


def async_database_url(url: str) -> str:
    """Rewrite a plain database URL to use an async driver."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


class DatabaseManager:
    """
    Manages database connection and session creation.
    """

    def __init__(self, config: Optional[StorageConfig] = None, echo: bool = False):
        self.config = config or get_config().storage
        self.echo = echo
        self._engine = None
        self._sessionmaker = None

    @property
    def url(self) -> str:
        return async_database_url(self.config.database_url)

    async def connect(self) -> None:
        """Initialize database connection pool."""
        if self._engine:
            return

        engine_kwargs = {"echo": self.echo, "pool_pre_ping": True}
        # SQLite drivers do not take pool sizing arguments
        if not self.url.startswith("sqlite"):
            engine_kwargs["pool_size"] = self.config.database_pool_size
            engine_kwargs["max_overflow"] = self.config.database_max_overflow

        self._engine = create_async_engine(self.url, **engine_kwargs)

        self._sessionmaker = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        logger.info("Database connection established")

    async def disconnect(self) -> None:
        """Close database connection pool."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Provides a database session committed on success."""
        if not self._sessionmaker:
            await self.connect()

        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables defined in metadata."""
        from .models import Base

        if not self._engine:
            await self.connect()

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created/verified")
