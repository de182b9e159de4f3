"""
Database configuration and session management.
Uses SQLAlchemy 2.0 with async support.
"""

from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
    AsyncEngine
)

from .config import Settings, DatabaseConfig
from .logging import get_logger

logger = get_logger(__name__)


class Database:
    """
    Owns the async engine and session maker for one run.

    Usage:
        database = Database.from_settings(settings)
        await database.init()
        async with database.transaction() as session:
            ...
        await database.close()
    """

    def __init__(self, url: str, settings: Optional[Settings] = None, echo: bool = False):
        self.url = DatabaseConfig.get_database_url(url, async_driver=True)
        self.settings = settings
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.database_url, settings=settings, echo=settings.debug)

    async def init(self) -> None:
        """Initialize database connections and session maker."""
        logger.info("Initializing database connections")

        self.engine = create_async_engine(
            self.url,
            **DatabaseConfig.get_engine_config(self.url, self.settings),
            echo=self.echo
        )
        self.session_maker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        logger.info("Database connections initialized")

    async def close(self) -> None:
        """Close database connections."""
        logger.info("Closing database connections")

        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_maker = None

        logger.info("Database connections closed")

    def _require_session_maker(self) -> async_sessionmaker[AsyncSession]:
        if not self.session_maker:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self.session_maker

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get an async database session with automatic cleanup.

        Usage:
            async with database.session() as session:
                # Use session here
                pass
        """
        async with self._require_session_maker()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Run the body inside a single BEGIN/COMMIT; any exception rolls everything back.
        """
        async with self._require_session_maker()() as session:
            async with session.begin():
                yield session

    async def create_tables(self) -> None:
        """Create all tables in the database."""
        from daily_points.models import Base

        if not self.engine:
            raise RuntimeError("Database not initialized")

        logger.info("Creating database tables")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables created")

    async def drop_tables(self) -> None:
        """Drop all tables in the database."""
        from daily_points.models import Base

        if not self.engine:
            raise RuntimeError("Database not initialized")

        logger.warning("Dropping all database tables")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.info("Database tables dropped")

    async def health_check(self) -> bool:
        """Check database connectivity."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            logger.error("Database health check failed", error=str(e))
            return False
