"""
Database Handle
===============
Owns the async engine and session factory for one application instance.
Created at startup, disposed at shutdown.
"""

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from exceptions import DatabaseConnectionError
from logging_config import get_logger

from .models import Base

logger = get_logger(__name__)


class Database:
    """
    Async SQLAlchemy engine plus session factory.

    Usage:
        database = Database(settings.database_url)
        await database.initialize(create_schema=True)

        async with database.session() as session:
            ...

        await database.dispose()
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._echo = echo

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.url, echo=self._echo)
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    def _ensure_sqlite_directory(self) -> None:
        url = make_url(self.url)
        if url.get_backend_name() != "sqlite" or not url.database or url.database == ":memory:":
            return
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    async def initialize(self, create_schema: bool = True) -> None:
        """
        Verify connectivity and optionally create missing tables.

        Raises:
            DatabaseConnectionError: Database file or server unreachable
        """
        try:
            self._ensure_sqlite_directory()
            async with self.engine.begin() as conn:
                if create_schema:
                    await conn.run_sync(Base.metadata.create_all)
                else:
                    await conn.execute(text("SELECT 1"))
        except (OSError, OperationalError) as e:
            raise DatabaseConnectionError(original_error=e) from e

        logger.info("Database initialized", backend=self.engine.dialect.name)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that is rolled back on error and always closed."""
        session = self.session_factory()
        try:
            yield session
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Return True when a trivial query succeeds."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def dispose(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None
