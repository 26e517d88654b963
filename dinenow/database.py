"""
Database Connection Module
Wraps the SQLAlchemy async engine and session factory behind an explicitly
constructed Database object. The service layer receives it by injection and
opens one transaction per operation.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from dinenow.core.config import Settings
from dinenow.core.exceptions import ConflictError, DineNowError, StorageError

logger = logging.getLogger(__name__)


# Base class for all our models
class Base(DeclarativeBase):
    pass


class Database:
    """
    Owns the engine and session factory for one process.

    Lifecycle:
        db = Database.from_settings(settings)
        await db.create_all()        # optional, at startup
        async with db.transaction() as session:
            ...
        await db.dispose()           # at shutdown

    Every transaction either commits as a whole or rolls back as a whole.
    SQLAlchemy errors are translated into the domain taxonomy on the way out.
    """

    def __init__(
        self,
        url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
        statement_timeout_ms: int = 0,
    ):
        self.url = url
        self.is_sqlite = url.startswith("sqlite")

        engine_kwargs: dict = {"echo": echo}
        if self.is_sqlite:
            # Writers wait for the lock instead of failing immediately
            engine_kwargs["connect_args"] = {"timeout": 30}
        else:
            engine_kwargs["pool_size"] = pool_size
            engine_kwargs["max_overflow"] = max_overflow
            engine_kwargs["pool_pre_ping"] = True
            if statement_timeout_ms and url.startswith("postgresql"):
                engine_kwargs["connect_args"] = {
                    "options": f"-c statement_timeout={statement_timeout_ms}"
                }

        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)

        if self.is_sqlite:
            self._configure_sqlite(self.engine)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Objects remain accessible after commit
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            echo=settings.db_echo,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            statement_timeout_ms=settings.db_statement_timeout_ms,
        )

    @staticmethod
    def _configure_sqlite(engine: AsyncEngine) -> None:
        # pysqlite defers BEGIN until the first write, which lets two
        # read-modify-write transactions interleave. Take the write lock up front.
        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        @event.listens_for(engine.sync_engine, "begin")
        def _on_begin(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        Yield a session bound to a single transaction.

        Commits when the block exits cleanly and rolls back on any exception.

        Raises:
            ConflictError: a unique or foreign key constraint rejected a write
            StorageError: the store was unreachable or the transaction failed
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except DineNowError:
            raise
        except IntegrityError as e:
            logger.warning(f"Integrity violation, transaction rolled back: {e.orig}")
            raise ConflictError("Conflicting write, please retry", {"reason": str(e.orig)}) from e
        except SQLAlchemyError as e:
            logger.error(f"Storage failure, transaction rolled back: {e}")
            raise StorageError("Storage temporarily unavailable, please try again") from e

    async def create_all(self) -> None:
        """
        Create all tables in database.
        Called once at application startup.
        """
        # Registers the mappers on Base.metadata
        from dinenow import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("✅ Database tables created successfully!")

    async def ping(self) -> Optional[str]:
        """Return None when the store answers, otherwise the error text."""
        try:
            async with self.transaction() as session:
                await session.execute(text("SELECT 1"))
        except StorageError as e:
            return str(e.__cause__ or e)
        return None

    async def dispose(self) -> None:
        await self.engine.dispose()
