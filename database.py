import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, TypeVar

from fastapi import Request
from sqlalchemy import DateTime, bindparam, event, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.sql.elements import TextClause

import config
from errors import ServiceError, StorageError, StorageTimeout

logger = logging.getLogger("database")

T = TypeVar("T")

# ---------------------------
# Base class for models
# ---------------------------
Base = declarative_base()

TIMESTAMP = DateTime(timezone=True)


def timestamped(statement: str, *names: str) -> TextClause:
    """
    Textual SQL whose named parameters are bound as timestamps, so every
    dialect stores them in its native datetime format.
    """
    return text(statement).bindparams(*(bindparam(n, type_=TIMESTAMP) for n in names))


def _serialize_sqlite_writers(engine: AsyncEngine) -> None:
    """
    SQLite has no row locks. Start every transaction with BEGIN IMMEDIATE so
    a second writer waits for the first to commit instead of failing with
    "database is locked" when it upgrades its read lock.
    """
    @event.listens_for(engine.sync_engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


class Database:
    """
    Owns the async engine and hands out request-scoped transactions.

    Constructed explicitly (see ``main.create_app``) so tests can swap in a
    throwaway SQLite database.
    """

    def __init__(self, url: str, *, echo: bool = False,
                 statement_timeout: float = config.DB_STATEMENT_TIMEOUT, **engine_kwargs: Any):
        self.url = url
        self.statement_timeout = statement_timeout
        self.engine = create_async_engine(url, echo=echo, future=True, **engine_kwargs)
        if url.startswith("sqlite"):
            _serialize_sqlite_writers(self.engine)
        self.async_session = sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,  # Avoid detached instances
        )

    @classmethod
    def from_config(cls) -> "Database":
        engine_kwargs = {}
        if not config.DATABASE_URL.startswith("sqlite"):
            engine_kwargs = {
                "pool_size": config.DB_POOL_SIZE,          # Max connections in pool
                "max_overflow": config.DB_MAX_OVERFLOW,    # Extra connections allowed beyond pool_size
                "pool_timeout": config.DB_POOL_TIMEOUT,    # Seconds to wait for a connection
            }
        return cls(config.DATABASE_URL, echo=config.SQL_ECHO, **engine_kwargs)

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """
        One session, one transaction. Commits when the block exits cleanly,
        rolls back on any exception; the session is closed on every path.
        """
        async with self.async_session() as session:
            async with session.begin():
                yield session

    async def run(self, work: Callable[..., Awaitable[T]], *args: Any, label: str = "transaction") -> T:
        """
        Run ``work(session, *args)`` inside a transaction bounded by
        ``statement_timeout``. Service errors pass through untouched; anything
        else is logged and reported as an opaque storage failure.
        """
        async def unit() -> T:
            async with self.transaction() as session:
                return await work(session, *args)

        try:
            return await asyncio.wait_for(unit(), timeout=self.statement_timeout)
        except ServiceError:
            raise
        except asyncio.TimeoutError:
            logger.error(f"{label} timed out after {self.statement_timeout}s")
            raise StorageTimeout()
        except SQLAlchemyError as e:
            logger.error(f"{label} rolled back due to database error: {e}")
            raise StorageError() from e
        except Exception as e:
            logger.exception(f"{label} rolled back due to unexpected error: {e}")
            raise StorageError() from e

    async def check_connection(self) -> None:
        """Run at startup to ensure DB is reachable."""
        try:
            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
            logger.info("Database connection verified successfully")
        except Exception as e:
            logger.critical(f"Database connection failed: {e}")
            raise

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()


# ---------------------------
# Dependency for FastAPI routes
# ---------------------------
def get_database(request: Request) -> Database:
    return request.app.state.db
