"""Async database manager.

Postgres (asyncpg) in production, sqlite (aiosqlite) for local runs and
tests. Store errors that are worth retrying surface as ``Transient``.
"""
from __future__ import annotations

import logging
import sqlite3
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Engine, Result
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.sql.elements import ClauseElement, TextClause

from matchday.config.core import DatabaseSettings
from matchday.config.db_url import SQLITE_DEFAULT_URL
from matchday.scoring.types import Transient

logger = logging.getLogger(__name__)


# Per-connection pragmas for sqlite: WAL for concurrent readers, FK enforcement.
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection: Any, connection_record: Any):
    # aiosqlite hands us SQLAlchemy's adapter rather than a sqlite3.Connection
    if not isinstance(dbapi_connection, sqlite3.Connection) and "sqlite" not in type(dbapi_connection).__module__:
        return
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
    finally:
        cursor.close()


def is_retryable(exc: BaseException) -> bool:
    """Lock timeouts, deadlocks and dropped connections."""
    if isinstance(exc, OperationalError):
        return True
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    text = str(getattr(exc, "orig", exc)).lower()
    return "deadlock" in text or "database is locked" in text


class DBM:
    def __init__(self, settings: DatabaseSettings | None = None, *, url: str | None = None):
        self.url = url or (settings.url if settings is not None else None) or SQLITE_DEFAULT_URL
        echo = bool(settings.echo) if settings is not None else False

        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=echo,
            future=True,
        )

        self.session_maker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self.engine,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def insert(self, table: Any):
        """Dialect-specific INSERT supporting ``on_conflict_do_*``."""
        if self.dialect == "postgresql":
            return pg_insert(table)
        return sqlite_insert(table)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_maker() as session:
                yield session
        except (OperationalError, DBAPIError) as e:
            if is_retryable(e):
                raise Transient(f"database unavailable: {e}") from e
            raise

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Session with an open transaction; commits on exit, rolls back on error."""
        try:
            async with self.session_maker() as session:
                async with session.begin():
                    yield session
        except (OperationalError, DBAPIError) as e:
            if is_retryable(e):
                raise Transient(f"database unavailable: {e}") from e
            raise

    async def read(self, query: Any, params: dict | None = None) -> list[Any]:
        """Execute a read-only statement and return all rows."""
        if isinstance(query, str):
            raise TypeError("Raw SQL strings are disallowed. Use sqlalchemy.text().")
        if not isinstance(query, (TextClause, ClauseElement)):
            raise TypeError("Query must be a SQLAlchemy TextClause or ClauseElement.")

        async with self.session() as session:
            result: Result = await session.execute(query, params or {})
            return result.mappings().all()

    async def write(self, query: Any, params: dict | None = None) -> int:
        """Execute a write statement inside a transaction and return row count."""
        if isinstance(query, str):
            raise TypeError("Raw SQL strings are disallowed. Use sqlalchemy.text().")
        if not isinstance(query, (TextClause, ClauseElement)):
            raise TypeError("Query must be a SQLAlchemy TextClause or ClauseElement.")

        async with self.transaction() as session:
            result: Result = await session.execute(query, params or {})
            return result.rowcount or 0

    async def dispose(self) -> None:
        await self.engine.dispose()


__all__ = ["DBM", "is_retryable", "set_sqlite_pragma"]
