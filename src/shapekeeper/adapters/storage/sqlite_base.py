"""Base class for SQLite storage adapters."""

import asyncio
import json
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import aiosqlite

from shapekeeper.core.exceptions import RepositoryError

DEFAULT_DB_TIMEOUT_SECONDS = 5.0


def _safe_json_loads(data: str | None, default: Any = None) -> Any:
    """Safely parse JSON data, returning default on decode error or NULL.

    Args:
        data: JSON string to parse, or None for a NULL column.
        default: Value to return if parsing fails.

    Returns:
        Parsed JSON value, or default if parsing fails.
    """
    if data is None:
        return default
    try:
        return json.loads(data)
    except json.JSONDecodeError:
        return default


class AsyncConnectionManager:
    """Manages async (aiosqlite) database connections.

    Handles schema initialization and connection lifecycle for async contexts.
    For :memory: databases, maintains a persistent connection since SQLite
    in-memory databases are connection-scoped.

    Write transactions are serialized through an asyncio lock and opened
    with BEGIN IMMEDIATE, so a check-and-update inside one transaction
    cannot interleave with another writer. Other processes writing the same
    file wait at most ``timeout`` seconds for the database lock.
    """

    def __init__(
        self, db_path: str, schema: str, timeout: float = DEFAULT_DB_TIMEOUT_SECONDS
    ) -> None:
        self._db_path = db_path
        self._schema = schema
        self._timeout = timeout
        self._initialized = False
        self._init_lock: asyncio.Lock | None = None
        self._write_lock: asyncio.Lock | None = None
        self._persistent_conn: aiosqlite.Connection | None = None

    def _get_lock(self) -> asyncio.Lock:
        """Get or create the initialization lock (lazy to avoid event loop issues)."""
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        return self._init_lock

    def _get_write_lock(self) -> asyncio.Lock:
        """Get or create the write lock (lazy to avoid event loop issues)."""
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    @property
    def _should_close_connection(self) -> bool:
        """Return True if connections should be closed after use."""
        return self._db_path != ":memory:"

    async def _connect(self) -> aiosqlite.Connection:
        db = await aiosqlite.connect(self._db_path, timeout=self._timeout)
        await db.execute("PRAGMA foreign_keys=ON")
        return db

    async def _ensure_initialized(self) -> None:
        """Initialize database schema once."""
        if self._initialized:
            return
        async with self._get_lock():
            if self._initialized:
                return
            if self._db_path == ":memory:":
                self._persistent_conn = await self._connect()
                await self._persistent_conn.executescript(self._schema)
            else:
                db = await self._connect()
                try:
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.executescript(self._schema)
                finally:
                    await db.close()
            self._initialized = True

    async def _get_connection(self) -> aiosqlite.Connection:
        """Get a database connection."""
        await self._ensure_initialized()
        if self._db_path == ":memory:":
            if self._persistent_conn is None:
                raise RuntimeError("Memory database connection not initialized")
            return self._persistent_conn
        return await self._connect()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for async database connections.

        Automatically closes connections for file-based databases.
        For :memory: databases, keeps connections open (they're persistent).
        Driver errors are re-raised as RepositoryError.
        """
        try:
            db = await self._get_connection()
        except sqlite3.Error as exc:
            raise RepositoryError(f"Cannot open database {self._db_path}") from exc
        try:
            yield db
        except sqlite3.Error as exc:
            raise RepositoryError(str(exc)) from exc
        finally:
            if self._should_close_connection:
                await db.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for a serialized write transaction.

        Commits when the block exits normally, rolls back otherwise.
        """
        async with self._get_write_lock():
            async with self.connection() as db:
                await db.execute("BEGIN IMMEDIATE")
                try:
                    yield db
                except BaseException:
                    await db.rollback()
                    raise
                await db.commit()

    async def close(self) -> None:
        """Close persistent connection (for :memory: databases)."""
        if self._persistent_conn is not None:
            await self._persistent_conn.close()
            self._persistent_conn = None
            self._initialized = False


class SQLiteStorageBase:
    """Base class for SQLite storage adapters.

    Delegates connection lifecycle to AsyncConnectionManager. Subclasses
    provide the schema and implement domain-specific read/write methods.

    For :memory: databases, a persistent connection is maintained since
    in-memory databases are connection-scoped in SQLite.
    """

    def __init__(
        self, db_path: str, schema: str, timeout: float = DEFAULT_DB_TIMEOUT_SECONDS
    ) -> None:
        self._db_path = db_path
        self._schema = schema
        self._async_manager = AsyncConnectionManager(db_path, schema, timeout)

    async def close(self) -> None:
        """Close persistent connection (for :memory: databases)."""
        await self._async_manager.close()

    # --- Connection context managers (delegate to manager) ---

    @asynccontextmanager
    async def async_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for async database connections."""
        async with self._async_manager.connection() as conn:
            yield conn

    @asynccontextmanager
    async def async_transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Context manager for serialized write transactions."""
        async with self._async_manager.transaction() as conn:
            yield conn
