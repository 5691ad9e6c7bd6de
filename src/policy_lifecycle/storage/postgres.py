# PolicyCore - Policy Decision Management System
# Copyright (C) 2025 Luiz Frias <luizf35@gmail.com>
# Form F[x] Labs
#
# This software is dual-licensed under AGPL-3.0 and Commercial License.
# For commercial licensing, contact: luizf35@gmail.com
# See LICENSE file for full terms.

"""PostgreSQL document store backed by asyncpg.

Each collection is a table with a ``data`` JSONB column. Unique fields get
expression indexes so duplicate policy numbers or serial numbers are
rejected by the database itself. Transactions run at SERIALIZABLE isolation;
serialization failures surface as ConflictError.
"""

import asyncio
import contextlib
import json
from collections.abc import AsyncIterator, Iterator, Mapping
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

import asyncpg
from attrs import field, frozen
from beartype import beartype

from ..core.config import Settings, get_settings
from ..core.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    TransactionTimeoutError,
    ValidationError,
)
from ..core.logging_utils import get_logger
from .base import (
    COLLECTIONS,
    UNIQUE_FIELDS,
    Document,
    DocumentStore,
    Filter,
    SortSpec,
    StoreSession,
    T,
    TransactionFn,
)
from .filters import compile_filter, compile_sort

logger = get_logger(__name__)


@frozen
class PoolConfig:
    """Immutable pool configuration."""

    min_connections: int = field()
    max_connections: int = field()
    connection_timeout: float = field(default=10.0)
    command_timeout: float = field(default=30.0)
    server_settings: dict[str, str] = field(factory=dict)

    @classmethod
    @beartype
    def from_settings(cls, settings: Settings) -> "PoolConfig":
        """Build the pool configuration from engine settings."""
        return cls(
            min_connections=settings.database_pool_min,
            max_connections=settings.database_pool_max,
            connection_timeout=settings.database_pool_timeout,
            command_timeout=settings.database_command_timeout,
            server_settings={"jit": "off"},
        )


class Database:
    """asyncpg connection pool manager."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize database manager."""
        self._pool: asyncpg.Pool | None = None
        self._settings = settings or get_settings()
        self._pool_config = PoolConfig.from_settings(self._settings)

    @beartype
    async def _init_connection(self, conn: asyncpg.Connection) -> None:
        """Register the JSONB codec on each new connection."""
        await conn.set_type_codec(
            "jsonb",
            encoder=lambda v: json.dumps(v),
            decoder=lambda v: json.loads(v),
            schema="pg_catalog",
        )

    @beartype
    async def connect(self) -> None:
        """Create the connection pool."""
        if self._pool is not None:
            return

        try:
            self._pool = await asyncpg.create_pool(
                self._settings.database_url,
                min_size=self._pool_config.min_connections,
                max_size=self._pool_config.max_connections,
                command_timeout=self._pool_config.command_timeout,
                server_settings=self._pool_config.server_settings,
                init=self._init_connection,
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise PersistenceError(f"Could not connect to database: {e}") from e
        logger.info(
            "Database pool ready (min=%d, max=%d)",
            self._pool_config.min_connections,
            self._pool_config.max_connections,
        )

    @beartype
    async def disconnect(self) -> None:
        """Close the connection pool."""
        if self._pool is not None:
            await self._pool.close()
        self._pool = None

    @contextlib.asynccontextmanager
    async def acquire(
        self, *, timeout: float | None = None
    ) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a pooled connection."""
        if self._pool is None:
            raise PersistenceError("Database not connected")

        timeout = timeout or self._pool_config.connection_timeout
        try:
            async with self._pool.acquire(timeout=timeout) as conn:
                yield conn
        except asyncio.TimeoutError as e:
            raise PersistenceError("Timed out acquiring a database connection") from e


@contextlib.contextmanager
def _translate_errors() -> Iterator[None]:
    """Map driver exceptions onto the engine's error hierarchy."""
    try:
        yield
    except asyncpg.UniqueViolationError as e:
        raise ConflictError(f"Unique constraint violated: {e.constraint_name}") from e
    except (asyncpg.SerializationError, asyncpg.DeadlockDetectedError) as e:
        raise ConflictError(f"Concurrent transaction conflict: {e}") from e
    except (
        OSError,
        asyncpg.PostgresConnectionError,
        asyncpg.InterfaceError,
    ) as e:
        raise PersistenceError(f"Database unavailable: {e}") from e


class PostgresSession(StoreSession):
    """A connection with an open transaction."""

    def __init__(self, connection: asyncpg.Connection) -> None:
        self.connection = connection
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def close(self) -> None:
        self._active = False


class PostgresDocumentStore(DocumentStore):
    """Document store over JSONB tables."""

    def __init__(self, database: Database) -> None:
        """Initialize with a connected Database."""
        self._database = database

    @staticmethod
    def _table(collection: str) -> str:
        if collection not in COLLECTIONS:
            raise ValidationError(f"Unknown collection: {collection}")
        return collection

    @beartype
    async def ensure_schema(self) -> None:
        """Create collection tables and unique indexes when missing."""
        async with self._database.acquire() as conn:
            for collection in COLLECTIONS:
                await conn.execute(
                    f"""
                    CREATE TABLE IF NOT EXISTS {collection} (
                        id UUID PRIMARY KEY,
                        data JSONB NOT NULL,
                        created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
                        updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
                    )
                    """
                )
                for name in UNIQUE_FIELDS.get(collection, ()):
                    await conn.execute(
                        f"CREATE UNIQUE INDEX IF NOT EXISTS {collection}_{name}_key "
                        f"ON {collection} ((data ->> '{name}'))"
                    )

    @contextlib.asynccontextmanager
    async def _connection(
        self, session: StoreSession | None
    ) -> AsyncIterator[asyncpg.Connection]:
        if session is None:
            async with self._database.acquire() as conn:
                yield conn
            return
        if not isinstance(session, PostgresSession) or not session.active:
            raise PersistenceError("Session is not an active PostgreSQL session")
        yield session.connection

    @beartype
    async def find_one(
        self,
        collection: str,
        filter: Filter,
        *,
        session: StoreSession | None = None,
    ) -> Document | None:
        """Return the first matching document."""
        found = await self.find_many(collection, filter, limit=1, session=session)
        return found[0] if found else None

    @beartype
    async def find_many(
        self,
        collection: str,
        filter: Filter,
        *,
        sort: SortSpec | None = None,
        limit: int | None = None,
        session: StoreSession | None = None,
    ) -> list[Document]:
        """Return matching documents."""
        table = self._table(collection)
        where, params = compile_filter(filter)
        query = f"SELECT data FROM {table} WHERE {where} {compile_sort(sort)}"
        if limit is not None:
            if limit < 0:
                raise ValidationError("limit must be non-negative", limit=limit)
            params.append(limit)
            query += f" LIMIT ${len(params)}"

        with _translate_errors():
            async with self._connection(session) as conn:
                rows = await conn.fetch(query, *params)
        return [dict(row["data"]) for row in rows]

    @beartype
    async def update_one(
        self,
        collection: str,
        record_id: UUID | str,
        patch: Mapping[str, Any],
        *,
        session: StoreSession | None = None,
    ) -> Document:
        """Merge ``patch`` into a document with ``data || patch``."""
        table = self._table(collection)
        if "id" in patch and str(patch["id"]) != str(record_id):
            raise ValidationError("Record id cannot be changed", record_id=str(record_id))
        now = datetime.now(timezone.utc)
        merged = {**patch, "updated_at": now.isoformat()}

        with _translate_errors():
            async with self._connection(session) as conn:
                row = await conn.fetchrow(
                    f"""
                    UPDATE {table}
                    SET data = data || $1::jsonb, updated_at = $2
                    WHERE id = $3
                    RETURNING data
                    """,
                    merged,
                    now,
                    UUID(str(record_id)),
                )
        if row is None:
            raise NotFoundError(collection, str(record_id))
        return dict(row["data"])

    @beartype
    async def create_one(
        self,
        collection: str,
        document: Mapping[str, Any],
        *,
        session: StoreSession | None = None,
    ) -> Document:
        """Insert a document."""
        table = self._table(collection)
        now = datetime.now(timezone.utc)
        created = dict(document)
        record_id = UUID(str(created.get("id") or uuid4()))
        created["id"] = str(record_id)
        created["created_at"] = created.get("created_at") or now.isoformat()
        created["updated_at"] = now.isoformat()

        with _translate_errors():
            async with self._connection(session) as conn:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO {table} (id, data, created_at, updated_at)
                    VALUES ($1, $2::jsonb, $3, $3)
                    RETURNING data
                    """,
                    record_id,
                    created,
                    now,
                )
        return dict(row["data"])

    async def _run(
        self, fn: TransactionFn[T], session: PostgresSession, timeout: float | None
    ) -> T:
        if timeout is None:
            return await fn(session)
        try:
            return await asyncio.wait_for(fn(session), timeout)
        except asyncio.TimeoutError as e:
            raise TransactionTimeoutError(timeout) from e

    async def with_transaction(
        self,
        fn: TransactionFn[T],
        *,
        timeout: float | None = None,
    ) -> T:
        """Run ``fn`` inside a SERIALIZABLE transaction."""
        with _translate_errors():
            async with self._database.acquire() as conn:
                transaction = conn.transaction(isolation="serializable")
                await transaction.start()
                session = PostgresSession(conn)
                try:
                    result = await self._run(fn, session, timeout)
                except BaseException:
                    session.close()
                    await transaction.rollback()
                    raise
                session.close()
                await transaction.commit()
                return result

    async def close(self) -> None:
        """Close the underlying pool."""
        await self._database.disconnect()
