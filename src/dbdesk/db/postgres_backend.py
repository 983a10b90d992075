"""PostgreSQL database backend implementation.

This module provides the PostgreSQL backend using asyncpg. Unlike the
MariaDB backend there is no pool: each live connection owns exactly one
client, and every operation is serialized through it.

Features:
    - Native async driver (asyncpg)
    - Single client per connection, swapped atomically on database change
    - SSL with self-signed certificates accepted, optional fallback
    - Server-side cursors so the row cap bounds memory
    - Background keepalive task per client
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import replace
from typing import Any, TypeVar

import asyncpg

from ..models import SslMode
from .backend import (
    ConnectionConfig,
    DatabaseBackendBase,
    DatabaseEngine,
    QueryResult,
    TableColumn,
    TablePage,
    TableRelationship,
    build_ssl_context,
    unique_column_names,
)
from .codec import PostgresCodec
from .exceptions import (
    DbConnectionError,
    DbError,
    DbQueryError,
    DbSslError,
    DbTimeoutError,
    UpdateCellError,
    hint_for_postgres,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Rows prefetched per round trip while iterating a server-side cursor
_CURSOR_PREFETCH = 500

# Errors that mean the client itself is unusable
_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresConnectionError,
    asyncpg.InterfaceError,
    OSError,
)

_SERIAL_TYPES = {"integer": "SERIAL", "bigint": "BIGSERIAL", "smallint": "SMALLSERIAL"}

_COLUMNS_SQL = """
    SELECT c.column_name,
           c.udt_name,
           c.is_nullable,
           EXISTS (
               SELECT 1
               FROM information_schema.table_constraints tc
               JOIN information_schema.key_column_usage ku
                 ON tc.constraint_schema = ku.constraint_schema
                AND tc.constraint_name = ku.constraint_name
               WHERE tc.constraint_type = 'PRIMARY KEY'
                 AND tc.table_schema = c.table_schema
                 AND tc.table_name = c.table_name
                 AND ku.column_name = c.column_name
           ) AS is_primary,
           c.column_default,
           c.character_maximum_length,
           c.numeric_precision,
           c.numeric_scale,
           c.data_type
    FROM information_schema.columns c
    WHERE c.table_schema = current_schema() AND c.table_name = $1
    ORDER BY c.ordinal_position
"""

_RELATIONSHIPS_SQL = """
    SELECT kcu.table_name, kcu.column_name, rku.table_name, rku.column_name,
           kcu.constraint_name
    FROM information_schema.referential_constraints rc
    JOIN information_schema.key_column_usage kcu
      ON kcu.constraint_schema = rc.constraint_schema
     AND kcu.constraint_name = rc.constraint_name
    JOIN information_schema.key_column_usage rku
      ON rku.constraint_schema = rc.unique_constraint_schema
     AND rku.constraint_name = rc.unique_constraint_name
     AND rku.ordinal_position = kcu.position_in_unique_constraint
    WHERE kcu.table_schema = current_schema()
    ORDER BY kcu.table_name, kcu.ordinal_position
"""

_COLUMN_TYPES_SQL = """
    SELECT a.attname, format_type(a.atttypid, a.atttypmod)
    FROM pg_catalog.pg_attribute a
    JOIN pg_catalog.pg_class c ON c.oid = a.attrelid
    JOIN pg_catalog.pg_namespace n ON n.oid = c.relnamespace
    WHERE n.nspname = current_schema()
      AND c.relname = $1
      AND a.attnum > 0
      AND NOT a.attisdropped
"""


def _affected_rows(status: str | None) -> int:
    """Parse the row count out of a command tag such as 'UPDATE 3'."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


class PostgresBackend(DatabaseBackendBase):
    """PostgreSQL backend using a single asyncpg client.

    PostgreSQL has no statement to switch databases on an open session, so
    ``change_database`` opens a new client and swaps it in under the lock.

    Attributes:
        engine: DatabaseEngine.POSTGRESQL

    Example:
        backend = PostgresBackend()
        await backend.connect(ConnectionConfig(
            engine=DatabaseEngine.POSTGRESQL,
            host="localhost",
            port=5432,
            database="mydb",
            username="user",
            password="pass",
        ))
        result = await backend.execute_query("SELECT * FROM users")
        await backend.disconnect()
    """

    engine = DatabaseEngine.POSTGRESQL
    codec = PostgresCodec

    def __init__(self) -> None:
        """Initialize PostgreSQL backend."""
        self._client: asyncpg.Connection | None = None
        self._config: ConnectionConfig | None = None
        self._current_database: str = ""
        self._keepalive_task: asyncio.Task[None] | None = None
        # Guards the client and the current database together
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, config: ConnectionConfig) -> None:
        """Open the client and verify it.

        SSL policy:
            - required: any failure is an SSL_ERROR
            - preferred: try SSL, fall back to plain on failure
            - disabled: never attempt SSL

        Raises:
            DbConnectionError: If connection fails
            DbSslError: If ssl_mode is required and the encrypted connection fails
            DbTlsError: If the TLS context cannot be built
        """
        self._config = config
        client = await self._open_client(config)
        async with self._lock:
            self._client = client
            self._current_database = config.database
            self._keepalive_task = self._start_keepalive(client)

    async def _open_client(self, config: ConnectionConfig) -> asyncpg.Connection:
        if config.ssl_mode in (SslMode.REQUIRED, SslMode.PREFERRED):
            ssl_context = build_ssl_context()
            try:
                client = await self._connect_client(config, ssl_context)
                logger.debug(f"PostgreSQL TLS connection established: {config.describe()}")
                return client
            except (asyncpg.PostgresError, *_CONNECTION_ERRORS, TimeoutError) as e:
                if config.ssl_mode == SslMode.REQUIRED:
                    raise DbSslError(f"SSL connection failed: {e}") from e
                logger.warning(f"SSL connection failed, falling back to non-SSL: {e}")

        try:
            client = await self._connect_client(config, False)
        except (asyncpg.PostgresError, *_CONNECTION_ERRORS, TimeoutError) as e:
            raise DbConnectionError(f"Connection failed: {e}") from e

        logger.debug(f"PostgreSQL non-SSL connection established: {config.describe()}")
        return client

    async def _connect_client(self, config: ConnectionConfig, ssl: Any) -> asyncpg.Connection:
        client = await asyncpg.connect(
            host=config.host,
            port=config.port or 5432,
            user=config.username,
            password=config.password,
            database=config.database or None,
            ssl=ssl,
            timeout=config.connect_timeout,
        )
        try:
            for type_name in ("json", "jsonb"):
                await client.set_type_codec(
                    type_name, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
                )
            await asyncio.wait_for(client.fetchval("SELECT 1"), timeout=config.connect_timeout)
        except BaseException:
            await client.close()
            raise
        return client

    def _start_keepalive(self, client: asyncpg.Connection) -> asyncio.Task[None] | None:
        interval = self._config.keepalive_interval if self._config else 0
        if interval <= 0:
            return None
        return asyncio.create_task(self._keepalive(client, interval))

    async def _keepalive(self, client: asyncpg.Connection, interval: float) -> None:
        """Ping the client until it is replaced or closed."""
        while True:
            await asyncio.sleep(interval)
            async with self._lock:
                if self._client is not client:
                    return
                try:
                    await asyncio.wait_for(client.execute("SELECT 1"), timeout=self.timeout)
                except (asyncpg.PostgresError, *_CONNECTION_ERRORS, TimeoutError) as e:
                    logger.warning(f"PostgreSQL keepalive failed: {e}")

    async def disconnect(self) -> None:
        """Close the client. Safe to call repeatedly."""
        async with self._lock:
            client, self._client = self._client, None
            task, self._keepalive_task = self._keepalive_task, None
        if client is None:
            return
        await self._close_client(client, task)
        logger.debug("Disconnected from PostgreSQL")

    @staticmethod
    async def _close_client(
        client: asyncpg.Connection, task: asyncio.Task[None] | None
    ) -> None:
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        try:
            await client.close(timeout=5)
        except (*_CONNECTION_ERRORS, TimeoutError) as e:
            logger.warning(f"Error closing PostgreSQL client: {e}")
            client.terminate()

    def _require_client(self) -> asyncpg.Connection:
        if self._client is None:
            raise DbConnectionError("Not connected to database. Call connect() first.")
        return self._client

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    async def _locked(
        self,
        operation: Callable[[asyncpg.Connection], Awaitable[T]],
        what: str = "Query",
    ) -> T:
        """Run an operation on the client under the lock, timeout and error mapping."""

        async def _run() -> T:
            async with self._lock:
                return await operation(self._require_client())

        try:
            return await asyncio.wait_for(_run(), timeout=self.timeout)
        except TimeoutError as e:
            raise DbTimeoutError(f"{what} timed out after {self.timeout:g}s") from e
        except asyncpg.PostgresError as e:
            raise self._map_error(e) from e
        except _CONNECTION_ERRORS as e:
            raise DbConnectionError(str(e)) from e

    @staticmethod
    def _map_error(error: asyncpg.PostgresError) -> DbError:
        if isinstance(error, asyncpg.PostgresConnectionError):
            return DbConnectionError(str(error), detail=getattr(error, "detail", None))
        return DbQueryError(
            str(error),
            detail=getattr(error, "detail", None),
            hint=getattr(error, "hint", None),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def test_connection(self) -> None:
        try:
            await self._locked(lambda client: client.fetchval("SELECT 1"), what="Connection test")
        except DbQueryError as e:
            raise DbConnectionError(e.message) from e

    async def execute_query(self, sql: str) -> QueryResult:
        """Run arbitrary SQL, materializing at most ``max_rows`` rows.

        Row-returning statements are read through a server-side cursor, so
        rows beyond the cap are counted without being held in memory.
        """
        start = time.perf_counter()
        result = await self._locked(lambda client: self._run_statement(client, sql))
        result.execution_time_ms = (time.perf_counter() - start) * 1000
        return result

    async def _run_statement(self, client: asyncpg.Connection, sql: str) -> QueryResult:
        statement = await client.prepare(sql)
        attributes = statement.get_attributes()
        if not attributes:
            await statement.fetch()
            return QueryResult(affected_rows=_affected_rows(statement.get_statusmsg()))

        columns = unique_column_names([a.name for a in attributes])
        types = [a.type.name for a in attributes]
        rows: list[dict[str, Any]] = []
        total = 0

        async with client.transaction():
            async for record in statement.cursor(prefetch=_CURSOR_PREFETCH):
                total += 1
                if total > self.max_rows:
                    continue
                rows.append(
                    {
                        name: self.codec.to_json(record[i], type_name)
                        for i, (name, type_name) in enumerate(zip(columns, types, strict=True))
                    }
                )

        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=total,
            truncated=total > self.max_rows,
        )

    async def list_tables(self) -> list[str]:
        rows = await self._locked(
            lambda client: client.fetch(
                """
                SELECT table_name FROM information_schema.tables
                WHERE table_schema = current_schema() AND table_type = 'BASE TABLE'
                ORDER BY table_name
                """
            )
        )
        return [row[0] for row in rows]

    async def list_databases(self) -> list[str]:
        rows = await self._locked(
            lambda client: client.fetch(
                "SELECT datname FROM pg_database WHERE datistemplate = false ORDER BY datname"
            )
        )
        return [row[0] for row in rows]

    async def change_database(self, name: str) -> None:
        """Connect to ``name`` with a new client and swap it in.

        The old client stays current until the new one is verified; on
        failure nothing changes.
        """
        config = self._config
        if config is None or self._client is None:
            raise DbConnectionError("Not connected to database. Call connect() first.")

        new_client = await self._open_client(replace(config, database=name))
        async with self._lock:
            old_client, self._client = self._client, new_client
            old_task = self._keepalive_task
            self._keepalive_task = self._start_keepalive(new_client)
            self._current_database = name
            self._config = replace(config, database=name)

        if old_client is not None:
            await self._close_client(old_client, old_task)
        logger.debug(f"PostgreSQL switched to database {name}")

    async def get_current_database(self) -> str:
        async with self._lock:
            return self._current_database

    async def _column_rows(self, table: str) -> list[asyncpg.Record]:
        return await self._locked(lambda client: client.fetch(_COLUMNS_SQL, table))

    async def get_table_columns(self, table: str) -> list[TableColumn]:
        rows = await self._column_rows(table)
        return [
            TableColumn(
                name=row["column_name"],
                data_type=row["udt_name"],
                is_nullable=row["is_nullable"] == "YES",
                is_primary_key=row["is_primary"],
                column_default=row["column_default"],
                character_maximum_length=row["character_maximum_length"],
                numeric_precision=row["numeric_precision"],
            )
            for row in rows
        ]

    async def get_table_relationships(self) -> list[TableRelationship]:
        rows = await self._locked(lambda client: client.fetch(_RELATIONSHIPS_SQL))
        return [
            TableRelationship(
                from_table=row[0],
                from_column=row[1],
                to_table=row[2],
                to_column=row[3],
                constraint_name=row[4],
            )
            for row in rows
        ]

    async def update_cell(
        self,
        table: str,
        column: str,
        new_value: str | None,
        pk_column: str,
        pk_value: str,
    ) -> str:
        """Update one cell with bound parameters.

        Values are bound as text and cast server-side to each column's
        declared type, so callers can send strings for any column.

        Returns:
            The statement with values rendered as literals, for display
        """
        q = self.codec.quote_identifier
        display = (
            f"UPDATE {q(table)} SET {q(column)} = {self.codec.to_sql_literal(new_value)} "
            f"WHERE {q(pk_column)} = {self.codec.to_sql_literal(pk_value)}"
        )

        async def _run(client: asyncpg.Connection) -> str:
            types = dict(await client.fetch(_COLUMN_TYPES_SQL, table))
            if not types:
                raise UpdateCellError(
                    f'relation "{table}" does not exist',
                    engine_code="42P01",
                    hint=hint_for_postgres("42P01"),
                    table=table,
                    column=column,
                )
            for name in (column, pk_column):
                if name not in types:
                    raise UpdateCellError(
                        f'column "{name}" of relation "{table}" does not exist',
                        engine_code="42703",
                        hint=hint_for_postgres("42703"),
                        table=table,
                        column=name,
                    )

            pk_type = types[pk_column]
            if new_value is None:
                sql = (
                    f"UPDATE {q(table)} SET {q(column)} = NULL "
                    f"WHERE {q(pk_column)} = $1::text::{pk_type}"
                )
                return await client.execute(sql, pk_value)
            sql = (
                f"UPDATE {q(table)} SET {q(column)} = $1::text::{types[column]} "
                f"WHERE {q(pk_column)} = $2::text::{pk_type}"
            )
            return await client.execute(sql, new_value, pk_value)

        try:
            status = await self._locked(_run, what="Update")
        except DbQueryError as e:
            if isinstance(e, UpdateCellError):
                raise
            cause = e.__cause__
            sqlstate = getattr(cause, "sqlstate", None)
            raise UpdateCellError(
                e.message,
                engine_code=sqlstate,
                detail=e.detail,
                hint=e.hint or hint_for_postgres(sqlstate),
                table=table,
                column=getattr(cause, "column_name", None) or column,
            ) from cause

        logger.debug(f"update_cell on {table}.{column}: {status}")
        return display

    # ------------------------------------------------------------------
    # Export support
    # ------------------------------------------------------------------

    async def get_create_statement(self, table: str) -> str:
        """Rebuild CREATE TABLE from catalog metadata.

        Columns whose default draws from a sequence become SERIAL types, since
        the owned sequence is dropped together with the table.
        """
        rows = await self._column_rows(table)
        if not rows:
            raise DbQueryError(f"Table not found: {table}")

        q = self.codec.quote_identifier
        definitions = [self._column_definition(row) for row in rows]
        pk = [row["column_name"] for row in rows if row["is_primary"]]
        if pk:
            definitions.append(f"  PRIMARY KEY ({', '.join(q(c) for c in pk)})")

        return f"CREATE TABLE {q(table)} (\n" + ",\n".join(definitions) + "\n)"

    def _column_definition(self, row: asyncpg.Record) -> str:
        data_type: str = row["data_type"]
        default: str | None = row["column_default"]

        if data_type == "ARRAY":
            type_sql = row["udt_name"].lstrip("_").upper() + "[]"
        elif data_type == "USER-DEFINED":
            type_sql = self.codec.quote_identifier(row["udt_name"])
        else:
            type_sql = data_type.upper()
            if row["character_maximum_length"] is not None:
                type_sql += f"({row['character_maximum_length']})"
            elif data_type == "numeric" and row["numeric_precision"] is not None:
                type_sql += f"({row['numeric_precision']},{row['numeric_scale'] or 0})"

        if default and default.startswith("nextval(") and data_type in _SERIAL_TYPES:
            type_sql = _SERIAL_TYPES[data_type]
            default = None

        definition = f"  {self.codec.quote_identifier(row['column_name'])} {type_sql}"
        if row["is_nullable"] == "NO":
            definition += " NOT NULL"
        if default is not None:
            definition += f" DEFAULT {default}"
        return definition

    async def fetch_page(
        self, table: str, limit: int, offset: int, order_by: list[str]
    ) -> TablePage:
        q = self.codec.quote_identifier
        sql = f"SELECT * FROM {q(table)}"
        if order_by:
            sql += " ORDER BY " + ", ".join(q(c) for c in order_by)
        sql += f" LIMIT {int(limit)} OFFSET {int(offset)}"

        async def _run(client: asyncpg.Connection) -> TablePage:
            statement = await client.prepare(sql)
            attributes = statement.get_attributes()
            records = await statement.fetch()
            return TablePage(
                columns=[a.name for a in attributes],
                types=[a.type.name for a in attributes],
                rows=[tuple(record) for record in records],
            )

        return await self._locked(_run)
