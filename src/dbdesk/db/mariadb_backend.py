"""MariaDB/MySQL database backend implementation.

This module provides the MariaDB backend using aiomysql for native async
operation with a bounded connection pool.

Features:
    - Native async driver (aiomysql)
    - Bounded connection pool (min/max size from config)
    - SSL with self-signed certificates accepted, optional fallback
    - Unbuffered result streaming so the row cap bounds memory
    - Compatible with MySQL 5.7+ and MariaDB 10.2+
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import aiomysql
import pymysql
from pymysql.constants import FIELD_TYPE

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
from .codec import MariaDBCodec
from .exceptions import (
    DbConnectionError,
    DbError,
    DbQueryError,
    DbSslError,
    DbTimeoutError,
    UpdateCellError,
    hint_for_mariadb,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Client-side error numbers that mean the link itself is gone
_CONNECTION_ERRNOS = frozenset({2002, 2003, 2006, 2013, 2055})

# Rows pulled per fetchmany() while streaming a result set
_FETCH_CHUNK = 500

_FIELD_TYPE_NAMES: dict[int, str] = {
    FIELD_TYPE.DECIMAL: "decimal",
    FIELD_TYPE.NEWDECIMAL: "decimal",
    FIELD_TYPE.TINY: "tinyint",
    FIELD_TYPE.SHORT: "smallint",
    FIELD_TYPE.LONG: "int",
    FIELD_TYPE.INT24: "mediumint",
    FIELD_TYPE.LONGLONG: "bigint",
    FIELD_TYPE.FLOAT: "float",
    FIELD_TYPE.DOUBLE: "double",
    FIELD_TYPE.NULL: "null",
    FIELD_TYPE.TIMESTAMP: "timestamp",
    FIELD_TYPE.DATE: "date",
    FIELD_TYPE.NEWDATE: "date",
    FIELD_TYPE.TIME: "time",
    FIELD_TYPE.DATETIME: "datetime",
    FIELD_TYPE.YEAR: "year",
    FIELD_TYPE.VARCHAR: "varchar",
    FIELD_TYPE.VAR_STRING: "varchar",
    FIELD_TYPE.STRING: "char",
    FIELD_TYPE.BIT: "bit",
    FIELD_TYPE.JSON: "json",
    FIELD_TYPE.ENUM: "enum",
    FIELD_TYPE.SET: "set",
    FIELD_TYPE.TINY_BLOB: "tinyblob",
    FIELD_TYPE.MEDIUM_BLOB: "mediumblob",
    FIELD_TYPE.LONG_BLOB: "longblob",
    FIELD_TYPE.BLOB: "blob",
    FIELD_TYPE.GEOMETRY: "geometry",
}


def field_type_name(type_code: int) -> str:
    """Map a protocol field type code to a lower-case type name."""
    return _FIELD_TYPE_NAMES.get(type_code, "")


def _param_identifier(name: str) -> str:
    """Quote an identifier for a statement that goes through %-formatting."""
    return MariaDBCodec.quote_identifier(name).replace("%", "%%")


class MariaDBBackend(DatabaseBackendBase):
    """MariaDB/MySQL backend using aiomysql with connection pooling.

    Every connection handed out by the pool is switched to the current
    database first, so pool members never disagree about it.

    Attributes:
        engine: DatabaseEngine.MARIADB

    Example:
        backend = MariaDBBackend()
        await backend.connect(ConnectionConfig(
            engine=DatabaseEngine.MARIADB,
            host="localhost",
            port=3306,
            database="mydb",
            username="user",
            password="pass",
        ))
        result = await backend.execute_query("SELECT * FROM users")
        await backend.disconnect()
    """

    engine = DatabaseEngine.MARIADB
    codec = MariaDBCodec

    def __init__(self) -> None:
        """Initialize MariaDB backend."""
        self._pool: aiomysql.Pool | None = None
        self._config: ConnectionConfig | None = None
        self._current_database: str = ""
        self._db_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self, config: ConnectionConfig) -> None:
        """Create the connection pool and verify it.

        Pool settings:
            - minsize: config.pool_min_size
            - maxsize: config.pool_max_size
            - pool_recycle: 300s (prevent stale connections)
            - connect_timeout: config.connect_timeout

        SSL policy:
            - required: any failure is an SSL_ERROR
            - preferred: try SSL, fall back to plain on failure
            - disabled: never attempt SSL

        Raises:
            DbConnectionError: If connection fails
            DbSslError: If ssl_mode is required and the encrypted connection fails
        """
        self._config = config
        self._current_database = config.database

        if config.ssl_mode in (SslMode.REQUIRED, SslMode.PREFERRED):
            ssl_context = build_ssl_context()
            try:
                self._pool = await self._create_pool(config, ssl_context)
                await asyncio.wait_for(self._verify(), timeout=config.connect_timeout)
                logger.debug(f"MariaDB SSL connection established: {config.describe()}")
                return
            except (pymysql.err.MySQLError, OSError, TimeoutError, DbError) as e:
                await self._close_pool()
                if config.ssl_mode == SslMode.REQUIRED:
                    raise DbSslError(f"SSL connection failed: {e}") from e
                logger.warning(f"SSL connection failed, falling back to non-SSL: {e}")

        try:
            self._pool = await self._create_pool(config, None)
            await asyncio.wait_for(self._verify(), timeout=config.connect_timeout)
        except (pymysql.err.MySQLError, OSError, TimeoutError, DbError) as e:
            await self._close_pool()
            raise DbConnectionError(f"Connection failed: {e}") from e

        logger.debug(f"MariaDB non-SSL connection established: {config.describe()}")

    async def _create_pool(self, config: ConnectionConfig, ssl_context: Any) -> aiomysql.Pool:
        return await asyncio.wait_for(
            aiomysql.create_pool(
                host=config.host,
                port=config.port or 3306,
                db=config.database or None,
                user=config.username,
                password=config.password or "",
                ssl=ssl_context,
                minsize=config.pool_min_size,
                maxsize=config.pool_max_size,
                pool_recycle=300,
                connect_timeout=config.connect_timeout,
                charset="utf8mb4",
                autocommit=True,
            ),
            timeout=config.connect_timeout,
        )

    async def _verify(self) -> None:
        """Round trip through a pooled connection."""
        async with self._connection() as conn:
            async with conn.cursor() as cursor:
                await cursor.execute("SELECT 1")
                await cursor.fetchone()

    async def disconnect(self) -> None:
        """Close the connection pool. Safe to call repeatedly."""
        if self._pool is None:
            return
        await self._close_pool()
        logger.debug("Disconnected from MariaDB")

    async def _close_pool(self) -> None:
        if self._pool is not None:
            pool, self._pool = self._pool, None
            pool.close()
            await pool.wait_closed()

    @asynccontextmanager
    async def _connection(self, select: bool = True) -> AsyncIterator[aiomysql.Connection]:
        """Acquire a pooled connection switched to the current database.

        ``select=False`` skips the switch, for statements that do not depend
        on the current database and must work after it was dropped.
        """
        pool = self._ensure_connected()
        async with self._db_lock:
            database = self._current_database if select else ""
        async with pool.acquire() as conn:
            if database:
                await conn.select_db(database)
            yield conn

    def _ensure_connected(self) -> aiomysql.Pool:
        if self._pool is None:
            raise DbConnectionError("Not connected to database. Call connect() first.")
        return self._pool

    # ------------------------------------------------------------------
    # Error handling
    # ------------------------------------------------------------------

    async def _guarded(self, operation: Awaitable[T], what: str = "Query") -> T:
        """Apply the query timeout and map driver errors onto the taxonomy."""
        try:
            return await asyncio.wait_for(operation, timeout=self.timeout)
        except TimeoutError as e:
            raise DbTimeoutError(f"{what} timed out after {self.timeout:g}s") from e
        except pymysql.err.MySQLError as e:
            raise self._map_error(e) from e

    @staticmethod
    def _map_error(error: pymysql.err.MySQLError) -> DbError:
        errno, message = _error_parts(error)
        if errno in _CONNECTION_ERRNOS:
            return DbConnectionError(message, detail=f"MySQL error {errno}")
        return DbQueryError(
            message,
            detail=f"MySQL error {errno}" if errno else None,
            hint=hint_for_mariadb(errno),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def test_connection(self) -> None:
        """Ping the server through a pooled connection."""
        try:
            await self._guarded(self._verify(), what="Connection test")
        except DbQueryError as e:
            raise DbConnectionError(e.message) from e

    async def execute_query(self, sql: str) -> QueryResult:
        """Run arbitrary SQL, materializing at most ``max_rows`` rows.

        Rows beyond the cap are read off the wire and counted but not kept.
        """
        start = time.perf_counter()
        result = await self._guarded(self._stream_query(sql))
        result.execution_time_ms = (time.perf_counter() - start) * 1000
        return result

    async def _stream_query(self, sql: str) -> QueryResult:
        async with self._connection() as conn:
            try:
                async with conn.cursor(aiomysql.SSCursor) as cursor:
                    await cursor.execute(sql)
                    if cursor.description is None:
                        return QueryResult(affected_rows=max(cursor.rowcount, 0))

                    columns = unique_column_names([d[0] for d in cursor.description])
                    types = [field_type_name(d[1]) for d in cursor.description]
                    rows: list[dict[str, Any]] = []
                    total = 0

                    while True:
                        chunk = await cursor.fetchmany(_FETCH_CHUNK)
                        if not chunk:
                            break
                        for row in chunk:
                            total += 1
                            if total > self.max_rows:
                                continue
                            rows.append(
                                {
                                    name: self.codec.to_json(value, type_name)
                                    for name, type_name, value in zip(
                                        columns, types, row, strict=True
                                    )
                                }
                            )
            except asyncio.CancelledError:
                # A half-read result leaves the socket unusable
                conn.close()
                raise

        return QueryResult(
            columns=columns,
            rows=rows,
            row_count=total,
            truncated=total > self.max_rows,
        )

    async def _fetchall(
        self, sql: str, params: tuple[Any, ...] | None = None, select: bool = True
    ) -> list[tuple]:
        async def _run() -> list[tuple]:
            async with self._connection(select) as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute(sql, params)
                    return list(await cursor.fetchall())

        return await self._guarded(_run())

    async def list_tables(self) -> list[str]:
        rows = await self._fetchall("SHOW TABLES")
        return [row[0] for row in rows]

    async def list_databases(self) -> list[str]:
        rows = await self._fetchall("SHOW DATABASES", select=False)
        return [row[0] for row in rows]

    async def change_database(self, name: str) -> None:
        """Issue USE on a pooled connection, then record the new database.

        Later acquisitions re-select it on every pool member.
        """

        async def _use() -> None:
            async with self._connection(select=False) as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute(f"USE {self.codec.quote_identifier(name)}")

        await self._guarded(_use())
        async with self._db_lock:
            self._current_database = name
        logger.debug(f"MariaDB switched to database {name}")

    async def get_current_database(self) -> str:
        async with self._db_lock:
            return self._current_database

    async def get_table_columns(self, table: str) -> list[TableColumn]:
        rows = await self._fetchall(
            """
            SELECT COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE, COLUMN_KEY, COLUMN_DEFAULT,
                   CHARACTER_MAXIMUM_LENGTH, NUMERIC_PRECISION
            FROM information_schema.COLUMNS
            WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = %s
            ORDER BY ORDINAL_POSITION
            """,
            (table,),
        )
        return [
            TableColumn(
                name=name,
                data_type=column_type,
                is_nullable=nullable == "YES",
                is_primary_key=key == "PRI",
                column_default=None if default is None else str(default),
                character_maximum_length=None if max_len is None else int(max_len),
                numeric_precision=None if precision is None else int(precision),
            )
            for name, column_type, nullable, key, default, max_len, precision in rows
        ]

    async def get_table_relationships(self) -> list[TableRelationship]:
        rows = await self._fetchall(
            """
            SELECT TABLE_NAME, COLUMN_NAME, REFERENCED_TABLE_NAME,
                   REFERENCED_COLUMN_NAME, CONSTRAINT_NAME
            FROM information_schema.KEY_COLUMN_USAGE
            WHERE TABLE_SCHEMA = DATABASE() AND REFERENCED_TABLE_NAME IS NOT NULL
            ORDER BY TABLE_NAME, ORDINAL_POSITION
            """
        )
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

        NULL is written as a SQL NULL, never as the string "null".

        Returns:
            The statement with values rendered as literals, for display
        """
        target = f"UPDATE {_param_identifier(table)} SET {_param_identifier(column)}"
        where = f"WHERE {_param_identifier(pk_column)} = %s"
        if new_value is None:
            sql = f"{target} = NULL {where}"
            params: tuple[Any, ...] = (pk_value,)
        else:
            sql = f"{target} = %s {where}"
            params = (new_value, pk_value)

        q = self.codec.quote_identifier
        display = (
            f"UPDATE {q(table)} SET {q(column)} = {self.codec.to_sql_literal(new_value)} "
            f"WHERE {q(pk_column)} = {self.codec.to_sql_literal(pk_value)}"
        )

        async def _run() -> int:
            async with self._connection() as conn:
                async with conn.cursor() as cursor:
                    return await cursor.execute(sql, params)

        try:
            affected = await asyncio.wait_for(_run(), timeout=self.timeout)
        except TimeoutError as e:
            raise DbTimeoutError(f"Update timed out after {self.timeout:g}s") from e
        except pymysql.err.MySQLError as e:
            errno, message = _error_parts(e)
            raise UpdateCellError(
                message,
                engine_code=str(errno) if errno else None,
                hint=hint_for_mariadb(errno),
                table=table,
                column=column,
            ) from e

        logger.debug(f"update_cell on {table}.{column} affected {affected} row(s)")
        return display

    # ------------------------------------------------------------------
    # Export support
    # ------------------------------------------------------------------

    async def get_create_statement(self, table: str) -> str:
        rows = await self._fetchall(f"SHOW CREATE TABLE {self.codec.quote_identifier(table)}")
        if not rows:
            raise DbQueryError(f"Table not found: {table}")
        return rows[0][1]

    async def fetch_page(
        self, table: str, limit: int, offset: int, order_by: list[str]
    ) -> TablePage:
        q = self.codec.quote_identifier
        sql = f"SELECT * FROM {q(table)}"
        if order_by:
            sql += " ORDER BY " + ", ".join(q(c) for c in order_by)
        sql += f" LIMIT {int(limit)} OFFSET {int(offset)}"

        async def _run() -> TablePage:
            async with self._connection() as conn:
                async with conn.cursor() as cursor:
                    await cursor.execute(sql)
                    description = cursor.description or ()
                    return TablePage(
                        columns=[d[0] for d in description],
                        types=[field_type_name(d[1]) for d in description],
                        rows=list(await cursor.fetchall()),
                    )

        return await self._guarded(_run())


def _error_parts(error: pymysql.err.MySQLError) -> tuple[int | None, str]:
    """Split a PyMySQL error into (errno, message)."""
    args = error.args
    if len(args) >= 2 and isinstance(args[0], int):
        return args[0], str(args[1])
    return None, str(error)
