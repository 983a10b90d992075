"""Streaming SQL export engine.

Drives a live backend table by table and builds one SQL document:

    -- Table: users
    DROP TABLE IF EXISTS `users`;
    CREATE TABLE `users` (...);

    INSERT INTO `users` (`id`, `name`) VALUES
      (1, 'alice'),
      (2, 'bob');

Row data is read with LIMIT/OFFSET pages of ``export_page_size`` rows and
flushed into multi-row statements of at most ``max_insert_size`` rows. The
raw driver rows held at once never exceed one page.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

from ..models import DataMode, ExportOptions
from .backend import DatabaseEngine
from .exceptions import DbQueryError

if TYPE_CHECKING:
    from .backend import DatabaseBackendBase, TableColumn

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqlExporter:
    """Builds a dump from one backend.

    Example:
        exporter = SqlExporter(backend)
        sql = await exporter.export(ExportOptions(data_mode=DataMode.REPLACE))
    """

    def __init__(self, backend: DatabaseBackendBase, page_size: int | None = None) -> None:
        self._backend = backend
        self._codec = backend.codec
        self._page_size = page_size or backend.export_page_size

    async def export(self, options: ExportOptions) -> str:
        """Export the selected tables (all tables when none are selected).

        Tables are emitted in the order the backend lists them.

        Raises:
            DbQueryError: If a selected table does not exist or any query fails
        """
        tables = await self._resolve_tables(options.selected_tables)
        parts: list[str] = []

        for table in tables:
            logger.debug(f"Exporting table {table}")
            parts.append(f"\n-- Table: {table}\n")

            if options.include_drop:
                parts.append(self._drop_statement(table))

            if options.include_create:
                create = await self._backend.get_create_statement(table)
                parts.append(f"{create};\n\n")

            if options.data_mode != DataMode.NO_DATA:
                await self._export_rows(table, options, parts)
                parts.append("\n")

        return "".join(parts)

    async def _resolve_tables(self, selected: list[str]) -> list[str]:
        tables = await self._backend.list_tables()
        if not selected:
            return tables

        missing = [t for t in selected if t not in tables]
        if missing:
            raise DbQueryError(f"Table not found: {', '.join(missing)}")

        wanted = set(selected)
        return [t for t in tables if t in wanted]

    def _drop_statement(self, table: str) -> str:
        name = self._codec.quote_identifier(table)
        if self._backend.engine == DatabaseEngine.POSTGRESQL:
            return f"DROP TABLE IF EXISTS {name} CASCADE;\n"
        return f"DROP TABLE IF EXISTS {name};\n"

    async def _export_rows(self, table: str, options: ExportOptions, parts: list[str]) -> None:
        """Page through a table and append batched INSERT statements."""
        columns_meta = await self._backend.get_table_columns(table)
        pk_columns = [c.name for c in columns_meta if c.is_primary_key]

        offset = 0
        total = 0
        while True:
            page = await self._backend.fetch_page(table, self._page_size, offset, pk_columns)
            buffer: list[str] = []

            for row in page.rows:
                values = ", ".join(
                    self._codec.to_sql_literal(value, type_name)
                    for value, type_name in zip(row, page.types, strict=True)
                )
                buffer.append(f"({values})")
                if len(buffer) >= options.max_insert_size:
                    parts.append(
                        self._insert_statement(table, page.columns, buffer, options, columns_meta)
                    )
                    buffer = []

            # A page's remainder is flushed before the next page is read
            if buffer:
                parts.append(
                    self._insert_statement(table, page.columns, buffer, options, columns_meta)
                )

            total += len(page.rows)
            if len(page.rows) < self._page_size:
                break
            offset += self._page_size

        logger.debug(f"Exported {total} rows from {table}")

    def _insert_statement(
        self,
        table: str,
        columns: list[str],
        values: list[str],
        options: ExportOptions,
        columns_meta: list[TableColumn],
    ) -> str:
        quote = self._codec.quote_identifier
        column_list = ", ".join(quote(c) for c in columns)
        values_list = ",\n  ".join(values)

        if self._backend.engine == DatabaseEngine.MARIADB:
            verb = {
                DataMode.REPLACE: "REPLACE",
                DataMode.INSERT_IGNORE: "INSERT IGNORE",
            }.get(options.data_mode, "INSERT")
            return f"{verb} INTO {quote(table)} ({column_list}) VALUES\n  {values_list};\n"

        conflict = self._conflict_clause(columns, options.data_mode, columns_meta)
        return f"INSERT INTO {quote(table)} ({column_list}) VALUES\n  {values_list}{conflict};\n"

    def _conflict_clause(
        self, columns: list[str], data_mode: DataMode, columns_meta: list[TableColumn]
    ) -> str:
        """PostgreSQL ON CONFLICT clause for replace/insert_ignore."""
        if data_mode == DataMode.INSERT:
            return ""

        pk = [c.name for c in columns_meta if c.is_primary_key]
        updatable = [c for c in columns if c not in pk]
        if data_mode == DataMode.INSERT_IGNORE or not pk or not updatable:
            return "\nON CONFLICT DO NOTHING"

        quote = self._codec.quote_identifier
        target = ", ".join(quote(c) for c in pk)
        assignments = ", ".join(f"{quote(c)} = EXCLUDED.{quote(c)}" for c in updatable)
        return f"\nON CONFLICT ({target}) DO UPDATE SET {assignments}"


async def write_dump(path: str | Path, content: str) -> Path:
    """Write a dump atomically, creating the parent directory.

    Uses temp file + rename so a failed write never leaves a partial dump.

    Returns:
        Resolved path of the written file
    """
    target = Path(path).expanduser()

    def _write() -> Path:
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_file = target.with_name(target.name + ".tmp")
        with open(temp_file, "w", encoding="utf-8") as f:
            f.write(content)
        # Atomic on POSIX; replaces an existing dump
        temp_file.replace(target)
        return target.resolve()

    return await _run_in_executor(_write)


async def _run_in_executor(func: Callable[[], T]) -> T:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)
