"""Command facade over the connection factory, the active slot and the store.

Every public coroutine returns a value (``CommandResult`` or
``UpdateCellResult``). Driver and store exceptions stop here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, TypeVar

from .config import Settings
from .db.backend import DatabaseBackendBase
from .db.exceptions import (
    DbConnectionError,
    DbError,
    DbQueryError,
    NotConnectedError,
    StorageError,
    UpdateCellError,
)
from .db.export import write_dump
from .db.factory import create_connection
from .models import (
    CommandError,
    CommandResult,
    ConnectionProfile,
    ExportOptions,
    UpdateCellResult,
)
from .storage.connections_store import ConnectionsStore

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ActiveConnection:
    """Holds at most one live backend behind an exclusive lock.

    Operations against the backend queue on the lock, so only one runs at a
    time. Replacing or clearing the slot disconnects the previous backend.
    """

    def __init__(self) -> None:
        self._backend: DatabaseBackendBase | None = None
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self._backend is not None

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[DatabaseBackendBase]:
        """Hold the slot for the duration of one operation.

        Raises:
            NotConnectedError: If the slot is empty
        """
        async with self._lock:
            if self._backend is None:
                raise NotConnectedError()
            yield self._backend

    async def replace(self, backend: DatabaseBackendBase) -> bool:
        """Install a backend, disconnecting whatever was there.

        The new backend stays installed even if the previous one fails to
        disconnect; that failure is only logged.

        Returns:
            True if a previous backend was replaced
        """
        async with self._lock:
            previous, self._backend = self._backend, backend
            if previous is not None:
                try:
                    await previous.disconnect()
                except Exception as e:
                    logger.warning(f"Error disconnecting replaced connection: {e}")
        return previous is not None

    async def clear(self) -> bool:
        """Empty the slot.

        Returns:
            True if a backend was disconnected
        """
        async with self._lock:
            previous, self._backend = self._backend, None
            if previous is not None:
                await previous.disconnect()
        return previous is not None


class DatabaseSession:
    """Operations available to the UI layer.

    Example:
        session = DatabaseSession(SettingsLoader().load())
        result = await session.connect(profile)
        if result.success:
            tables = (await session.list_tables()).data
        await session.close()
    """

    def __init__(
        self,
        settings: Settings | None = None,
        store: ConnectionsStore | None = None,
        slot: ActiveConnection | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._store = store
        self._store_ready = False
        self._store_lock = asyncio.Lock()
        self._slot = slot or ActiveConnection()

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def is_connected(self) -> bool:
        return self._slot.is_connected

    # ═══════════════════════════════════════════════════════════════════════
    # Connection lifecycle
    # ═══════════════════════════════════════════════════════════════════════

    async def connect(self, profile: ConnectionProfile) -> CommandResult:
        """Open a connection for ``profile`` and make it the active one."""

        async def _connect() -> None:
            backend = await self._open(profile)
            replaced = await self._slot.replace(backend)
            if replaced:
                logger.info(f"Replaced active connection with {_describe(profile)}")
            else:
                logger.info(f"Connected to {_describe(profile)}")

        return await _guard(_connect(), DbConnectionError)

    async def test_connection(self, profile: ConnectionProfile) -> CommandResult:
        """Probe a profile on a throwaway connection. The active slot is untouched."""

        async def _probe() -> None:
            backend = await self._open(profile)
            try:
                await backend.test_connection()
            finally:
                await backend.disconnect()

        return await _guard(_probe(), DbConnectionError)

    async def disconnect(self) -> CommandResult:
        async def _clear() -> None:
            if await self._slot.clear():
                logger.info("Disconnected active connection")

        return await _guard(_clear(), DbConnectionError)

    async def close(self) -> None:
        """Disconnect and release the credential store."""
        await self.disconnect()
        if self._store is not None and self._store_ready:
            await self._store.close()
            self._store_ready = False

    async def _open(self, profile: ConnectionProfile) -> DatabaseBackendBase:
        return await create_connection(
            profile.db_type,
            profile.host,
            profile.port,
            profile.username,
            profile.password,
            profile.database,
            profile.ssl_mode,
            self._settings,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Operations on the active connection
    # ═══════════════════════════════════════════════════════════════════════

    async def execute_query(self, sql: str) -> CommandResult:
        return await self._with_backend(lambda backend: backend.execute_query(sql))

    async def list_tables(self) -> CommandResult:
        return await self._with_backend(lambda backend: backend.list_tables())

    async def list_databases(self) -> CommandResult:
        return await self._with_backend(lambda backend: backend.list_databases())

    async def change_database(self, name: str) -> CommandResult:
        return await self._with_backend(lambda backend: backend.change_database(name))

    async def get_current_database(self) -> CommandResult:
        return await self._with_backend(lambda backend: backend.get_current_database())

    async def get_table_columns(self, table: str) -> CommandResult:
        return await self._with_backend(lambda backend: backend.get_table_columns(table))

    async def get_table_relationships(self) -> CommandResult:
        return await self._with_backend(lambda backend: backend.get_table_relationships())

    async def update_cell(
        self,
        table: str,
        column: str,
        new_value: str | None,
        pk_column: str,
        pk_value: str,
    ) -> UpdateCellResult:
        """Update one cell by primary key.

        On success ``executed_query`` holds a readable rendition of the
        statement; the statement itself was sent with bound parameters.
        """
        try:
            async with self._slot.acquire() as backend:
                executed = await backend.update_cell(
                    table, column, new_value, pk_column, pk_value
                )
        except UpdateCellError as e:
            return UpdateCellResult(
                success=False,
                error=_command_error(e),
                table=e.table or table,
                column=e.column or column,
            )
        except DbError as e:
            return UpdateCellResult(
                success=False, error=_command_error(e), table=table, column=column
            )
        except Exception as e:
            logger.exception(f"Unexpected error updating {table}.{column}")
            error = _wrap(e, DbQueryError)
            return UpdateCellResult(
                success=False, error=_command_error(error), table=table, column=column
            )

        return UpdateCellResult(
            success=True, executed_query=executed, table=table, column=column
        )

    async def export_database(self, options: ExportOptions, path: str | Path) -> CommandResult:
        """Export to a SQL dump at ``path``.

        Options that leave ``max_insert_size`` unset use the configured
        ``default_max_insert_size``.

        Returns:
            CommandResult whose data is the written file path
        """
        if "max_insert_size" not in options.model_fields_set:
            options = options.model_copy(
                update={"max_insert_size": self._settings.default_max_insert_size}
            )

        async def _export(backend: DatabaseBackendBase) -> str:
            dump = await backend.export_database_with_options(options)
            written = await write_dump(path, dump)
            logger.info(f"Exported {len(dump)} characters to {written}")
            return str(written)

        return await self._with_backend(_export)

    async def _with_backend(
        self, operation: Callable[[DatabaseBackendBase], Awaitable[Any]]
    ) -> CommandResult:
        async def _call() -> Any:
            async with self._slot.acquire() as backend:
                return await operation(backend)

        return await _guard(_call(), DbQueryError)

    # ═══════════════════════════════════════════════════════════════════════
    # Saved connection profiles
    # ═══════════════════════════════════════════════════════════════════════

    async def save_connection(self, profile: ConnectionProfile) -> CommandResult:
        return await self._with_store(lambda store: store.save_connection(profile))

    async def get_connections(self) -> CommandResult:
        return await self._with_store(lambda store: store.get_all_connections())

    async def delete_connection(self, profile_id: str) -> CommandResult:
        return await self._with_store(lambda store: store.delete_connection(profile_id))

    async def _with_store(
        self, operation: Callable[[ConnectionsStore], Awaitable[Any]]
    ) -> CommandResult:
        async def _call() -> Any:
            return await operation(await self._ready_store())

        return await _guard(_call(), StorageError)

    async def _ready_store(self) -> ConnectionsStore:
        """Create and initialize the store on first use."""
        async with self._store_lock:
            if self._store is None:
                self._settings.ensure_data_dir()
                self._store = ConnectionsStore(
                    self._settings.store_path, self._settings.key_path
                )
            if not self._store_ready:
                await self._store.init()
                self._store_ready = True
            return self._store


async def _guard(call: Awaitable[T], category: type[DbError]) -> CommandResult:
    """Await ``call`` and fold its outcome into a CommandResult.

    Exceptions outside the DbError hierarchy are reported under ``category``.
    """
    try:
        data = await call
    except DbError as e:
        logger.debug(f"Command failed with {e.code}: {e.message}")
        return CommandResult(success=False, error=_command_error(e))
    except Exception as e:
        logger.exception("Unexpected error in command")
        return CommandResult(success=False, error=_command_error(_wrap(e, category)))
    return CommandResult(success=True, data=data)


def _wrap(error: Exception, category: type[DbError]) -> DbError:
    wrapped = category(f"Unexpected error: {error}")
    wrapped.__cause__ = error
    return wrapped


def _command_error(error: DbError) -> CommandError:
    return CommandError(
        message=error.message, code=error.code, detail=error.detail, hint=error.hint
    )


def _describe(profile: ConnectionProfile) -> str:
    return f"{profile.db_type} {profile.host}:{profile.port}/{profile.database}"
