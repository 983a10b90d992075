"""Database backend protocol and data classes for live connections.

This module defines the capability set every engine-specific driver must
implement, along with shared data structures for configuration, query
results and schema metadata.
"""

from __future__ import annotations

import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..models import SslMode
from .exceptions import DbTlsError

if TYPE_CHECKING:
    from ..models import ExportOptions
    from .codec import ValueCodec

# Row cap applied to executeQuery results
MAX_QUERY_ROWS = 10_000

# Per-operation deadline in seconds
DEFAULT_QUERY_TIMEOUT = 30.0

# Rows fetched per SELECT while exporting table data
EXPORT_PAGE_SIZE = 10_000


class DatabaseEngine(Enum):
    """Supported database engines."""

    MARIADB = "mariadb"
    POSTGRESQL = "postgresql"


DEFAULT_PORTS: dict[DatabaseEngine, int] = {
    DatabaseEngine.MARIADB: 3306,
    DatabaseEngine.POSTGRESQL: 5432,
}


@dataclass
class ConnectionConfig:
    """Database connection configuration.

    Attributes:
        engine: Database engine (mariadb, postgresql)
        host: Database server host
        port: Database server port
        database: Database selected on connect
        username: Database username
        password: Database password
        ssl_mode: disabled, preferred or required
        timeout: Query execution timeout in seconds
        connect_timeout: Connection establishment timeout in seconds
        max_rows: Row cap for ad-hoc query results
        pool_min_size: Minimum pooled connections (MariaDB only)
        pool_max_size: Maximum pooled connections (MariaDB only)
        keepalive_interval: Seconds between client pings (PostgreSQL only, 0 disables)
        export_page_size: Rows per SELECT page during export
    """

    engine: DatabaseEngine
    host: str = "localhost"
    port: int | None = None
    database: str = ""
    username: str = ""
    password: str = ""
    ssl_mode: SslMode = SslMode.PREFERRED
    timeout: float = DEFAULT_QUERY_TIMEOUT
    connect_timeout: float = 10.0
    max_rows: int = MAX_QUERY_ROWS
    pool_min_size: int = 1
    pool_max_size: int = 5
    keepalive_interval: float = 60.0
    export_page_size: int = EXPORT_PAGE_SIZE

    def __post_init__(self) -> None:
        """Validate configuration and fill engine defaults."""
        if not self.host:
            raise ValueError(f"{self.engine.value} requires 'host' parameter")
        if not isinstance(self.ssl_mode, SslMode):
            self.ssl_mode = SslMode(str(self.ssl_mode).lower())
        if self.pool_min_size < 1 or self.pool_max_size < self.pool_min_size:
            raise ValueError(
                f"Invalid pool bounds: min={self.pool_min_size}, max={self.pool_max_size}"
            )

        if self.port is None:
            self.port = DEFAULT_PORTS[self.engine]

    def describe(self) -> str:
        """Credential-free description for log messages."""
        return f"{self.host}:{self.port}/{self.database}"


@dataclass
class QueryResult:
    """Unified query result across backends.

    Attributes:
        columns: Column names in engine-reported order
        rows: Materialized rows as JSON-safe dicts keyed by column name
        row_count: Total rows produced by the engine (may exceed len(rows))
        truncated: True when row_count exceeded the row cap
        execution_time_ms: Wall-clock execution time in milliseconds
        affected_rows: Rows affected by statements without a result set
    """

    columns: list[str] = field(default_factory=list)
    rows: list[dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    truncated: bool = False
    execution_time_ms: float = 0.0
    affected_rows: int = 0


@dataclass
class TableColumn:
    """Column metadata reported by the engine catalog."""

    name: str
    data_type: str
    is_nullable: bool
    is_primary_key: bool
    column_default: str | None = None
    character_maximum_length: int | None = None
    numeric_precision: int | None = None


@dataclass
class TableRelationship:
    """One foreign-key edge between two table columns."""

    from_table: str
    from_column: str
    to_table: str
    to_column: str
    constraint_name: str


@dataclass
class TablePage:
    """One LIMIT/OFFSET page of raw table data used by the export engine.

    Attributes:
        columns: Column names in select order
        types: Engine type names, parallel to columns
        rows: Raw driver values, one tuple per row
    """

    columns: list[str]
    types: list[str]
    rows: list[tuple[Any, ...]]


@runtime_checkable
class DatabaseBackend(Protocol):
    """Protocol defining the capability set of a live connection.

    Both engine variants implement this interface. The factory selects a
    variant at construction time; callers only ever see this contract.
    """

    engine: DatabaseEngine
    codec: type[ValueCodec]

    async def connect(self, config: ConnectionConfig) -> None:
        """Establish the connection and verify it with a round trip.

        Raises:
            DbConnectionError: If the server cannot be reached or rejects the login
            DbSslError: If ssl_mode is required and the TLS handshake fails
        """
        ...

    async def test_connection(self) -> None:
        """Round-trip liveness probe.

        Raises:
            DbConnectionError: If the probe fails
            DbTimeoutError: If the probe exceeds the query timeout
        """
        ...

    async def execute_query(self, sql: str) -> QueryResult:
        """Run arbitrary SQL with a timeout and a row cap.

        Raises:
            DbQueryError: If the engine rejects the statement
            DbTimeoutError: If execution exceeds the query timeout
        """
        ...

    async def list_tables(self) -> list[str]:
        """List tables of the current database."""
        ...

    async def list_databases(self) -> list[str]:
        """List databases visible to the login."""
        ...

    async def change_database(self, name: str) -> None:
        """Switch the current database."""
        ...

    async def get_current_database(self) -> str:
        """Return the current database name."""
        ...

    async def get_table_columns(self, table: str) -> list[TableColumn]:
        """Describe the columns of a table in the current database."""
        ...

    async def get_table_relationships(self) -> list[TableRelationship]:
        """List foreign-key edges of the current database."""
        ...

    async def update_cell(
        self,
        table: str,
        column: str,
        new_value: str | None,
        pk_column: str,
        pk_value: str,
    ) -> str:
        """Update one cell by primary key using bound parameters.

        Returns:
            The executed statement with values rendered for display

        Raises:
            UpdateCellError: With engine code, detail and hint on failure
        """
        ...

    async def get_create_statement(self, table: str) -> str:
        """Return a CREATE TABLE statement (without trailing semicolon)."""
        ...

    async def fetch_page(
        self, table: str, limit: int, offset: int, order_by: list[str]
    ) -> TablePage:
        """Fetch one page of raw table data for export."""
        ...

    async def export_database_with_options(self, options: ExportOptions) -> str:
        """Build a SQL dump of the selected tables."""
        ...

    async def disconnect(self) -> None:
        """Release all held resources. Safe to call multiple times."""
        ...


class DatabaseBackendBase(ABC):
    """Abstract base class for database backends.

    Provides common functionality and enforces the interface.
    Subclasses must implement all abstract methods.
    """

    engine: DatabaseEngine
    codec: type[ValueCodec]
    _config: ConnectionConfig | None = None

    @abstractmethod
    async def connect(self, config: ConnectionConfig) -> None:
        """Establish database connection."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    async def test_connection(self) -> None:
        """Liveness probe."""
        pass

    @abstractmethod
    async def execute_query(self, sql: str) -> QueryResult:
        """Execute ad-hoc SQL."""
        pass

    @abstractmethod
    async def list_tables(self) -> list[str]:
        """List tables."""
        pass

    @abstractmethod
    async def list_databases(self) -> list[str]:
        """List databases."""
        pass

    @abstractmethod
    async def change_database(self, name: str) -> None:
        """Switch database."""
        pass

    @abstractmethod
    async def get_current_database(self) -> str:
        """Current database name."""
        pass

    @abstractmethod
    async def get_table_columns(self, table: str) -> list[TableColumn]:
        """Column metadata."""
        pass

    @abstractmethod
    async def get_table_relationships(self) -> list[TableRelationship]:
        """Foreign-key edges."""
        pass

    @abstractmethod
    async def update_cell(
        self,
        table: str,
        column: str,
        new_value: str | None,
        pk_column: str,
        pk_value: str,
    ) -> str:
        """Single-row update by primary key."""
        pass

    @abstractmethod
    async def get_create_statement(self, table: str) -> str:
        """CREATE TABLE text for export."""
        pass

    @abstractmethod
    async def fetch_page(
        self, table: str, limit: int, offset: int, order_by: list[str]
    ) -> TablePage:
        """Raw page of table rows for export."""
        pass

    async def export_database_with_options(self, options: ExportOptions) -> str:
        """Build a SQL dump of the selected tables.

        Delegates to the export engine, which drives this backend page by page.
        """
        from .export import SqlExporter

        return await SqlExporter(self).export(options)

    @property
    def timeout(self) -> float:
        """Per-operation deadline in seconds."""
        return self._config.timeout if self._config else DEFAULT_QUERY_TIMEOUT

    @property
    def max_rows(self) -> int:
        """Row cap for ad-hoc queries."""
        return self._config.max_rows if self._config else MAX_QUERY_ROWS

    @property
    def export_page_size(self) -> int:
        """Rows per export page."""
        return self._config.export_page_size if self._config else EXPORT_PAGE_SIZE


def build_ssl_context() -> ssl.SSLContext:
    """Build the TLS context used for encrypted connections.

    Certificates are not verified so self-signed developer databases work.

    Raises:
        DbTlsError: If the context cannot be created
    """
    try:
        context = ssl.create_default_context()
    except (ssl.SSLError, OSError) as e:
        raise DbTlsError(f"Failed to create TLS context: {e}") from e
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def unique_column_names(names: list[str]) -> list[str]:
    """Suffix repeated column names so result rows can be keyed by name.

    ``["id", "name", "id"]`` becomes ``["id", "name", "id_2"]``.
    """
    seen: dict[str, int] = {}
    taken = set(names)
    result: list[str] = []
    for name in names:
        if name not in seen:
            seen[name] = 1
            result.append(name)
            continue
        count = seen[name]
        candidate = name
        while candidate in taken:
            count += 1
            candidate = f"{name}_{count}"
        seen[name] = count
        taken.add(candidate)
        result.append(candidate)
    return result
