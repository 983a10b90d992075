"""Database drivers for MariaDB/MySQL and PostgreSQL.

Both variants implement the DatabaseBackend capability set; the factory
picks one from an engine name. Value encoding lives in codec, dump
generation in export, and the error taxonomy in exceptions.
"""

from .backend import (
    MAX_QUERY_ROWS,
    ConnectionConfig,
    DatabaseBackend,
    DatabaseBackendBase,
    DatabaseEngine,
    QueryResult,
    TableColumn,
    TablePage,
    TableRelationship,
)
from .codec import MariaDBCodec, PostgresCodec, ValueCodec
from .exceptions import (
    DbConnectionError,
    DbError,
    DbQueryError,
    DbSslError,
    DbTimeoutError,
    DbTlsError,
    InvalidDbTypeError,
    KeyFileError,
    NotConnectedError,
    StorageError,
    UpdateCellError,
)
from .export import SqlExporter, write_dump
from .factory import create_connection, resolve_engine
from .mariadb_backend import MariaDBBackend
from .postgres_backend import PostgresBackend

__all__ = [
    # Contract
    "MAX_QUERY_ROWS",
    "ConnectionConfig",
    "DatabaseBackend",
    "DatabaseBackendBase",
    "DatabaseEngine",
    "QueryResult",
    "TableColumn",
    "TablePage",
    "TableRelationship",
    # Variants
    "MariaDBBackend",
    "PostgresBackend",
    "create_connection",
    "resolve_engine",
    # Codec and export
    "MariaDBCodec",
    "PostgresCodec",
    "ValueCodec",
    "SqlExporter",
    "write_dump",
    # Errors
    "DbConnectionError",
    "DbError",
    "DbQueryError",
    "DbSslError",
    "DbTimeoutError",
    "DbTlsError",
    "InvalidDbTypeError",
    "KeyFileError",
    "NotConnectedError",
    "StorageError",
    "UpdateCellError",
]
