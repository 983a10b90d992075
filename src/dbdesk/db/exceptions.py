"""Error taxonomy shared by both driver variants and the credential store.

Every exception carries a stable ``code`` string. The command facade turns
these into ``CommandError`` values; nothing below it catches them.
"""

from __future__ import annotations


class DbError(Exception):
    """Base exception for database access errors."""

    code = "DB_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        detail: str | None = None,
        hint: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.detail = detail
        self.hint = hint


class DbConnectionError(DbError):
    """Transport or authentication failure."""

    code = "CONNECTION_ERROR"


class DbQueryError(DbError):
    """SQL was malformed or rejected by the engine."""

    code = "QUERY_ERROR"


class DbTimeoutError(DbError):
    """Operation exceeded its deadline."""

    code = "TIMEOUT_ERROR"


class DbSslError(DbConnectionError):
    """SSL handshake failed while encryption was required."""

    code = "SSL_ERROR"


class DbTlsError(DbSslError):
    """TLS context could not be built."""

    code = "TLS_ERROR"


class InvalidDbTypeError(DbError):
    """Engine name is not one of the supported engines."""

    code = "INVALID_DB_TYPE"

    def __init__(self, db_type: str) -> None:
        super().__init__(
            f"Unsupported database type: '{db_type}'. "
            "Supported types: mariadb, mysql, postgresql, postgres"
        )
        self.db_type = db_type


class NotConnectedError(DbError):
    """No live connection is held in the active slot."""

    code = "NOT_CONNECTED"

    def __init__(self, message: str = "No active database connection") -> None:
        super().__init__(message)


class StorageError(DbError):
    """Credential store read or write failed."""

    code = "STORAGE_ERROR"


class KeyFileError(StorageError):
    """Encryption key file exists but cannot be used."""


class UpdateCellError(DbQueryError):
    """Single-cell update was rejected by the engine.

    ``code`` is the engine's own error code when one was reported
    (SQLSTATE for PostgreSQL, error number for MariaDB), else QUERY_ERROR.
    """

    def __init__(
        self,
        message: str,
        *,
        engine_code: str | None = None,
        detail: str | None = None,
        hint: str | None = None,
        table: str | None = None,
        column: str | None = None,
    ) -> None:
        super().__init__(message, code=engine_code, detail=detail, hint=hint)
        self.engine_code = engine_code
        self.table = table
        self.column = column


# SQLSTATE -> actionable text, consulted only when the server sent no hint
POSTGRES_HINTS: dict[str, str] = {
    "22P02": "The value does not match the column's data type. Check the format.",
    "22007": "Invalid date/time format. Use YYYY-MM-DD or YYYY-MM-DD HH:MM:SS.",
    "22008": "Date/time value is out of range.",
    "22003": "Numeric value is out of range for this column.",
    "22001": "Value is too long for this column.",
    "23502": "This column does not accept NULL values.",
    "23503": "The value must reference an existing row in the related table.",
    "23505": "This value already exists and must be unique.",
    "42703": "Column does not exist. The table may have been altered.",
    "42P01": "Table does not exist. Refresh the table list.",
}

MARIADB_HINTS: dict[int, str] = {
    1048: "This column does not accept NULL values.",
    1062: "This value already exists and must be unique.",
    1054: "Column does not exist. The table may have been altered.",
    1146: "Table does not exist. Refresh the table list.",
    1264: "Numeric value is out of range for this column.",
    1292: "The value does not match the column's data type. Check the format.",
    1366: "The value does not match the column's data type. Check the format.",
    1406: "Value is too long for this column.",
    1451: "Other rows reference this row through a foreign key.",
    1452: "The value must reference an existing row in the related table.",
}


def hint_for_postgres(sqlstate: str | None) -> str | None:
    """Look up a hint for a PostgreSQL SQLSTATE code."""
    if not sqlstate:
        return None
    return POSTGRES_HINTS.get(sqlstate)


def hint_for_mariadb(errno: int | None) -> str | None:
    """Look up a hint for a MariaDB error number."""
    if errno is None:
        return None
    return MARIADB_HINTS.get(errno)
