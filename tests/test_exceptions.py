"""Tests for the error taxonomy and hint tables."""

from __future__ import annotations

import pytest

from dbdesk.db.exceptions import (
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
    hint_for_mariadb,
    hint_for_postgres,
)


class TestErrorCodes:
    """Every exception class carries a stable code."""

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (DbConnectionError("x"), "CONNECTION_ERROR"),
            (DbQueryError("x"), "QUERY_ERROR"),
            (DbTimeoutError("x"), "TIMEOUT_ERROR"),
            (DbSslError("x"), "SSL_ERROR"),
            (DbTlsError("x"), "TLS_ERROR"),
            (InvalidDbTypeError("x"), "INVALID_DB_TYPE"),
            (NotConnectedError(), "NOT_CONNECTED"),
            (StorageError("x"), "STORAGE_ERROR"),
            (KeyFileError("x"), "STORAGE_ERROR"),
        ],
    )
    def test_codes(self, error: DbError, code: str) -> None:
        assert error.code == code

    def test_ssl_errors_are_connection_errors(self) -> None:
        assert isinstance(DbTlsError("x"), DbSslError)
        assert isinstance(DbSslError("x"), DbConnectionError)

    def test_fields_are_kept(self) -> None:
        error = DbQueryError("bad", detail="near FROM", hint="check syntax")
        assert (error.message, error.detail, error.hint) == ("bad", "near FROM", "check syntax")
        assert str(error) == "bad"

    def test_invalid_type_names_supported_engines(self) -> None:
        error = InvalidDbTypeError("oracle")
        assert "'oracle'" in error.message
        assert "postgresql" in error.message
        assert error.db_type == "oracle"


class TestUpdateCellError:
    """Engine codes on cell update failures."""

    def test_engine_code_becomes_code(self) -> None:
        error = UpdateCellError("dup", engine_code="23505", table="users", column="email")
        assert error.code == "23505"
        assert error.engine_code == "23505"
        assert (error.table, error.column) == ("users", "email")
        assert isinstance(error, DbQueryError)

    def test_without_engine_code(self) -> None:
        assert UpdateCellError("failed").code == "QUERY_ERROR"


class TestHints:
    """Fallback hint tables."""

    @pytest.mark.parametrize(
        "sqlstate", ["22P02", "22007", "22008", "22003", "22001", "23502", "23503", "23505", "42703", "42P01"]
    )
    def test_postgres_codes_have_hints(self, sqlstate: str) -> None:
        assert hint_for_postgres(sqlstate)

    def test_postgres_unknown_code(self) -> None:
        assert hint_for_postgres("XX000") is None
        assert hint_for_postgres(None) is None

    def test_mariadb_hints(self) -> None:
        assert "NULL" in hint_for_mariadb(1048)
        assert "unique" in hint_for_mariadb(1062)
        assert hint_for_mariadb(9999) is None
        assert hint_for_mariadb(None) is None
