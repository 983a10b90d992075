"""Tests for the per-engine value codecs."""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal

import pytest

from dbdesk.db.codec import MariaDBCodec, PostgresCodec, ValueCodec

# ============================================================================
# Escaping
# ============================================================================


class TestEscaping:
    """Identifier quoting and string escaping per dialect."""

    def test_mariadb_identifier(self) -> None:
        assert MariaDBCodec.quote_identifier("order") == "`order`"
        assert MariaDBCodec.quote_identifier("we`ird") == "`we``ird`"

    def test_postgres_identifier(self) -> None:
        assert PostgresCodec.quote_identifier("Order") == '"Order"'
        assert PostgresCodec.quote_identifier('we"ird') == '"we""ird"'

    def test_mariadb_string_escapes_backslash_first(self) -> None:
        """Backslashes are doubled before quotes so the result stays balanced."""
        assert MariaDBCodec.quote_string("it's") == "'it''s'"
        assert MariaDBCodec.quote_string("a\\'b") == "'a\\\\''b'"

    def test_postgres_string_keeps_backslash(self) -> None:
        assert PostgresCodec.quote_string("C:\\temp\\it's") == "'C:\\temp\\it''s'"


# ============================================================================
# Native value -> JSON
# ============================================================================


class TestToJson:
    """Conversion of driver values into the query row model."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, None),
            (True, True),
            (42, 42),
            (1.5, 1.5),
            (float("nan"), None),
            (Decimal("12.50"), "12.50"),
            (Decimal("NaN"), None),
            ("plain", "plain"),
            (datetime.datetime(2024, 3, 9, 14, 5, 7), "2024-03-09 14:05:07"),
            (datetime.date(2024, 3, 9), "2024-03-09"),
            (datetime.time(8, 30, 0), "08:30:00"),
            (datetime.timedelta(hours=26, minutes=3, seconds=4), "26:03:04"),
            (datetime.timedelta(seconds=-90), "-00:01:30"),
            (uuid.UUID("12345678-1234-5678-1234-567812345678"), "12345678-1234-5678-1234-567812345678"),
            ({"b", "a"}, "a,b"),
        ],
    )
    def test_scalars(self, value: object, expected: object) -> None:
        assert MariaDBCodec.to_json(value) == expected

    def test_bytes_are_base64(self) -> None:
        assert MariaDBCodec.to_json(b"\x00\xffhi") == "AP9oaQ=="
        assert PostgresCodec.to_json(memoryview(b"hi")) == "aGk="

    def test_mariadb_bit_is_integer(self) -> None:
        assert MariaDBCodec.to_json(b"\x01\x01", "bit") == 257

    def test_mariadb_json_text_is_parsed(self) -> None:
        assert MariaDBCodec.to_json('{"a": [1, 2]}', "json") == {"a": [1, 2]}

    def test_mariadb_invalid_json_text_stays_string(self) -> None:
        assert MariaDBCodec.to_json("{not json", "JSON") == "{not json"

    def test_postgres_json_passes_through(self) -> None:
        """Decoded JSON strings are not parsed a second time."""
        assert PostgresCodec.to_json('"quoted"', "jsonb") == '"quoted"'
        assert PostgresCodec.to_json({"k": 1}, "json") == {"k": 1}

    def test_postgres_arrays_convert_elements(self) -> None:
        value = [datetime.date(2024, 1, 2), None, Decimal("1.10")]
        assert PostgresCodec.to_json(value, "_date") == ["2024-01-02", None, "1.10"]


# ============================================================================
# Native value -> SQL literal
# ============================================================================


class TestToSqlLiteral:
    """Literal rendering used by dump generation."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            (None, "NULL"),
            (True, "TRUE"),
            (False, "FALSE"),
            (-7, "-7"),
            (0.1, "0.1"),
            (float("inf"), "NULL"),
            (Decimal("10.000"), "10.000"),
            ("O'Brien", "'O''Brien'"),
            (datetime.date(2024, 2, 29), "'2024-02-29'"),
            (datetime.datetime(2024, 2, 29, 23, 59, 1, 250), "'2024-02-29 23:59:01.000250'"),
            (datetime.time(7, 0, 0, 5), "'07:00:00.000005'"),
        ],
    )
    def test_common_literals(self, value: object, expected: str) -> None:
        assert MariaDBCodec.to_sql_literal(value) == expected
        assert PostgresCodec.to_sql_literal(value) == expected

    def test_aware_datetime_keeps_offset(self) -> None:
        tz = datetime.timezone(datetime.timedelta(hours=2))
        value = datetime.datetime(2024, 1, 1, 12, 0, 0, tzinfo=tz)
        assert PostgresCodec.to_sql_literal(value) == "'2024-01-01 12:00:00+0200'"

    def test_binary_literals(self) -> None:
        assert MariaDBCodec.to_sql_literal(b"\x01\xab") == "X'01ab'"
        assert MariaDBCodec.to_sql_literal(b"") == "X''"
        assert PostgresCodec.to_sql_literal(b"\x01\xab") == "'\\x01ab'"

    def test_durations(self) -> None:
        value = datetime.timedelta(hours=1, seconds=1, microseconds=500000)
        assert MariaDBCodec.to_sql_literal(value) == "'01:00:01'"
        assert PostgresCodec.to_sql_literal(value) == "'3601.5 seconds'"

    def test_postgres_json_is_serialized(self) -> None:
        assert PostgresCodec.to_sql_literal({"q": "it's"}, "jsonb") == """'{"q":"it''s"}'"""
        assert PostgresCodec.to_sql_literal("text", "json") == """'"text"'"""

    def test_mariadb_json_text_is_quoted_as_is(self) -> None:
        assert MariaDBCodec.to_sql_literal('{"a":1}', "json") == """'{"a":1}'"""

    def test_postgres_arrays(self) -> None:
        assert PostgresCodec.to_sql_literal([1, 2], "_int4") == "ARRAY[1, 2]"
        assert PostgresCodec.to_sql_literal(["a", None], "_text") == "ARRAY['a', NULL]"
        assert PostgresCodec.to_sql_literal([], "_int4") == "'{}'"

    def test_mariadb_set_literal(self) -> None:
        assert MariaDBCodec.to_sql_literal({"red", "blue"}, "set") == "'blue,red'"

    def test_uuid_literal(self) -> None:
        value = uuid.UUID("12345678-1234-5678-1234-567812345678")
        assert PostgresCodec.to_sql_literal(value) == "'12345678-1234-5678-1234-567812345678'"

    def test_dialect_must_define_binary_literal(self) -> None:
        class Incomplete(ValueCodec):
            pass

        with pytest.raises(TypeError):
            Incomplete()
        assert MariaDBCodec() and PostgresCodec()
