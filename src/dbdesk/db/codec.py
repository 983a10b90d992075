"""Per-engine value codecs.

A codec maps native driver values to two targets:

- ``to_json``: a JSON-safe scalar (or structure, for JSON columns) for the
  row model returned by ``execute_query``.
- ``to_sql_literal``: SQL literal text for dump generation.

Identifier quoting and string escaping live here as well so the export
engine never builds SQL text from unescaped names or values.

Codecs are stateless; every method is a classmethod.
"""

from __future__ import annotations

import base64
import datetime
import json
import math
import uuid
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any

DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"
TIME_FORMAT = "%H:%M:%S"

JSON_TYPES = frozenset({"json", "jsonb"})


def _format_timedelta(value: datetime.timedelta) -> str:
    """Render a duration as [-]HH:MM:SS (hours may exceed 24)."""
    total = int(value.total_seconds())
    sign = "-" if total < 0 else ""
    total = abs(total)
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{sign}{hours:02d}:{minutes:02d}:{seconds:02d}"


def _literal_datetime(value: datetime.datetime) -> str:
    text = value.strftime(DATETIME_FORMAT)
    if value.microsecond:
        text += f".{value.microsecond:06d}"
    if value.utcoffset() is not None:
        text += value.strftime("%z")
    return text


def _literal_time(value: datetime.time) -> str:
    text = value.strftime(TIME_FORMAT)
    if value.microsecond:
        text += f".{value.microsecond:06d}"
    return text


class ValueCodec(ABC):
    """Behavior shared by both engine dialects.

    Subclasses set ``quote_char`` and ``escape_backslashes`` and override the
    handful of encodings that genuinely differ (binary literals, arrays).
    """

    quote_char: str = '"'
    escape_backslashes: bool = False
    # JSON columns arrive already decoded by the driver
    json_decoded: bool = False

    # ------------------------------------------------------------------
    # Escaping
    # ------------------------------------------------------------------

    @classmethod
    def quote_identifier(cls, name: str) -> str:
        """Quote a table/column name, doubling embedded quote characters."""
        q = cls.quote_char
        return f"{q}{name.replace(q, q + q)}{q}"

    @classmethod
    def escape_string(cls, value: str) -> str:
        """Escape string contents for a single-quoted literal."""
        if cls.escape_backslashes:
            value = value.replace("\\", "\\\\")
        return value.replace("'", "''")

    @classmethod
    def quote_string(cls, value: str) -> str:
        return f"'{cls.escape_string(value)}'"

    # ------------------------------------------------------------------
    # Native value -> JSON
    # ------------------------------------------------------------------

    @classmethod
    def to_json(cls, value: Any, type_name: str = "") -> Any:
        """Convert a native driver value to a JSON-safe value.

        Args:
            value: Value as returned by the driver
            type_name: Lower-case engine type name of the column

        Returns:
            None, bool, int, float, str, or a list/dict for JSON and array columns
        """
        type_name = type_name.lower()

        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value
        if isinstance(value, float):
            return value if math.isfinite(value) else None
        if isinstance(value, Decimal):
            return str(value) if value.is_finite() else None
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls._bytes_to_json(bytes(value), type_name)
        # datetime is a subclass of date, so it must be checked first
        if isinstance(value, datetime.datetime):
            return value.strftime(DATETIME_FORMAT)
        if isinstance(value, datetime.date):
            return value.strftime(DATE_FORMAT)
        if isinstance(value, datetime.time):
            return value.strftime(TIME_FORMAT)
        if isinstance(value, datetime.timedelta):
            return _format_timedelta(value)
        if isinstance(value, str):
            if type_name in JSON_TYPES and not cls.json_decoded:
                try:
                    return json.loads(value)
                except ValueError:
                    return value
            return value
        if isinstance(value, (dict, list, tuple)):
            if type_name in JSON_TYPES:
                return value
            element_type = type_name[1:] if type_name.startswith("_") else ""
            if isinstance(value, dict):
                return {str(k): cls.to_json(v, element_type) for k, v in value.items()}
            return [cls.to_json(v, element_type) for v in value]
        if isinstance(value, (set, frozenset)):
            return ",".join(sorted(str(v) for v in value))
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(value)

    @classmethod
    def _bytes_to_json(cls, value: bytes, type_name: str) -> Any:
        return base64.b64encode(value).decode("ascii")

    # ------------------------------------------------------------------
    # Native value -> SQL literal
    # ------------------------------------------------------------------

    @classmethod
    def to_sql_literal(cls, value: Any, type_name: str = "") -> str:
        """Render a native driver value as SQL literal text.

        Args:
            value: Value as returned by the driver
            type_name: Lower-case engine type name of the column

        Returns:
            Literal text safe to embed in an INSERT statement
        """
        type_name = type_name.lower()

        if value is None:
            return "NULL"
        if type_name in JSON_TYPES and cls.json_decoded:
            return cls.quote_string(json.dumps(value, separators=(",", ":")))
        if isinstance(value, bool):
            return "TRUE" if value else "FALSE"
        if isinstance(value, int):
            return str(value)
        if isinstance(value, float):
            return repr(value) if math.isfinite(value) else "NULL"
        if isinstance(value, Decimal):
            return str(value) if value.is_finite() else "NULL"
        if isinstance(value, (bytes, bytearray, memoryview)):
            return cls._bytes_literal(bytes(value))
        if isinstance(value, datetime.datetime):
            return cls.quote_string(_literal_datetime(value))
        if isinstance(value, datetime.date):
            return cls.quote_string(value.strftime(DATE_FORMAT))
        if isinstance(value, datetime.time):
            return cls.quote_string(_literal_time(value))
        if isinstance(value, datetime.timedelta):
            return cls._timedelta_literal(value)
        if isinstance(value, str):
            return cls.quote_string(value)
        if isinstance(value, (list, tuple)) and type_name not in JSON_TYPES:
            return cls._array_literal(list(value), type_name)
        if isinstance(value, (dict, list, tuple)):
            return cls.quote_string(json.dumps(value, separators=(",", ":")))
        if isinstance(value, (set, frozenset)):
            return cls.quote_string(",".join(sorted(str(v) for v in value)))
        return cls.quote_string(str(value))

    @classmethod
    @abstractmethod
    def _bytes_literal(cls, value: bytes) -> str:
        """Render binary data in the dialect's literal syntax."""

    @classmethod
    def _timedelta_literal(cls, value: datetime.timedelta) -> str:
        return cls.quote_string(_format_timedelta(value))

    @classmethod
    def _array_literal(cls, value: list[Any], type_name: str) -> str:
        return cls.quote_string(json.dumps([cls.to_json(v) for v in value]))


class MariaDBCodec(ValueCodec):
    """MariaDB/MySQL dialect: backtick identifiers, backslash-escaping strings."""

    quote_char = "`"
    escape_backslashes = True

    @classmethod
    def _bytes_to_json(cls, value: bytes, type_name: str) -> Any:
        # BIT(n) columns arrive as big-endian bytes
        if type_name == "bit":
            return int.from_bytes(value, "big")
        return super()._bytes_to_json(value, type_name)

    @classmethod
    def _bytes_literal(cls, value: bytes) -> str:
        return f"X'{value.hex()}'"


class PostgresCodec(ValueCodec):
    """PostgreSQL dialect: double-quoted identifiers, standard-conforming strings."""

    quote_char = '"'
    escape_backslashes = False
    json_decoded = True

    @classmethod
    def _bytes_literal(cls, value: bytes) -> str:
        return f"'\\x{value.hex()}'"

    @classmethod
    def _timedelta_literal(cls, value: datetime.timedelta) -> str:
        # interval input accepts a plain seconds count, including fractions
        return cls.quote_string(f"{value.total_seconds()!r} seconds")

    @classmethod
    def _array_literal(cls, value: list[Any], type_name: str) -> str:
        element_type = type_name[1:] if type_name.startswith("_") else ""
        if not value:
            return "'{}'"
        items = ", ".join(cls.to_sql_literal(v, element_type) for v in value)
        return f"ARRAY[{items}]"
