"""Request and response models exchanged with callers of the session facade."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

__all__ = [
    "CommandError",
    "CommandResult",
    "ConnectionProfile",
    "DataMode",
    "ExportOptions",
    "SslMode",
    "UpdateCellResult",
]


class SslMode(str, Enum):
    """Transport encryption policy for a connection."""

    DISABLED = "disabled"
    PREFERRED = "preferred"
    REQUIRED = "required"


class DataMode(str, Enum):
    """How table rows are written into a dump."""

    INSERT = "insert"
    REPLACE = "replace"
    INSERT_IGNORE = "insert_ignore"
    NO_DATA = "no_data"


class ConnectionProfile(BaseModel):
    """A saved set of connection parameters."""

    # ═══════════════════════════════════════════════════════════════════
    # Identity
    # ═══════════════════════════════════════════════════════════════════

    id: str = Field(
        default="", validate_default=True, description="Opaque unique id. Generated when empty."
    )
    name: str = Field(default="", description="Display name")

    # ═══════════════════════════════════════════════════════════════════
    # Connection
    # ═══════════════════════════════════════════════════════════════════

    db_type: str = Field(
        description="Engine name: mariadb, mysql, postgresql or postgres (case-insensitive)"
    )
    host: str = Field(default="localhost", description="Database host")
    port: int | None = Field(
        default=None, description="Database port. Defaults to the engine's standard port."
    )
    username: str = Field(default="", description="Database username")
    password: str = Field(default="", repr=False, description="Plaintext password")
    database: str = Field(default="", description="Database selected on connect")
    ssl_mode: SslMode = Field(
        default=SslMode.PREFERRED,
        description="disabled, preferred (encrypt if possible) or required",
    )

    @field_validator("id", mode="after")
    @classmethod
    def _generate_id(cls, v: str) -> str:
        """Fill in a fresh id when none was supplied."""
        return v or str(uuid.uuid4())

    @field_validator("port", mode="before")
    @classmethod
    def _validate_port(cls, v: Any) -> int | None:
        if v is None or v == "":
            return None
        try:
            port = int(v)
        except (ValueError, TypeError) as e:
            raise ValueError(f"Invalid port value: {v}") from e
        if not 1 <= port <= 65535:
            raise ValueError("port must be between 1 and 65535")
        return port

    @field_validator("ssl_mode", mode="before")
    @classmethod
    def _normalize_ssl_mode(cls, v: Any) -> Any:
        if v is None or v == "":
            return SslMode.PREFERRED
        if isinstance(v, str):
            return v.lower()
        return v

    @model_validator(mode="after")
    def _default_port(self) -> ConnectionProfile:
        """Use the engine's standard port when none was given.

        Unknown engine names keep ``port`` empty; the factory rejects them.
        """
        if self.port is None:
            from .db.backend import DEFAULT_PORTS
            from .db.factory import ENGINE_ALIASES

            engine = ENGINE_ALIASES.get(self.db_type.strip().lower())
            if engine is not None:
                self.port = DEFAULT_PORTS[engine]
        return self


class ExportOptions(BaseModel):
    """What a dump contains."""

    include_drop: bool = Field(default=True, description="Emit DROP TABLE IF EXISTS")
    include_create: bool = Field(default=True, description="Emit CREATE TABLE")
    data_mode: DataMode = Field(default=DataMode.INSERT, description="Row data verb")
    selected_tables: list[str] = Field(
        default_factory=list, description="Tables to export. Empty exports every table."
    )
    max_insert_size: int = Field(
        default=1000, ge=1, le=10_000, description="Rows per INSERT statement"
    )


class CommandError(BaseModel):
    """Error value returned to callers instead of raising."""

    message: str
    code: str
    detail: str | None = None
    hint: str | None = None


class CommandResult(BaseModel):
    """Uniform envelope for every facade operation."""

    success: bool
    data: Any = None
    error: CommandError | None = None


class UpdateCellResult(BaseModel):
    """Outcome of a single-cell update."""

    success: bool
    executed_query: str | None = None
    error: CommandError | None = Field(
        default=None, description="Carries engine code, detail and hint on failure"
    )
    table: str | None = None
    column: str | None = None
