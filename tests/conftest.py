"""Shared test configuration for dbdesk tests.

Provides:
- Settings rooted in a temporary data directory
- Connection profile factory
- In-memory backend (see fakes.py) for export and facade tests
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
from fakes import MemoryBackend, MemoryTable, users_table

from dbdesk.config import Settings
from dbdesk.db.backend import DatabaseEngine, TableColumn
from dbdesk.models import ConnectionProfile


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings whose credential store lives under tmp_path."""
    return Settings(data_dir=tmp_path / "dbdesk", keepalive_interval=0)


@pytest.fixture
def make_profile() -> Callable[..., ConnectionProfile]:
    """Factory for connection profiles with overridable fields."""

    def _make(**overrides: Any) -> ConnectionProfile:
        fields: dict[str, Any] = {
            "name": "Local",
            "db_type": "mariadb",
            "host": "db.internal",
            "port": 3306,
            "username": "app",
            "password": "s3cret",
            "database": "shop",
            "ssl_mode": "disabled",
        }
        fields.update(overrides)
        return ConnectionProfile(**fields)

    return _make


@pytest.fixture
def mariadb_memory() -> MemoryBackend:
    """MariaDB-flavored in-memory backend with a users and an audit table."""
    return MemoryBackend(
        DatabaseEngine.MARIADB,
        databases={
            "shop": {
                "users": users_table(),
                "audit": MemoryTable(
                    columns=[
                        TableColumn(
                            name="entry", data_type="text", is_nullable=True, is_primary_key=False
                        )
                    ],
                    types=["text"],
                    rows=[("it's",), ("back\\slash",)],
                ),
            },
            "archive": {"old_users": users_table(2)},
        },
        current="shop",
    )


@pytest.fixture
def postgres_memory() -> MemoryBackend:
    """PostgreSQL-flavored in-memory backend with the same users table."""
    return MemoryBackend(
        DatabaseEngine.POSTGRESQL,
        databases={"shop": {"users": users_table()}},
        current="shop",
    )
