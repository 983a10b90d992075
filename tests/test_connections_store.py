"""Tests for the encrypted connection profile store."""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import AsyncGenerator, Callable
from pathlib import Path

import pytest

from dbdesk.db.exceptions import InvalidDbTypeError, KeyFileError, StorageError
from dbdesk.models import ConnectionProfile, SslMode
from dbdesk.storage.connections_store import ConnectionsStore


@pytest.fixture
async def store(tmp_path: Path) -> AsyncGenerator[ConnectionsStore, None]:
    """Initialized store in a temporary directory."""
    s = ConnectionsStore(tmp_path / "connections.db")
    await s.init()
    yield s
    await s.close()


def _create_legacy_schema(db_path: Path) -> None:
    """Table as written before ssl_mode and created_at existed."""
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("""
            CREATE TABLE connections (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                db_type TEXT NOT NULL,
                host TEXT NOT NULL,
                port INTEGER NOT NULL,
                username TEXT NOT NULL,
                password_encrypted TEXT NOT NULL,
                database TEXT NOT NULL
            )
        """)
        conn.execute(
            "INSERT INTO connections VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            ("legacy-1", "Old", "mysql", "db", 3306, "root", "b2xkLXB3", "shop"),
        )
        conn.commit()
    finally:
        conn.close()


class TestSaveAndLoad:
    """Round trips through the store."""

    @pytest.mark.asyncio
    async def test_save_and_get(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        saved = await store.save_connection(make_profile(password="pä$$"))

        loaded = await store.get_connection(saved.id)

        assert loaded == saved
        assert loaded.password == "pä$$"
        assert loaded.ssl_mode == SslMode.DISABLED

    @pytest.mark.asyncio
    async def test_password_is_not_stored_in_plaintext(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        await store.save_connection(make_profile(password="plain-secret"))

        conn = sqlite3.connect(store.db_path)
        try:
            (stored,) = conn.execute("SELECT password_encrypted FROM connections").fetchone()
        finally:
            conn.close()

        assert "plain-secret" not in stored

    @pytest.mark.asyncio
    async def test_empty_password(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        saved = await store.save_connection(make_profile(password=""))
        assert (await store.get_connection(saved.id)).password == ""

    @pytest.mark.asyncio
    async def test_resave_replaces_fields(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        saved = await store.save_connection(make_profile(name="Before"))

        await store.save_connection(saved.model_copy(update={"name": "After", "port": 3307}))
        profiles = await store.get_all_connections()

        assert len(profiles) == 1
        assert profiles[0].name == "After"
        assert profiles[0].port == 3307

    @pytest.mark.asyncio
    async def test_newest_first(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        for name in ("first", "second", "third"):
            await store.save_connection(make_profile(name=name))

        profiles = await store.get_all_connections()

        assert [p.name for p in profiles] == ["third", "second", "first"]

    @pytest.mark.asyncio
    async def test_resave_keeps_position(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        """Editing a profile does not move it to the top of the list."""
        first = await store.save_connection(make_profile(name="first"))
        await store.save_connection(make_profile(name="second"))

        await store.save_connection(first.model_copy(update={"name": "first-edited"}))

        assert [p.name for p in await store.get_all_connections()] == ["second", "first-edited"]

    @pytest.mark.asyncio
    async def test_default_port_follows_engine(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        pg = await store.save_connection(make_profile(db_type="postgresql", port=None))
        maria = await store.save_connection(make_profile(db_type="MySQL", port=None))

        assert (await store.get_connection(pg.id)).port == 5432
        assert (await store.get_connection(maria.id)).port == 3306

    @pytest.mark.asyncio
    async def test_rejects_unsupported_engine(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        profile = make_profile(db_type="oracle", port=None)
        assert profile.port is None

        with pytest.raises(InvalidDbTypeError):
            await store.save_connection(profile)

        assert await store.get_all_connections() == []

    @pytest.mark.asyncio
    async def test_missing_profile(self, store: ConnectionsStore) -> None:
        assert await store.get_connection("nope") is None

    @pytest.mark.asyncio
    async def test_delete(
        self, store: ConnectionsStore, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        saved = await store.save_connection(make_profile())

        assert await store.delete_connection(saved.id) is True
        assert await store.delete_connection(saved.id) is False
        assert await store.get_all_connections() == []

    @pytest.mark.asyncio
    async def test_survives_reopen(
        self, tmp_path: Path, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        first = ConnectionsStore(tmp_path / "connections.db")
        await first.init()
        saved = await first.save_connection(make_profile(password="kept"))
        await first.close()

        second = ConnectionsStore(tmp_path / "connections.db")
        await second.init()

        assert (await second.get_connection(saved.id)).password == "kept"


class TestInitialization:
    """Schema creation, migration and key handling."""

    @pytest.mark.asyncio
    async def test_uninitialized_store_raises(
        self, tmp_path: Path, make_profile: Callable[..., ConnectionProfile]
    ) -> None:
        store = ConnectionsStore(tmp_path / "connections.db")
        with pytest.raises(StorageError, match="not initialized"):
            await store.save_connection(make_profile())

    @pytest.mark.asyncio
    async def test_key_file_defaults_beside_database(self, tmp_path: Path) -> None:
        store = ConnectionsStore(tmp_path / "connections.db")
        await store.init()
        assert store.key_path == tmp_path / "connections.key"
        assert store.key_path.exists()

    @pytest.mark.asyncio
    async def test_migrates_legacy_schema(self, tmp_path: Path) -> None:
        db_path = tmp_path / "connections.db"
        _create_legacy_schema(db_path)

        store = ConnectionsStore(db_path)
        await store.init()
        profiles = await store.get_all_connections()

        assert len(profiles) == 1
        assert profiles[0].id == "legacy-1"
        assert profiles[0].ssl_mode == SslMode.PREFERRED
        # Stored as plain base64 by the legacy scheme
        assert profiles[0].password == "old-pw"

        conn = sqlite3.connect(db_path)
        try:
            columns = {row[1] for row in conn.execute("PRAGMA table_info(connections)")}
        finally:
            conn.close()
        assert {"ssl_mode", "created_at"} <= columns

    @pytest.mark.asyncio
    async def test_regenerated_key_is_logged(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A missing key with existing rows warns that passwords are stranded."""
        db_path = tmp_path / "connections.db"
        _create_legacy_schema(db_path)

        with caplog.at_level(logging.WARNING):
            await ConnectionsStore(db_path).init()

        assert "can no longer be decrypted" in caplog.text

    @pytest.mark.asyncio
    async def test_malformed_key_fails_loudly(self, tmp_path: Path) -> None:
        key_path = tmp_path / "connections.key"
        key_path.write_bytes(b"\x00" * 7)

        with pytest.raises(KeyFileError):
            await ConnectionsStore(tmp_path / "connections.db", key_path).init()

        assert key_path.read_bytes() == b"\x00" * 7
