"""Persistent storage for saved connection profiles.

Architecture:
    - SQLite (connections.db): one row per profile
    - Key file (connections.key): raw 32-byte AES-256 key, mode 0600
    - Passwords are stored encrypted; every other field is plaintext
    - Write-through: all writes immediately committed

Storage Layout:
    ~/.dbdesk/
      connections.db
      connections.key
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import uuid
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeVar

from ..db.exceptions import StorageError
from ..db.factory import resolve_engine
from ..models import ConnectionProfile
from .crypto import PasswordCipher, load_or_create_key

logger = logging.getLogger(__name__)

T = TypeVar("T")

_COLUMNS = "id, name, db_type, host, port, username, password_encrypted, database, ssl_mode"

# Columns added after the first schema, with the definition used to add them
_MIGRATIONS: list[tuple[str, str]] = [
    ("ssl_mode", "ssl_mode TEXT NOT NULL DEFAULT 'preferred'"),
    ("created_at", "created_at DATETIME"),
]


class ConnectionsStore:
    """Encrypted credential store backed by SQLite.

    Each call opens its own sqlite3 connection in the default thread pool;
    an asyncio lock keeps calls from interleaving.

    Example:
        store = ConnectionsStore(Path("~/.dbdesk/connections.db").expanduser())
        await store.init()

        saved = await store.save_connection(profile)
        profiles = await store.get_all_connections()  # newest first
        deleted = await store.delete_connection(saved.id)
    """

    def __init__(self, db_path: str | Path, key_path: str | Path | None = None) -> None:
        self._db_path = Path(db_path)
        self._key_path = Path(key_path) if key_path else self._db_path.with_suffix(".key")
        self._cipher: PasswordCipher | None = None
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    @property
    def key_path(self) -> Path:
        return self._key_path

    async def init(self) -> None:
        """Create or migrate the schema and load the encryption key.

        Must be called before using the store.

        Raises:
            KeyFileError: If an existing key file cannot be used
            StorageError: If the database cannot be opened or migrated
        """
        async with self._lock:
            row_count = await self._run(self._init_db)
            key, created = await _run_in_executor(lambda: load_or_create_key(self._key_path))
            if created and row_count:
                logger.warning(
                    f"Encryption key {self._key_path} was missing and has been regenerated; "
                    f"{row_count} saved password(s) can no longer be decrypted"
                )
            self._cipher = PasswordCipher(key)

        logger.info(f"ConnectionsStore initialized: db={self._db_path}")

    def _init_db(self) -> int:
        """Create table, add missing columns (runs in thread pool).

        Returns:
            Number of rows already stored
        """
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path)
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS connections (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    db_type TEXT NOT NULL,
                    host TEXT NOT NULL,
                    port INTEGER NOT NULL,
                    username TEXT NOT NULL,
                    password_encrypted TEXT NOT NULL,
                    database TEXT NOT NULL,
                    ssl_mode TEXT NOT NULL DEFAULT 'preferred',
                    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
                )
            """)

            existing = {row[1] for row in conn.execute("PRAGMA table_info(connections)")}
            for column, definition in _MIGRATIONS:
                if column not in existing:
                    conn.execute(f"ALTER TABLE connections ADD COLUMN {definition}")
                    logger.info(f"Migrated connections table: added column {column}")

            # Rows from before created_at existed sort by insertion order
            conn.execute(
                "UPDATE connections SET created_at = CURRENT_TIMESTAMP WHERE created_at IS NULL"
            )
            conn.commit()
            return conn.execute("SELECT COUNT(*) FROM connections").fetchone()[0]
        finally:
            conn.close()

    async def save_connection(self, profile: ConnectionProfile) -> ConnectionProfile:
        """Insert or fully replace a profile.

        A profile without an id gets a fresh one. Replacing keeps the original
        creation time so edits do not reorder the list.

        Returns:
            The saved profile, with its id and plaintext password

        Raises:
            InvalidDbTypeError: If db_type is not a supported engine name
        """
        resolve_engine(profile.db_type)
        cipher = self._require_cipher()
        saved = profile.model_copy(update={"id": profile.id or str(uuid.uuid4())})
        encrypted = cipher.encrypt(saved.password)
        created_at = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S.%f")

        def _write() -> None:
            conn = sqlite3.connect(self._db_path)
            try:
                conn.execute(
                    f"""
                    INSERT INTO connections ({_COLUMNS}, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE SET
                        name = excluded.name,
                        db_type = excluded.db_type,
                        host = excluded.host,
                        port = excluded.port,
                        username = excluded.username,
                        password_encrypted = excluded.password_encrypted,
                        database = excluded.database,
                        ssl_mode = excluded.ssl_mode
                    """,
                    (
                        saved.id,
                        saved.name,
                        saved.db_type,
                        saved.host,
                        saved.port,
                        saved.username,
                        encrypted,
                        saved.database,
                        saved.ssl_mode.value,
                        created_at,
                    ),
                )
                conn.commit()
            finally:
                conn.close()

        async with self._lock:
            await self._run(_write)

        logger.debug(f"Saved connection profile {saved.id}")
        return saved

    async def get_all_connections(self) -> list[ConnectionProfile]:
        """List every profile, newest first, with decrypted passwords."""

        def _query() -> list[tuple]:
            conn = sqlite3.connect(self._db_path)
            try:
                return conn.execute(
                    f"SELECT {_COLUMNS} FROM connections ORDER BY created_at DESC, rowid DESC"
                ).fetchall()
            finally:
                conn.close()

        async with self._lock:
            rows = await self._run(_query)
        return [self._row_to_profile(row) for row in rows]

    async def get_connection(self, profile_id: str) -> ConnectionProfile | None:
        """Fetch one profile by id, or None if absent."""

        def _query() -> tuple | None:
            conn = sqlite3.connect(self._db_path)
            try:
                return conn.execute(
                    f"SELECT {_COLUMNS} FROM connections WHERE id = ?", (profile_id,)
                ).fetchone()
            finally:
                conn.close()

        async with self._lock:
            row = await self._run(_query)
        return self._row_to_profile(row) if row else None

    async def delete_connection(self, profile_id: str) -> bool:
        """Delete a profile.

        Returns:
            True if a row was deleted, False if the id was unknown
        """

        def _delete() -> int:
            conn = sqlite3.connect(self._db_path)
            try:
                cursor = conn.execute("DELETE FROM connections WHERE id = ?", (profile_id,))
                conn.commit()
                return cursor.rowcount
            finally:
                conn.close()

        async with self._lock:
            deleted = await self._run(_delete)
        return deleted > 0

    async def close(self) -> None:
        """Drop the loaded key. The store must be re-initialized before reuse."""
        async with self._lock:
            self._cipher = None

    def _row_to_profile(self, row: tuple) -> ConnectionProfile:
        cipher = self._require_cipher()
        profile_id, name, db_type, host, port, username, encrypted, database, ssl_mode = row
        return ConnectionProfile(
            id=profile_id,
            name=name,
            db_type=db_type,
            host=host,
            port=port,
            username=username,
            password=cipher.decrypt(encrypted),
            database=database,
            ssl_mode=ssl_mode,
        )

    def _require_cipher(self) -> PasswordCipher:
        if self._cipher is None:
            raise StorageError("ConnectionsStore not initialized. Call init() first.")
        return self._cipher

    async def _run(self, func: Callable[[], T]) -> T:
        """Run a blocking SQLite call, mapping sqlite errors to StorageError."""
        try:
            return await _run_in_executor(func)
        except sqlite3.Error as e:
            raise StorageError(f"Connection store error: {e}") from e


async def _run_in_executor(func: Callable[[], T]) -> T:
    """Run blocking function in thread pool executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, func)
