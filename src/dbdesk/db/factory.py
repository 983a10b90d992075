"""Connection factory.

Resolves an engine name to a backend variant and returns a connected,
verified backend. Unsupported names fail with INVALID_DB_TYPE before any
network activity.
"""

from __future__ import annotations

import logging

from ..config import Settings
from ..models import SslMode
from .backend import ConnectionConfig, DatabaseBackendBase, DatabaseEngine
from .exceptions import InvalidDbTypeError

logger = logging.getLogger(__name__)

ENGINE_ALIASES: dict[str, DatabaseEngine] = {
    "mariadb": DatabaseEngine.MARIADB,
    "mysql": DatabaseEngine.MARIADB,
    "postgresql": DatabaseEngine.POSTGRESQL,
    "postgres": DatabaseEngine.POSTGRESQL,
}


def resolve_engine(db_type: str) -> DatabaseEngine:
    """Map an engine name (case-insensitive, aliases accepted) to an engine.

    Raises:
        InvalidDbTypeError: If the name is not supported
    """
    engine = ENGINE_ALIASES.get(db_type.strip().lower())
    if engine is None:
        raise InvalidDbTypeError(db_type)
    return engine


def new_backend(engine: DatabaseEngine) -> DatabaseBackendBase:
    """Instantiate an unconnected backend for an engine."""
    if engine == DatabaseEngine.MARIADB:
        from .mariadb_backend import MariaDBBackend

        return MariaDBBackend()

    from .postgres_backend import PostgresBackend

    return PostgresBackend()


def build_config(
    engine: DatabaseEngine,
    host: str,
    port: int | None,
    username: str,
    password: str,
    database: str,
    ssl_mode: SslMode | str = SslMode.PREFERRED,
    settings: Settings | None = None,
) -> ConnectionConfig:
    """Combine connection parameters with runtime settings."""
    settings = settings or Settings()
    return ConnectionConfig(
        engine=engine,
        host=host,
        port=port,
        database=database,
        username=username,
        password=password,
        ssl_mode=ssl_mode,
        timeout=settings.query_timeout,
        connect_timeout=settings.connect_timeout,
        max_rows=settings.max_query_rows,
        pool_min_size=settings.pool_min_size,
        pool_max_size=settings.pool_max_size,
        keepalive_interval=settings.keepalive_interval,
        export_page_size=settings.export_page_size,
    )


async def create_connection(
    db_type: str,
    host: str,
    port: int | None,
    username: str,
    password: str,
    database: str,
    ssl_mode: SslMode | str = SslMode.PREFERRED,
    settings: Settings | None = None,
) -> DatabaseBackendBase:
    """Build and connect a backend for ``db_type``.

    The returned backend has completed a round-trip liveness check.

    Raises:
        InvalidDbTypeError: If db_type is not supported (no connection attempted)
        DbConnectionError: If the server cannot be reached or rejects the login
        DbSslError: If ssl_mode is required and the encrypted connection fails
    """
    engine = resolve_engine(db_type)
    config = build_config(
        engine, host, port, username, password, database, ssl_mode, settings
    )
    backend = new_backend(engine)
    await backend.connect(config)
    logger.debug(f"Created {engine.value} connection to {config.describe()}")
    return backend
