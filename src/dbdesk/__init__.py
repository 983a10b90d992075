"""dbdesk: database access core for a desktop SQL client.

Key Components:
- DatabaseSession: command facade returning CommandResult values
- ActiveConnection: the single exclusively-locked live connection slot
- create_connection: engine resolution plus a verified backend
- ConnectionsStore: saved profiles with AES-GCM encrypted passwords
- Settings/SettingsLoader: YAML settings with environment overrides
"""

from .config import Settings, SettingsLoader, configure_logging
from .db import (
    DatabaseEngine,
    DbError,
    QueryResult,
    TableColumn,
    TableRelationship,
    create_connection,
)
from .models import (
    CommandError,
    CommandResult,
    ConnectionProfile,
    DataMode,
    ExportOptions,
    SslMode,
    UpdateCellResult,
)
from .session import ActiveConnection, DatabaseSession
from .storage import ConnectionsStore

__version__ = "0.1.0"

__all__ = [
    # Facade
    "ActiveConnection",
    "DatabaseSession",
    # Settings
    "Settings",
    "SettingsLoader",
    "configure_logging",
    # Drivers
    "DatabaseEngine",
    "DbError",
    "QueryResult",
    "TableColumn",
    "TableRelationship",
    "create_connection",
    # Models
    "CommandError",
    "CommandResult",
    "ConnectionProfile",
    "DataMode",
    "ExportOptions",
    "SslMode",
    "UpdateCellResult",
    # Storage
    "ConnectionsStore",
]
