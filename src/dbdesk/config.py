"""Settings and logging configuration.

Settings file location priority:
1. Explicit path passed to SettingsLoader
2. DBDESK_CONFIG environment variable
3. Standard location: ~/.dbdesk/config.yml
4. Built-in defaults (if no config file found)

Example config file:
```yaml
query_timeout: 60
max_query_rows: 5000
export_page_size: 20000
keepalive_interval: 0   # disable PostgreSQL keepalive pings
data_dir: ~/dbdesk-data
log_level: DEBUG
```

The DBDESK_LOG_LEVEL environment variable overrides ``log_level``.
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import yaml
from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidationInfo,
    field_validator,
)

logger = logging.getLogger(__name__)

VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

DEFAULT_DATA_DIR = Path.home() / ".dbdesk"


class Settings(BaseModel):
    """Runtime settings for the database access layer."""

    model_config = ConfigDict(extra="forbid")

    query_timeout: float = Field(
        default=30.0, gt=0, description="Deadline for each query operation in seconds"
    )
    connect_timeout: float = Field(
        default=10.0, gt=0, description="Connection establishment timeout in seconds"
    )
    max_query_rows: int = Field(
        default=10_000, ge=1, description="Rows materialized per ad-hoc query result"
    )
    export_page_size: int = Field(
        default=10_000, ge=1, description="Rows per SELECT page while exporting"
    )
    default_max_insert_size: int = Field(
        default=1000, ge=1, le=10_000, description="Rows per INSERT when options omit it"
    )
    pool_min_size: int = Field(default=1, ge=1, description="MariaDB pool minimum")
    pool_max_size: int = Field(default=5, ge=1, description="MariaDB pool maximum")
    keepalive_interval: float = Field(
        default=60.0, ge=0, description="PostgreSQL keepalive period in seconds, 0 disables"
    )
    data_dir: Path = Field(
        default=DEFAULT_DATA_DIR, description="Directory holding the credential store"
    )
    log_level: str = Field(default="INFO", description="Logging level name")

    @field_validator("data_dir", mode="after")
    @classmethod
    def _expand_data_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, v: str) -> str:
        return str(v).upper()

    @field_validator("pool_max_size", mode="after")
    @classmethod
    def _validate_pool_bounds(cls, v: int, info: ValidationInfo) -> int:
        minimum = info.data.get("pool_min_size", 1)
        if v < minimum:
            raise ValueError(f"pool_max_size ({v}) must be >= pool_min_size ({minimum})")
        return v

    @property
    def store_path(self) -> Path:
        """Credential store database file."""
        return self.data_dir / "connections.db"

    @property
    def key_path(self) -> Path:
        """Encryption key file beside the store."""
        return self.data_dir / "connections.key"

    def ensure_data_dir(self) -> Path:
        """Create the data directory if needed."""
        self.data_dir.mkdir(parents=True, exist_ok=True)
        return self.data_dir


class SettingsLoader:
    """Locates, loads and caches the settings file.

    Example:
        loader = SettingsLoader()
        settings = loader.load()
        configure_logging(settings.log_level)
    """

    def __init__(self, config_path: str | Path | None = None):
        """Initialize loader with optional explicit path.

        Args:
            config_path: Explicit path to settings file (optional).
                If not provided, uses environment variable or standard location.
        """
        self._settings: Settings | None = None
        self._explicit_path = Path(config_path).expanduser() if config_path else None

    def get_config_path(self) -> Path | None:
        """Determine settings file path using priority order.

        Returns:
            Path to settings file, or None if file doesn't exist
        """
        # Priority 1: Explicit path
        if self._explicit_path:
            if self._explicit_path.exists():
                return self._explicit_path
            logger.warning(f"Explicit settings path does not exist: {self._explicit_path}")
            return None

        # Priority 2: Environment variable
        env_path_str = os.getenv("DBDESK_CONFIG")
        if env_path_str:
            env_path = Path(env_path_str).expanduser()
            if env_path.exists():
                return env_path
            logger.warning(f"DBDESK_CONFIG path does not exist: {env_path}")
            return None

        # Priority 3: Standard location
        standard_path = DEFAULT_DATA_DIR / "config.yml"
        if standard_path.exists():
            return standard_path

        return None

    def load(self) -> Settings:
        """Load and validate settings, caching the result.

        Raises:
            ValueError: If the settings file is not a YAML mapping or fails validation
        """
        if self._settings is not None:
            return self._settings

        config_path = self.get_config_path()
        raw: dict = {}

        if config_path is not None:
            logger.info(f"Loading settings from: {config_path}")
            try:
                with open(config_path, encoding="utf-8") as f:
                    loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Failed to load settings from {config_path}: {e}") from e

            if loaded is None:
                loaded = {}
            if not isinstance(loaded, dict):
                raise ValueError(
                    f"Failed to load settings from {config_path}: "
                    "file must contain a YAML dictionary"
                )
            raw = loaded

        env_level = os.getenv("DBDESK_LOG_LEVEL")
        if env_level:
            raw = {**raw, "log_level": env_level}

        try:
            settings = Settings(**raw)
        except ValidationError as e:
            source = config_path or "defaults"
            raise ValueError(f"Invalid settings in {source}: {e}") from e

        self._settings = settings
        return settings


def configure_logging(level: str = "INFO") -> int:
    """Configure root logging on stderr.

    An unknown level name falls back to INFO with a warning on stderr.

    Returns:
        The numeric level that was applied
    """
    level_str = level.upper()
    if level_str not in VALID_LOG_LEVELS:
        print(
            f"Warning: Invalid log level '{level}'. "
            f"Valid levels: {', '.join(sorted(VALID_LOG_LEVELS))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        level_str = "INFO"

    log_level = getattr(logging, level_str)
    logging.basicConfig(level=log_level, format=LOG_FORMAT, stream=sys.stderr)
    return log_level
