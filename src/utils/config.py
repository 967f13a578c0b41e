"""Configuration manager for persistent settings stored as JSON."""

import json
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .errors import (
    ConfigurationError,
    FileSystemError,
    InvalidConfigError,
    MailSyncError,
)
from .logging import get_logger
from .paths import BLOBS_DIR, CONFIG_PATH, DATABASE_PATH, MASTER_KEY_PATH

logger = get_logger(__name__)


class SyncConfig(BaseModel):
    """Pydantic model for synchronisation settings."""

    auto_sync: bool = True
    auto_sync_interval: int = 5  # in minutes
    metadata_batch_size: int = 100
    network_timeout: int = 30  # in seconds
    pool_max_size: int = 3
    pool_max_age: int = 300  # in seconds
    connect_attempts: int = 3
    reindex_max_passes: int = 10
    snippet_length: int = 150

    @field_validator(
        "metadata_batch_size",
        "pool_max_size",
        "connect_attempts",
        "reindex_max_passes",
        "snippet_length",
    )
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class SendConfig(BaseModel):
    """Pydantic model for outbound mail settings."""

    default_send_delay: int = 10  # in seconds
    smtp_timeout: int = 30  # in seconds


class LoggingConfig(BaseModel):
    """Pydantic model for logging settings."""

    log_level: str = "INFO"
    mask_emails: bool = True


class DatabaseConfig(BaseModel):
    """Pydantic model for database settings."""

    database_path: str = str(DATABASE_PATH)
    blob_path: str = str(BLOBS_DIR)


class SecurityConfig(BaseModel):
    """Pydantic model for credential encryption settings."""

    master_key_path: str = str(MASTER_KEY_PATH)
    master_key_env: str = "MAILSYNC_MASTER_KEY"


class AppConfig(BaseModel):
    """Pydantic model for overall application configuration."""

    version: str = "0.1.0"
    sync: SyncConfig = Field(default_factory=SyncConfig)
    send: SendConfig = Field(default_factory=SendConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)


class ConfigManager:
    """Loads, validates and persists the application configuration."""

    def __init__(self, config_path: Optional[Path] = None):
        self.path = Path(config_path) if config_path else CONFIG_PATH
        self.config = self._load_or_create_config()
        logger.info(f"Configuration loaded from {self.path}")

    def _load_or_create_config(self) -> AppConfig:
        """Load configuration from file or create default if not present."""

        if not self.path.exists():
            logger.info("No config file found, creating default configuration.")
            config = AppConfig()
            self._save_config(config)
            return config

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return AppConfig(**data)

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse config file: {e}")
            raise InvalidConfigError(f"Configuration file is not valid JSON: {e}") from e
        except PydanticValidationError as e:
            logger.error(f"Failed to validate config file: {e}")
            raise InvalidConfigError(
                f"Configuration data does not match expected schema: {e}"
            ) from e
        except OSError as e:
            raise FileSystemError(f"Failed to read configuration file: {e}") from e

    def _save_config(self, config: Optional[AppConfig] = None) -> None:
        """Save the current configuration to file."""

        config = config or self.config

        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(config.model_dump(), f, indent=2, ensure_ascii=False)
        except OSError as e:
            raise FileSystemError(f"Failed to write configuration file: {e}") from e

    def get_config(self, key_path: str) -> Any:
        """Get a configuration value using a dot-separated key path."""

        obj: Any = self.config
        for key in key_path.split("."):
            if not hasattr(obj, key):
                raise InvalidConfigError(f"Unknown configuration key '{key_path}'")
            obj = getattr(obj, key)
        return obj

    def set_config(self, key_path: str, value: Any, persist: bool = True) -> None:
        """Set a configuration value using a dot-separated key path.

        The whole document is re-validated so a bad value never reaches disk.
        """

        keys = key_path.split(".")
        data = self.config.model_dump()
        node = data
        for key in keys[:-1]:
            if not isinstance(node.get(key), dict):
                raise InvalidConfigError(f"Unknown configuration key '{key_path}'")
            node = node[key]
        if keys[-1] not in node:
            raise InvalidConfigError(f"Unknown configuration key '{key_path}'")
        node[keys[-1]] = value

        try:
            self.config = AppConfig(**data)
        except PydanticValidationError as e:
            raise InvalidConfigError(f"Invalid value for '{key_path}': {e}") from e

        try:
            if persist:
                self._save_config()
        except MailSyncError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Failed to save configuration: {e}") from e

        logger.info(f"Config key '{key_path}' updated.")

    def reset_to_defaults(self) -> None:
        """Reset configuration to default values."""

        logger.warning("Resetting configuration to default values.")
        self.config = AppConfig()
        self._save_config()


## Module-level accessor

_config_manager: Optional[ConfigManager] = None


def get_config_manager() -> ConfigManager:
    """Return the process-wide ConfigManager, creating it on first use."""

    global _config_manager
    if _config_manager is None:
        _config_manager = ConfigManager()
    return _config_manager


def reset_config_manager() -> None:
    """Drop the cached ConfigManager (for tests)."""

    global _config_manager
    _config_manager = None
