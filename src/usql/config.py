"""usql configuration management.

Provides layered configuration with precedence:
    1. Environment variables (USQL_*)
    2. Config file ($USQL_HOME/config.toml)
    3. Defaults defined in USQLConfig
"""

import logging
import os
import tomllib
from pathlib import Path
from typing import Any

import tomli_w
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from usql.providers.base import EngineKind

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def get_usql_home() -> Path:
    """Return the usql home directory.

    Uses USQL_HOME environment variable if set, otherwise ~/.usql.
    """
    return Path(os.environ.get("USQL_HOME", "~/.usql")).expanduser()


def get_config_path() -> Path:
    """Return the config file path."""
    return get_usql_home() / "config.toml"


def get_default_database_path() -> Path:
    """Return the SQLite database used when no connection is configured."""
    return get_usql_home() / "usql.db"


class USQLConfig(BaseSettings):
    """usql configuration with layered precedence.

    Settings are loaded from (highest to lowest priority):
        1. Environment variables with USQL_ prefix
        2. Config file at $USQL_HOME/config.toml
        3. Default values defined here

    Attributes:
        engine: Database engine to connect to.
        connection: Engine-specific connection string; None means the
            default SQLite file under $USQL_HOME.
        log_level: Logging level name for the CLI.
        sniff_sample_size: Rows sampled when adopting vector columns.
    """

    model_config = SettingsConfigDict(
        env_prefix="USQL_",
        extra="ignore",
    )

    engine: EngineKind = EngineKind.SQLITE
    connection: str | None = None
    log_level: str = "WARNING"
    sniff_sample_size: int = 20

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalise the logging level name.

        Raises:
            ValueError: If the name is not a standard logging level.
        """
        level = v.strip().upper()
        if level not in _LOG_LEVELS:
            msg = f"log_level must be one of {', '.join(_LOG_LEVELS)}, got: {v}"
            raise ValueError(msg)
        return level

    @field_validator("sniff_sample_size")
    @classmethod
    def validate_sample_size(cls, v: int) -> int:
        """Validate the sample size is positive."""
        if v <= 0:
            msg = f"sniff_sample_size must be positive, got: {v}"
            raise ValueError(msg)
        return v

    @property
    def log_level_number(self) -> int:
        return logging.getLevelNamesMapping()[self.log_level]

    def resolve_connection(self) -> str:
        """Return the connection string to use.

        Raises:
            ValueError: If the engine needs an explicit connection string.
        """
        if self.connection:
            return self.connection
        if self.engine == EngineKind.SQLITE:
            return str(get_default_database_path())
        msg = f"A connection string is required for engine '{self.engine}'"
        raise ValueError(msg)

    def save(self) -> None:
        """Persist current config to file.

        Creates the config directory if it doesn't exist.
        """
        path = get_config_path()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(tomli_w.dumps(self._to_dict()))

    def _to_dict(self) -> dict[str, Any]:
        """Convert config to dictionary for serialization.

        TOML has no null, so an unset connection is omitted.
        """
        data: dict[str, Any] = {
            "engine": self.engine.value,
            "log_level": self.log_level,
            "sniff_sample_size": self.sniff_sample_size,
        }
        if self.connection is not None:
            data["connection"] = self.connection
        return data

    @classmethod
    def load(cls) -> "USQLConfig":
        """Load config with full precedence chain.

        Precedence (highest to lowest):
            1. Environment variables (USQL_*)
            2. Config file
            3. Defaults

        Returns:
            Loaded configuration.
        """
        config_path = get_config_path()
        file_values: dict[str, Any] = {}

        if config_path.exists():
            content = config_path.read_text()
            if content.strip():
                file_values = tomllib.loads(content)

        # Env vars take precedence over file values
        effective_values: dict[str, Any] = {}
        for key, value in file_values.items():
            env_key = f"USQL_{key.upper()}"
            if env_key not in os.environ:
                effective_values[key] = value

        return cls(**effective_values)
