"""Configuration loading and connection string resolution.

Settings are read with pydantic-settings from, in increasing order of
precedence:

1. ``appsettings.json`` in the settings directory,
2. ``appsettings.<Environment>.json`` for the current environment,
3. ``MYAPP_`` prefixed environment variables, where ``__`` separates
   nested keys (``MYAPP_CONNECTIONSTRINGS__DEFAULTCONNECTION``),
4. an explicit mapping of overrides, used by tests.

The settings directory is ``MYAPP_SETTINGS_DIR`` or the current working
directory. Environment variable names are case-insensitive. There is no
default connection string: if ``DefaultConnection`` cannot be resolved
the application refuses to start.
"""
import logging
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    JsonConfigSettingsSource,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

DEFAULT_CONNECTION = "DefaultConnection"
DEFAULT_ENVIRONMENT = "Production"
SETTINGS_DIR_VARIABLE = "MYAPP_SETTINGS_DIR"


class ConfigurationError(Exception):
    """Raised when the application configuration cannot be loaded."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationMissingError(ConfigurationError):
    """Raised when a required setting is absent. Always fatal at startup."""

    def __init__(self, key: str, message: str) -> None:
        super().__init__(message)
        self.key = key


class ConnectionStringSettings(BaseModel):
    """Named connection strings. Names other than ``DefaultConnection`` are kept as extras."""

    model_config = ConfigDict(extra="allow")

    DefaultConnection: Optional[str] = None


class LoggingSettings(BaseModel):
    # Category name -> level name ("DEBUG", "INFO", ...)
    LogLevel: Dict[str, str] = Field(default_factory=dict)


class Settings(BaseSettings):
    """All application settings.

    Field names follow the ``appsettings.json`` layout, so a settings file
    and the environment variables address the same keys.
    """

    ConnectionStrings: ConnectionStringSettings = Field(default_factory=ConnectionStringSettings)
    Environment: str = DEFAULT_ENVIRONMENT
    Logging: LoggingSettings = Field(default_factory=LoggingSettings)

    model_config = SettingsConfigDict(
        env_prefix="MYAPP_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        settings_dir = Path(os.environ.get(SETTINGS_DIR_VARIABLE) or Path.cwd())
        # The environment picks the second settings file, so it can only come from overrides or env.
        environment = (
            init_settings().get("Environment")
            or env_settings().get("Environment")
            or DEFAULT_ENVIRONMENT
        )
        return (
            init_settings,
            env_settings,
            JsonConfigSettingsSource(settings_cls, json_file=settings_dir / f"appsettings.{environment}.json"),
            JsonConfigSettingsSource(settings_cls, json_file=settings_dir / "appsettings.json"),
        )

    def get_connection_string(self, name: str) -> Optional[str]:
        if name == DEFAULT_CONNECTION:
            return self.ConnectionStrings.DefaultConnection
        value = (self.ConnectionStrings.model_extra or {}).get(name)
        return None if value is None else str(value)


def load_configuration(overrides: Optional[Mapping[str, Any]] = None) -> Settings:
    """Build the application settings.

    Parameters
    ----------
    overrides: Mapping, optional
        Highest-precedence values, using the settings file layout. Keys
        that are not settings (Flask config such as ``TESTING``) are
        ignored.

    Returns
    -------
    Settings
        The merged settings.

    Raises
    ------
    ConfigurationError
        If a settings file is malformed or a value has the wrong type.
    """
    try:
        return Settings(**dict(overrides or {}))
    except (ValidationError, ValueError, TypeError) as exc:
        raise ConfigurationError(f"Could not load settings: {exc}") from exc


def resolve_connection_string(configuration: Settings, name: str = DEFAULT_CONNECTION) -> str:
    """Return the connection string registered under ``name``.

    Raises
    ------
    ConfigurationMissingError
        If the entry is missing, ``None`` or blank. There is no fallback.
    """
    value = configuration.get_connection_string(name)
    if value is None or not value.strip():
        raise ConfigurationMissingError(
            f"ConnectionStrings:{name}", f"Connection string '{name}' not found."
        )
    return value


def log_level(configuration: Settings, category: str = "Default") -> int:
    """Return the level configured under ``Logging:LogLevel:<category>``."""
    levels = {key.lower(): value for key, value in configuration.Logging.LogLevel.items()}
    name = levels.get(category.lower()) or levels.get("default") or "INFO"
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO
