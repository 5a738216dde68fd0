"""Runtime configuration: env-driven, with an optional TOML file.

Precedence, highest first: explicit overrides (the CLI), ``LARDER_*``
environment variables, a ``.env`` file, the TOML config file, defaults.

Examples
--------
Override via environment::

    export LARDER_DB_PATH=/var/lib/larder/larder.db
    export LARDER_LOG_LEVEL=DEBUG

Or via a TOML file passed with ``larder --config larder.toml``::

    db_path = "/var/lib/larder/larder.db"
    enforce_freeze = true
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

_LOG_LEVELS = {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}


class LarderConfig(BaseSettings):
    """Settings for the cookbook store and its CLI."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="LARDER_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    # Storage
    db_path: Path = Path(".larder/larder.db")
    busy_timeout_seconds: float = 5.0

    # Refuse to overwrite frozen versions on upload
    enforce_freeze: bool = False

    @field_validator("log_level", mode="before")
    @classmethod
    def _known_level(cls, value: Any) -> str:
        level = str(value).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
        )


def load_config(config_file: Path | None = None, **overrides: Any) -> LarderConfig:
    """Resolve settings with the TOML file (if any) below env and overrides.

    ``None`` overrides are ignored, so unset CLI options fall through.
    """
    values = {key: value for key, value in overrides.items() if value is not None}
    if config_file is None:
        return LarderConfig(**values)

    path = Path(config_file)
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    class _FileConfig(LarderConfig):
        model_config = SettingsConfigDict(toml_file=path)

    return _FileConfig(**values)

