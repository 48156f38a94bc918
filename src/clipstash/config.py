#!/usr/bin/env python3
"""Application settings.

Settings are loaded with pydantic-settings from, highest priority first:
1. Keyword arguments (tests, embedding applications)
2. CLIPSTASH_* environment variables
3. The TOML config file (user config dir, or --config)
4. Field defaults

The pipeline never caches individual values: components hold the
ConfigStore and read ``store.current`` every time they need a value, so a
reload() is picked up by the next event.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Literal

from platformdirs import user_config_dir, user_data_dir
from pydantic import Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

APP_NAME: str = "clipstash"

DEFAULT_CONFIG_FILE: Path = Path(user_config_dir(APP_NAME)) / "config.toml"

DEFAULT_DATA_DIR: Path = Path(user_data_dir(APP_NAME))


class Settings(BaseSettings):
    """Typed application settings.

    Attributes:
        max_history_records: Upper bound on non-pinned history size.
        sensitive_filter_enabled: Discard content flagged by the sensitive
            content predicates.
        poll_interval: Seconds between clipboard reads on the polling
            backend, and the minimum retry delay after a failed read.
        self_write_window: Seconds a copy-back stays eligible for
            suppression when the watcher observes it.
        data_dir: Directory holding the database and image assets.
        backend: Clipboard backend selection.
    """

    model_config = SettingsConfigDict(
        env_prefix="CLIPSTASH_",
        toml_file=DEFAULT_CONFIG_FILE,
        extra="ignore",
    )

    max_history_records: int = Field(default=100, ge=1)
    sensitive_filter_enabled: bool = True
    poll_interval: float = Field(default=0.5, gt=0)
    self_write_window: float = Field(default=2.0, gt=0)
    data_dir: Path = DEFAULT_DATA_DIR
    backend: Literal["auto", "x11", "polling"] = "auto"

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
            TomlConfigSettingsSource(settings_cls),
        )

    @property
    def database_path(self) -> Path:
        return self.data_dir / "clipboard.db"

    @property
    def images_dir(self) -> Path:
        return self.data_dir / "images"


def load_settings(config_file: Path | None = None, **overrides) -> Settings:
    """Load settings, optionally from a non-default TOML file.

    Args:
        config_file: TOML file to read instead of DEFAULT_CONFIG_FILE. A
            missing file is not an error; defaults apply.
        **overrides: Highest-priority field values.

    Returns:
        Validated Settings.

    Raises:
        pydantic.ValidationError: If a source holds an invalid value.
        tomllib.TOMLDecodeError: If the file is not valid TOML.
    """
    if config_file is None:
        return Settings(**overrides)

    class FileSettings(Settings):
        model_config = SettingsConfigDict(toml_file=config_file)

    return FileSettings(**overrides)


class ConfigStore:
    """Holder of the live Settings snapshot.

    Settings objects are never mutated; reload() builds a new one and swaps
    the reference, so a reader always sees one complete snapshot.
    """

    def __init__(
        self,
        config_file: Path | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._config_file = config_file
        self._lock = threading.Lock()
        self._current = settings if settings is not None else load_settings(config_file)

    @property
    def current(self) -> Settings:
        """The current settings snapshot."""
        return self._current

    @property
    def config_file(self) -> Path:
        return self._config_file or DEFAULT_CONFIG_FILE

    def reload(self) -> bool:
        """Re-read all sources and swap in the new snapshot.

        An invalid file leaves the previous snapshot in place.

        Returns:
            True if the new snapshot was installed, False otherwise.
        """
        with self._lock:
            try:
                settings = load_settings(self._config_file)
            except (OSError, ValueError) as e:
                logger.error("Config reload from %s failed, keeping previous settings: %s",
                    self.config_file, e)
                return False
            self._current = settings
        logger.info("Reloaded settings from %s", self.config_file)
        return True
